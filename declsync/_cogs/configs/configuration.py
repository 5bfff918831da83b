"""
All configuration flags, options, settings to fine-tune a reconciler.

All settings are grouped semantically just for convenience
(instead of a flat mega-object with all the values in it).

Some of the settings are flags, some are scalars, some are optional,
some are not (but all of them have reasonable defaults).

The settings are created once per reconciler (usually by the CLI),
and are then passed to all the routines that need them explicitly.
There are no global settings.
"""
import dataclasses
from typing import Iterable, Optional, Union


@dataclasses.dataclass
class NetworkingSettings:

    request_timeout: Optional[float] = 5 * 60  # == aiohttp.client.DEFAULT_TIMEOUT
    """
    A timeout for the whole request, if not specified otherwise (e.g. in watching).
    """

    connect_timeout: Optional[float] = None
    """
    A timeout for establishing the connection to the API server.
    """

    error_backoffs: Union[float, Iterable[float]] = (1, 1, 2, 3, 5, 8, 13, 21, 34, 55, 89)
    """
    Backoffs (in seconds) for retrying the API requests on server & network errors.

    The number of items is the number of retries. After it is exhausted,
    the error is escalated to the caller. An empty collection disables retries.
    """


@dataclasses.dataclass
class WatchingSettings:

    min_timeout: float = 5 * 60
    """
    The minimal duration of one watch request (in seconds).

    Every watch request is randomized between ``min_timeout`` and twice that,
    so that many watchers do not reconnect all at the same time.
    """

    max_backoff_exponent: int = 18
    """
    The cap for the exponential backoff of the failed watch requests.

    The backoff is ``2 ** retries`` milliseconds, where the retries count
    is capped by this exponent (18 is about 4.5 minutes).
    """

    client_timeout: Optional[float] = None
    """
    The maximum duration of one streaming request on the client side.
    ``None`` means no limit: the server side closes the stream by timeout.
    """

    connect_timeout: Optional[float] = None
    """
    The maximum duration for establishing a streaming connection.
    If not set, the networking's timeout is used.
    """

    error_log_interval: float = 1.0
    """
    How often (in seconds) the same watch error is logged.
    More frequent repetitions of the same error are silently retried.
    """


@dataclasses.dataclass
class QueueingSettings:

    base_delay: float = 0.005
    """
    The initial delay (in seconds) of the per-object exponential backoff.
    It doubles with every failure of the same object.
    """

    max_delay: float = 1000.0
    """
    The maximal delay (in seconds) of the per-object exponential backoff.
    """

    qps: float = 10.0
    """
    The overall rate of retries (per second) for all objects together.
    """

    burst: int = 100
    """
    How many retries can be done at once before the overall rate applies.
    """


@dataclasses.dataclass
class RemediatingSettings:

    workers: int = 1
    """
    How many workers process the queued objects concurrently.
    """

    exit_timeout: Optional[float] = 2.0
    """
    How long to wait for the workers to finish the current objects on exit.
    """


@dataclasses.dataclass
class ApplyingSettings:

    field_manager: str = 'declsync'
    """
    The field manager name for the server-side apply.
    """

    conflict_retries: int = 5
    """
    How many times to re-fetch & re-apply an object on optimistic concurrency
    conflicts (stale version tokens) before giving up on it.
    """

    resync_period: float = 60 * 60
    """
    How often (in seconds) to re-read the manifests & re-apply everything.
    """


@dataclasses.dataclass
class InventorySettings:

    name: str = 'declsync-inventory'
    """
    The name of the inventory record (a ConfigMap) in the scope's namespace.
    """

    namespace: str = 'declsync-system'
    """
    The namespace of the inventory record for the root scope.
    Restricted scopes keep the inventory in their own namespace.
    """

    size_warning_threshold: int = 1536 * 1024 // 2
    """
    The size (in bytes) of the inventory record when to warn about it.

    The store usually limits objects to 1.5 MiB; half of that is a signal
    that the repository should be split into several scopes.
    """


@dataclasses.dataclass
class ReconcilerSettings:
    networking: NetworkingSettings = dataclasses.field(default_factory=NetworkingSettings)
    watching: WatchingSettings = dataclasses.field(default_factory=WatchingSettings)
    queueing: QueueingSettings = dataclasses.field(default_factory=QueueingSettings)
    remediating: RemediatingSettings = dataclasses.field(default_factory=RemediatingSettings)
    applying: ApplyingSettings = dataclasses.field(default_factory=ApplyingSettings)
    inventory: InventorySettings = dataclasses.field(default_factory=InventorySettings)
