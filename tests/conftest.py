import asyncio
import copy
import io
import itertools
import json
import logging
import re
import sys
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import AsyncMock, MagicMock

import aresponses as aresponses_lib
import pytest

from declsync._cogs.clients import creating, deleting, fetching, patching, scanning, sessions
from declsync._cogs.clients.errors import APIConflictError
from declsync._cogs.configs.configuration import ReconcilerSettings
from declsync._cogs.structs import ids, references
from declsync._cogs.structs.references import CONFIGMAPS, NAMESPACES, Resource
from declsync._core.actions.loggers import ObjectPrefixingTextFormatter, configure

DEPLOYMENTS = Resource('apps', 'v1', 'deployments', kind='Deployment', namespaced=True,
                       verbs=frozenset({'list', 'watch', 'get', 'create', 'patch', 'delete'}))
CLUSTERROLES = Resource('rbac.authorization.k8s.io', 'v1', 'clusterroles', kind='ClusterRole',
                        namespaced=False,
                        verbs=frozenset({'list', 'watch', 'get', 'create', 'patch', 'delete'}))


@pytest.fixture()
def settings():
    settings = ReconcilerSettings()
    settings.networking.error_backoffs = []
    return settings


@pytest.fixture(params=[True, False], ids=['namespaced', 'cluster'])
def resource(request):
    """ The resource used in the tests. Usually mocked, so it does not matter. """
    return Resource('declsync.dev', 'v1', 'samples', kind='Sample', namespaced=request.param)


@pytest.fixture()
def namespace(resource):
    return 'ns' if resource.namespaced else None


#
# Mocks for the store's API. The unit-tests must be fully isolated from the environment:
# either the HTTP responses are simulated (for the clients), or the clients are (for the rest).
#

@pytest.fixture()
def hostname():
    """ A fake hostname to be used in all aiohttp/aresponses tests. """
    return 'fake-host'


@pytest.fixture()
async def aresponses():
    async with aresponses_lib.ResponsesMockServer(loop=asyncio.get_running_loop()) as server:
        yield server


@pytest.fixture()
async def enforced_context(hostname):
    """ The API context as if set by the reconciler's runner. """
    context = sessions.APIContext(f'http://{hostname}')
    token = sessions.context_var.set(context)
    try:
        yield context
    finally:
        sessions.context_var.reset(token)
        await context.close()


@pytest.fixture()
def resp_mocker(enforced_context, aresponses):
    """
    A factory of server-side callbacks for `aresponses` with mocking/spying.

    The value of the fixture is a function, which return a coroutine mock.
    That coroutine mock should be passed to `aresponses.add` as a response
    callback function. When called, it calls the mock defined by the function's
    arguments (specifically, return_value or side_effects).

    The request's content is preserved as ``request.data`` for the assertions::

        callback = resp_mocker(return_value=aiohttp.web.json_response({'a': 'b'}))
        aresponses.add(hostname, '/path/', 'get', callback)
        do_something()
        assert callback.call_count == 1
        assert callback.call_args_list[0][0][0].data == {...}
    """
    def resp_maker(*args, **kwargs):
        actual_response = MagicMock(*args, **kwargs)

        async def resp_mock_effect(request):
            try:
                request.data = await request.json()
            except json.JSONDecodeError:
                request.data = await request.text()
            return actual_response()

        return AsyncMock(side_effect=resp_mock_effect)
    return resp_maker


class FakeStore:
    """
    An in-memory store with the resource versions and the optimistic concurrency.

    It replaces the API clients for the tests of the layers above them.
    The writes are recorded as ``(verb, identity)`` in ``calls``.
    """

    def __init__(self) -> None:
        super().__init__()
        self.objects: Dict[Tuple[str, str, str, str], Dict[str, Any]] = {}
        self.calls: List[Tuple[str, ids.ObjectKey]] = []
        self._versions = itertools.count(1)

    def put(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        """ Store the object as is (except for the resource version), bypassing the API. """
        raw = copy.deepcopy(dict(raw))
        meta = raw['metadata'] = dict(raw.get('metadata') or {})
        meta['resourceVersion'] = str(next(self._versions))
        meta.setdefault('uid', f"uid-{meta['name']}")
        meta.setdefault('generation', 1)
        self.objects[tuple(ids.identify(raw).key)] = raw
        return copy.deepcopy(raw)

    def get(self, kind: str, name: str, namespace: str = '', group: str = '') -> Optional[Dict[str, Any]]:
        raw = self.objects.get((group, kind, namespace, name))
        return copy.deepcopy(raw) if raw is not None else None

    def _key(self, resource: Resource, namespace: Optional[str], name: str) -> Tuple[str, str, str, str]:
        return (resource.group, resource.kind, (namespace or '') if resource.namespaced else '', name)

    def _conflict(self, what: str) -> APIConflictError:
        return APIConflictError({'kind': 'Status', 'code': 409, 'reason': 'Conflict',
                                 'message': what}, status=409)  # type: ignore

    async def read_obj(self, *, settings, resource, namespace, name, logger):
        raw = self.objects.get(self._key(resource, namespace, name))
        return copy.deepcopy(raw) if raw is not None else None

    async def create_obj(self, *, settings, resource, body, logger):
        key = self._key(resource, body.get('metadata', {}).get('namespace'), body['metadata']['name'])
        self.calls.append(('create', ids.ObjectKey(*key)))
        if key in self.objects:
            raise self._conflict(f"{key} already exists")
        return self.put(body)

    async def apply_obj(self, *, settings, resource, body, force=True, logger):
        meta = body.get('metadata', {})
        key = self._key(resource, meta.get('namespace'), meta['name'])
        self.calls.append(('apply', ids.ObjectKey(*key)))
        existing = self.objects.get(key)
        expected = meta.get('resourceVersion')
        if existing is not None and expected and existing['metadata']['resourceVersion'] != expected:
            raise self._conflict(f"{key} has changed")
        if existing is None and expected:
            raise self._conflict(f"{key} is gone")
        applied = copy.deepcopy(dict(body))
        applied['metadata'] = dict(applied.get('metadata', {}))
        if existing is not None:
            applied['metadata']['uid'] = existing['metadata']['uid']
            applied['metadata']['generation'] = existing['metadata']['generation'] + 1
        return self.put(applied)

    async def patch_obj(self, *, settings, resource, namespace, name, patch, logger):
        key = self._key(resource, namespace, name)
        self.calls.append(('patch', ids.ObjectKey(*key)))
        existing = self.objects.get(key)
        if existing is None:
            return None
        return self.put(_merge(existing, patch))

    async def delete_obj(self, *, settings, resource, namespace, name, resource_version=None, logger):
        key = self._key(resource, namespace, name)
        self.calls.append(('delete', ids.ObjectKey(*key)))
        existing = self.objects.get(key)
        if existing is None:
            return False
        if resource_version is not None and existing['metadata']['resourceVersion'] != resource_version:
            raise self._conflict(f"{key} has changed")
        del self.objects[key]
        return True


def _merge(target: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
    result = copy.deepcopy(target)
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        elif isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


@pytest.fixture()
def fake_store(mocker):
    store = FakeStore()
    mocker.patch.object(fetching, 'read_obj', side_effect=store.read_obj)
    mocker.patch.object(creating, 'create_obj', side_effect=store.create_obj)
    mocker.patch.object(patching, 'apply_obj', side_effect=store.apply_obj)
    mocker.patch.object(patching, 'patch_obj', side_effect=store.patch_obj)
    mocker.patch.object(deleting, 'delete_obj', side_effect=store.delete_obj)
    return store


@pytest.fixture()
def mapper(mocker, settings):
    """ A mapper with few well-known kinds; all other kinds are unknown to the store. """
    mocker.patch.object(scanning, 'scan_resources', return_value=set())
    return scanning.ResourceMapper(settings=settings, resources=[
        CONFIGMAPS, NAMESPACES, DEPLOYMENTS, CLUSTERROLES,
        references.Resource('declsync.dev', 'v1', 'samples', kind='Sample', namespaced=True),
    ])


#
# Helpers for the logging checks.
#


@pytest.fixture()
def logstream(caplog):
    """ Prefixing is done at the final output. We have to intercept it. """

    logger = logging.getLogger()
    handlers = list(logger.handlers)

    # Setup all log levels of sub-libraries. A side-effect: the handlers are also added.
    configure(verbose=True)

    # Remove any stream handlers added in the step above. But keep the caplog's handlers.
    for handler in list(logger.handlers):
        if isinstance(handler, logging.StreamHandler) and handler.stream is sys.stderr:
            logger.removeHandler(handler)

    # Inject our stream-intercepting handler.
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    formatter = ObjectPrefixingTextFormatter('prefix %(message)s')
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    try:
        with caplog.at_level(logging.DEBUG):
            yield stream
    finally:
        logger.removeHandler(handler)
        logger.handlers[:] = handlers  # undo `configure()`


@pytest.fixture()
def assert_logs(caplog):
    """
    A function to assert the logs are present (by pattern).

    The listed message patterns MUST be present, in the order specified.
    Some other log messages can also be present, but they are ignored.
    """
    def assert_logs_fn(patterns, prohibited=[], strict=False):
        __traceback_hide__ = True
        remaining_patterns = list(patterns)
        for message in caplog.messages:
            # The expected pattern is at position 0.
            # Looking-ahead: if one of the following patterns matches, while the
            # 0th does not, then the log message is missing, and we fail the test.
            for idx, pattern in enumerate(remaining_patterns):
                m = re.search(pattern, message)
                if m:
                    if idx == 0:
                        remaining_patterns[:1] = []
                        break  # out of `remaining_patterns` cycle
                    else:
                        skipped_patterns = remaining_patterns[:idx]
                        raise AssertionError(f"Few patterns were skipped: {skipped_patterns!r}")
                elif strict:
                    raise AssertionError(f"Unexpected log message: {message!r}")

            # Check that the prohibited patterns do not appear in any message.
            for pattern in prohibited:
                m = re.search(pattern, message)
                if m:
                    raise AssertionError(f"Prohibited log pattern found: {message!r} ~ {pattern!r}")

        # If all patterns have been matched in order, we are done.
        # if some are left, but the messages are over, then we fail.
        if remaining_patterns:
            raise AssertionError(f"Few patterns were missed: {remaining_patterns!r}")

    return assert_logs_fn
