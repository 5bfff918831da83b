import functools
from collections.abc import Callable
from contextvars import ContextVar
from typing import Any, List, Optional, TypeVar, cast

import aiohttp

from declsync._cogs.helpers import versions

# Per-reconciler storage of the API session and the server's address.
# Set by the reconciler's runner, so that every task of the reconciler has the same context.
context_var: ContextVar["APIContext"] = ContextVar('context_var')

# A typevar to show that we return a function with the same signature as given.
_F = TypeVar('_F', bound=Callable[..., Any])


def contextual(fn: _F) -> _F:
    """
    A decorator to inject the API session context into a requesting routine.

    If the context is passed explicitly, it is used as is. Otherwise, it is
    taken from the context variable of the current task (and its parents).
    """
    @functools.wraps(fn)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        context: APIContext = kwargs['context'] if 'context' in kwargs else context_var.get()
        kwargs['context'] = context
        response = await fn(*args, **kwargs)
        if isinstance(response, aiohttp.ClientResponse):
            # Keep track of responses which are using this context.
            context.add_response(response)
        return response

    return cast(_F, wrapper)


class APIContext:
    """
    A container for an aiohttp session and the server's address.

    The context is created once per reconciler, and is closed when it exits.
    All requests of the reconciler go via the same session & connection pool.
    """

    # The main contained object used by the API methods.
    session: aiohttp.ClientSession

    # Contextual information for URL building.
    server: str

    # List of open responses.
    responses: List[aiohttp.ClientResponse]

    def __init__(
            self,
            server: str,
            *,
            session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        super().__init__()
        self.server = server
        self.session = session if session is not None else aiohttp.ClientSession(
            connector=aiohttp.TCPConnector(limit=0),
        )

        # It is a good practice to self-identify a bit, even with a user-provided session.
        if self.session.headers.get('User-Agent') is None:
            self.session.headers['User-Agent'] = f'declsync/{versions.version or "unknown"}'

        self.responses = []

    def flush_closed_responses(self) -> None:
        # There's no point keeping references to already closed responses.
        self.responses[:] = [_response for _response in self.responses if not _response.closed]

    def add_response(self, response: aiohttp.ClientResponse) -> None:
        self.flush_closed_responses()
        if not response.closed:
            self.responses.append(response)

    async def close(self) -> None:
        # Close all open responses (e.g. the watch-streams) before closing the session itself.
        for response in self.responses:
            if not response.closed:
                response.close()
        self.responses.clear()
        await self.session.close()
