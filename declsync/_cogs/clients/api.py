import asyncio
import collections.abc
import itertools
import json
from typing import Any, AsyncIterator, Mapping, Optional

import aiohttp

from declsync._cogs.aiokits import aiotasks
from declsync._cogs.clients import errors, sessions
from declsync._cogs.configs import configuration
from declsync._cogs.helpers import typedefs


@sessions.contextual
async def request(
        method: str,
        url: str,  # relative to the server/api root.
        *,
        settings: configuration.ReconcilerSettings,
        payload: Optional[object] = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[aiohttp.ClientTimeout] = None,
        context: Optional[sessions.APIContext] = None,  # injected by the decorator
        logger: typedefs.Logger,
) -> aiohttp.ClientResponse:
    if context is None:  # for type-checking!
        raise RuntimeError("API context is not injected by the decorator.")

    if '://' not in url:
        url = context.server.rstrip('/') + '/' + url.lstrip('/')

    if timeout is None:
        timeout = aiohttp.ClientTimeout(
            total=settings.networking.request_timeout,
            sock_connect=settings.networking.connect_timeout,
        )

    backoffs = settings.networking.error_backoffs
    backoffs = backoffs if isinstance(backoffs, collections.abc.Iterable) else [backoffs]
    count = len(backoffs) + 1 if isinstance(backoffs, collections.abc.Sized) else None
    backoff: Optional[float]
    for retry, backoff in enumerate(itertools.chain(backoffs, [None]), start=1):
        idx = f"#{retry}/{count}" if count is not None else f"#{retry}"
        what = f"{method.upper()} {url}"
        try:
            if retry > 1:
                logger.debug(f"Request attempt {idx}: {what}")

            response = await context.session.request(
                method=method,
                url=url,
                json=payload,
                headers=headers,
                timeout=timeout,
            )
            await errors.check_response(response)  # but do not parse it!

        except (aiohttp.ClientConnectionError, errors.APIServerError, asyncio.TimeoutError) as e:
            if backoff is None:  # i.e. the last or the only attempt.
                logger.error(f"Request attempt {idx} failed; escalating: {what} -> {e!r}")
                raise
            else:
                logger.error(f"Request attempt {idx} failed; will retry: {what} -> {e!r}")
                await asyncio.sleep(backoff)  # non-awakable! but still cancellable.
        else:
            if retry > 1:
                logger.debug(f"Request attempt {idx} succeeded: {what}")
            return response

    raise RuntimeError("Broken retryable routine.")  # impossible, but needed for type-checking.


async def _parsed(
        method: str,
        url: str,
        *,
        settings: configuration.ReconcilerSettings,
        payload: Optional[object],
        headers: Optional[Mapping[str, str]],
        timeout: Optional[aiohttp.ClientTimeout],
        logger: typedefs.Logger,
) -> Any:
    response = await request(
        method=method,
        url=url,
        payload=payload,
        headers=headers,
        timeout=timeout,
        settings=settings,
        logger=logger,
    )
    async with response:
        return await response.json()


async def get(
        url: str,  # relative to the server/api root.
        *,
        settings: configuration.ReconcilerSettings,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[aiohttp.ClientTimeout] = None,
        logger: typedefs.Logger,
) -> Any:
    return await _parsed('get', url, payload=None, headers=headers, timeout=timeout,
                         settings=settings, logger=logger)


async def post(
        url: str,  # relative to the server/api root.
        *,
        settings: configuration.ReconcilerSettings,
        payload: Optional[object] = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[aiohttp.ClientTimeout] = None,
        logger: typedefs.Logger,
) -> Any:
    return await _parsed('post', url, payload=payload, headers=headers, timeout=timeout,
                         settings=settings, logger=logger)


async def patch(
        url: str,  # relative to the server/api root.
        *,
        settings: configuration.ReconcilerSettings,
        payload: Optional[object] = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[aiohttp.ClientTimeout] = None,
        logger: typedefs.Logger,
) -> Any:
    return await _parsed('patch', url, payload=payload, headers=headers, timeout=timeout,
                         settings=settings, logger=logger)


async def delete(
        url: str,  # relative to the server/api root.
        *,
        settings: configuration.ReconcilerSettings,
        payload: Optional[object] = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[aiohttp.ClientTimeout] = None,
        logger: typedefs.Logger,
) -> Any:
    return await _parsed('delete', url, payload=payload, headers=headers, timeout=timeout,
                         settings=settings, logger=logger)


async def stream(
        url: str,  # relative to the server/api root.
        *,
        settings: configuration.ReconcilerSettings,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[aiohttp.ClientTimeout] = None,
        stopper: Optional[aiotasks.Future] = None,
        logger: typedefs.Logger,
) -> AsyncIterator[Any]:
    """
    Stream the JSON-lines of a long-lived response (e.g. a watch-stream).

    The stream is closed client-side when the stopper future is done.
    In that case, the stream ends silently, as if closed server-side.
    """
    response = await request(
        method='get',
        url=url,
        headers=headers,
        timeout=timeout,
        settings=settings,
        logger=logger,
    )
    response_close_callback = lambda _: response.close()  # to remove the positional arg.
    if stopper is not None:
        stopper.add_done_callback(response_close_callback)
    try:
        async with response:
            async for line in iter_jsonlines(response.content):
                yield json.loads(line.decode('utf-8'))
    except aiohttp.ClientConnectionError:
        if stopper is not None and stopper.done():
            pass
        else:
            raise
    finally:
        if stopper is not None:
            stopper.remove_done_callback(response_close_callback)


async def iter_jsonlines(
        content: aiohttp.StreamReader,
        chunk_size: int = 1024 * 1024,
) -> AsyncIterator[bytes]:
    """
    Iterate line by line over the response's content.

    This is an equivalent of ``async for line in response.content``,
    except that the aiohttp's line iteration fails if the accumulated buffer
    length is above 2**17 bytes (128 KB), while the objects in the store
    (and so the lines of the watch-stream) can be up to MBs in length.
    """

    # Keep at most 2 copies of a yielded line in memory (in the buffer and as a yielded value).
    buffer = b''
    async for data in content.iter_chunked(chunk_size):
        buffer += data
        del data

        start = 0
        index = buffer.find(b'\n', start)
        while index >= 0:
            line = buffer[start:index]
            if line:
                yield line
            del line
            start = index + 1
            index = buffer.find(b'\n', start)

        if start > 0:
            buffer = buffer[start:]

    if buffer:
        yield buffer
