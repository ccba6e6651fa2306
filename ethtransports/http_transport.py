"""JSON-RPC over HTTP, with retries for rate limited and failed requests."""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from typing import Any, Iterable, Sequence
from urllib.parse import urlsplit

import aiohttp

from .http_support import (
    Retries,
    handle_batch_response,
    handle_possible_error_object,
    parse_retry_after,
    retry_after_delay,
)
from .rpc import (
    BatchTransport,
    Call,
    RateLimitError,
    TransportCodeError,
    TransportError,
    build_request,
    to_result_from_output,
)

log = logging.getLogger(__name__)

_USER_AGENT = "ethtransports"


def _encode(payload: Any) -> str:
    return json.dumps(payload, separators=(",", ":"))


def _check_url(url: str) -> str:
    try:
        parts = urlsplit(url)
    except ValueError as err:
        raise TransportError(f"failed to parse url: {err}") from err
    if not parts.scheme or not parts.netloc:
        raise TransportError(f"failed to parse url: {url!r}")
    return url


class Http(BatchTransport):
    """Sends JSON-RPC calls and batches as HTTP POST requests.

    A session passed in is used as is and left open by close(); otherwise one is
    created on first use and closed by close().
    """

    def __init__(
        self,
        url: str,
        retries: Retries | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.url = _check_url(url)
        self.retries = retries if retries is not None else Retries()
        self._session = session
        self._owns_session = session is None
        self._ids = itertools.count()

    def __repr__(self) -> str:
        return f"Http({self.url!r}, retries={self.retries!r})"

    def _next_id(self) -> int:
        return next(self._ids)

    def _client(self) -> aiohttp.ClientSession:
        if self._session is None or (self._owns_session and self._session.closed):
            self._session = aiohttp.ClientSession(headers={"User-Agent": _USER_AGENT})
            self._owns_session = True
        return self._session

    def prepare(self, method: str, params: Sequence[Any]) -> tuple[int, Call]:
        request_id = self._next_id()
        return request_id, build_request(request_id, method, params)

    def send(self, id: int, request: Call):
        """Send one call; the returned coroutine yields its result or raises Error."""
        return self._send(id, request)

    async def _send(self, request_id: int, request: Call) -> Any:
        output = await self._execute_with_retries(request, request_id)
        return to_result_from_output(output)

    def send_batch(self, requests: Iterable[tuple[int, Call]]):
        """Send calls as one batch; results come back in request order."""
        # The batch id only ties the response log to the request log.
        batch_id = self._next_id()
        pairs = list(requests)
        ids = [request_id for request_id, _ in pairs]
        calls = [call for _, call in pairs]
        return self._send_batch(batch_id, ids, calls)

    async def _send_batch(self, batch_id: int, ids: list[int], calls: list[Call]) -> list[Any]:
        value = await self._execute_with_retries(calls, batch_id)
        outputs = handle_possible_error_object(value)
        return handle_batch_response(ids, outputs)

    async def _execute_with_retries(self, payload: Any, request_id: int) -> Any:
        retries = self.retries
        while True:
            try:
                return await self._execute(payload, request_id)
            except RateLimitError as limit:
                if not retries.use_retry_after_header and retries.max_retries <= 0:
                    raise TransportCodeError(429) from limit
                if limit.date is not None:
                    delay = retry_after_delay(limit.date)
                    if delay is None:
                        raise TransportCodeError(429) from limit
                else:
                    delay = limit.seconds
                if delay > 0:
                    await asyncio.sleep(delay)
            except TransportCodeError as err:
                if (
                    retries.max_retries <= 0
                    or retries.sleep_for <= 0
                    or (err.code != 429 and err.code < 500)
                ):
                    raise
                await asyncio.sleep(retries.sleep_for)
            retries = retries.step()

    async def _execute(self, payload: Any, request_id: int) -> Any:
        body = _encode(payload)
        log.debug("[id:%s] sending request: %s", request_id, body)
        session = self._client()
        try:
            async with session.post(
                self.url, data=body, headers={"Content-Type": "application/json"}
            ) as response:
                status = response.status
                retry_after = response.headers.get("Retry-After")
                try:
                    content = await response.read()
                except (aiohttp.ClientError, asyncio.TimeoutError) as err:
                    raise TransportError(f"failed to read response bytes: {err}") from err
        except (aiohttp.ClientError, asyncio.TimeoutError) as err:
            raise TransportError(f"failed to send request: {err}") from err

        text = content.decode("utf-8", errors="replace")
        log.debug("[id:%s] received response: %s", request_id, text)

        if status == 429:
            after = parse_retry_after(retry_after)
            if isinstance(after, int):
                raise RateLimitError(seconds=after)
            if isinstance(after, str):
                raise RateLimitError(date=after)
            raise TransportCodeError(status)
        if not 200 <= status < 300:
            raise TransportCodeError(status)
        try:
            return json.loads(content)
        except ValueError as err:
            raise TransportError(f"failed to deserialize response: {err}: {text}") from err

    async def close(self) -> None:
        """Close the HTTP session if this transport created it."""
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "Http":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()