"""A transport that collects calls and sends them as one batch."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Sequence

from .rpc import BatchTransport, Call, Error, InternalError, Transport


def _settle(future: asyncio.Future, outcome: Any) -> None:
    if isinstance(outcome, BaseException):
        future.set_exception(outcome)
    else:
        future.set_result(outcome)


class Batch(Transport):
    """Queues calls until submit_batch sends them through a batch transport.

    Every reference to the same instance shares the queue of unsent and pending calls.
    """

    def __init__(self, transport: BatchTransport) -> None:
        self._transport = transport
        self._pending: dict[int, asyncio.Future] = {}
        self._batch: list[tuple[int, Call]] = []

    def prepare(self, method: str, params: Sequence[Any]) -> tuple[int, Call]:
        return self._transport.prepare(method, params)

    def send(self, id: int, request: Call) -> asyncio.Future:
        """Queue a call; the returned future resolves once the batch is submitted."""
        future = asyncio.get_running_loop().create_future()
        previous = self._pending.get(id)
        if previous is not None and not previous.done():
            previous.set_exception(InternalError())
        self._pending[id] = future
        self._batch.append((id, request))
        return future

    def submit_batch(self) -> Awaitable[list[Any]]:
        """Send every queued call as one batch and resolve their futures."""
        batch, self._batch = self._batch, []
        ids = [request_id for request_id, _ in batch]
        response = self._transport.send_batch(batch)
        return self._resolve(ids, response)

    async def _resolve(self, ids: list[int], response: Awaitable[list[Any]]) -> list[Any]:
        try:
            results = await response
        except Exception as err:
            for request_id in ids:
                future = self._pending.pop(request_id, None)
                if future is not None and not future.done():
                    future.set_exception(err)
            raise
        for position, request_id in enumerate(ids):
            future = self._pending.pop(request_id, None)
            if future is None or future.done():
                continue
            if position < len(results):
                _settle(future, results[position])
            else:
                future.set_exception(InternalError())
        return results


__all__ = ["Batch", "Error"]