"""JSON-RPC over a Unix domain socket, with subscriptions."""

from __future__ import annotations

import asyncio
import codecs
import itertools
import json
import logging
import os
import re
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Iterable, Sequence

from .rpc import (
    BatchTransport,
    Call,
    DuplexTransport,
    Error,
    TransportError,
    build_request,
    to_result_from_output,
)

log = logging.getLogger(__name__)

_READ_SIZE = 65536
_WHITESPACE = re.compile(r"[ \t\n\r]*")
_NOTIFICATION_KEYS = frozenset({"jsonrpc", "method", "params"})
_SUCCESS_KEYS = frozenset({"jsonrpc", "result", "id"})
_FAILURE_KEYS = frozenset({"jsonrpc", "error", "id"})


def _send_error() -> TransportError:
    return TransportError("Send Error: the transport task has finished")


def _recv_error() -> TransportError:
    return TransportError("Recv Error: the request was dropped without a response")


class _End:
    """Marks the end of a notification stream."""


class _Close:
    """Asks the server loop to stop once pending requests are answered."""


_END = _End()
_CLOSE = _Close()


@dataclass
class _Single:
    id: int
    call: Call
    future: asyncio.Future


@dataclass
class _Batch:
    entries: list[tuple[int, Call, asyncio.Future]]


@dataclass
class _Subscribe:
    id: str
    queue: asyncio.Queue


@dataclass
class _Unsubscribe:
    id: str


async def _failed(error: Exception) -> Any:
    raise error


async def _notifications(queue: asyncio.Queue) -> AsyncIterator[Any]:
    while True:
        item = await queue.get()
        if item is _END:
            return
        yield item


def _encode(payload: Any) -> bytes:
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


def _is_notification(value: Any) -> bool:
    return (
        isinstance(value, dict)
        and isinstance(value.get("method"), str)
        and value.keys() <= _NOTIFICATION_KEYS
    )


def _is_output(value: Any) -> bool:
    if not isinstance(value, dict) or "id" not in value:
        return False
    keys = value.keys()
    return ("result" in value and keys <= _SUCCESS_KEYS) or (
        "error" in value and keys <= _FAILURE_KEYS
    )


def _is_response(value: Any) -> bool:
    if isinstance(value, list):
        return all(_is_output(output) for output in value)
    return _is_output(value)


class Ipc(BatchTransport, DuplexTransport):
    """Sends JSON-RPC calls over a Unix socket; a background task reads the replies."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._loop = asyncio.get_running_loop()
        self._ids = itertools.count(1)
        self._reader = reader
        self._writer = writer
        self._messages: asyncio.Queue = asyncio.Queue()
        self._pending: dict[int, asyncio.Future] = {}
        self._subscriptions: dict[str, asyncio.Queue] = {}
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._json = json.JSONDecoder()
        self._buffer = ""
        self._closing = False
        self._finished = False
        self._task = self._loop.create_task(self._run())

    @classmethod
    async def connect(cls, path: str | os.PathLike) -> "Ipc":
        """Connect to the socket at path."""
        try:
            reader, writer = await asyncio.open_unix_connection(os.fspath(path))
        except OSError as err:
            raise TransportError(f"failed to connect: {err}") from err
        return cls.from_streams(reader, writer)

    @classmethod
    def from_streams(cls, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> "Ipc":
        """Use an already open pair of streams; must be called inside a running loop."""
        return cls(reader, writer)

    def __repr__(self) -> str:
        return f"Ipc(pending={len(self._pending)}, finished={self._finished})"

    def _enqueue(self, message: Any) -> None:
        if self._closing or self._finished:
            raise _send_error()
        self._messages.put_nowait(message)

    def prepare(self, method: str, params: Sequence[Any]) -> tuple[int, Call]:
        request_id = next(self._ids)
        return request_id, build_request(request_id, method, params)

    def send(self, id: int, request: Call) -> Awaitable[Any]:
        """Send one call; the awaitable yields its result or raises Error."""
        future = self._loop.create_future()
        try:
            self._enqueue(_Single(id, request, future))
        except TransportError as err:
            return _failed(err)
        return self._single(future)

    async def _single(self, future: asyncio.Future) -> Any:
        return to_result_from_output(await future)

    def send_batch(self, requests: Iterable[tuple[int, Call]]) -> Awaitable[list[Any]]:
        """Send calls as one batch; failures come back as Error instances."""
        entries = [(request_id, call, self._loop.create_future()) for request_id, call in requests]
        try:
            self._enqueue(_Batch(entries))
        except TransportError as err:
            return _failed(err)
        return self._batch([future for _, _, future in entries])

    async def _batch(self, futures: list[asyncio.Future]) -> list[Any]:
        results: list[Any] = []
        for future in futures:
            try:
                results.append(to_result_from_output(await future))
            except Error as err:
                results.append(err)
        return results

    def subscribe(self, id: str) -> AsyncIterator[Any]:
        queue: asyncio.Queue = asyncio.Queue()
        self._enqueue(_Subscribe(id, queue))
        return _notifications(queue)

    def unsubscribe(self, id: str) -> None:
        self._enqueue(_Unsubscribe(id))

    async def close(self) -> None:
        """Stop accepting calls, wait for pending ones, then close the socket."""
        if not self._closing and not self._finished:
            self._messages.put_nowait(_CLOSE)
        self._closing = True
        await asyncio.gather(self._task, return_exceptions=True)
        self._writer.close()
        with suppress(OSError):
            await self._writer.wait_closed()

    async def _run(self) -> None:
        closed = False
        get_task: asyncio.Task | None = None
        read_task: asyncio.Task | None = None
        try:
            while not closed or self._pending:
                if get_task is None and not closed:
                    get_task = self._loop.create_task(self._messages.get())
                if read_task is None:
                    read_task = self._loop.create_task(self._reader.read(_READ_SIZE))
                waiting = {task for task in (get_task, read_task) if task is not None}
                done, _ = await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)
                if get_task in done:
                    message = get_task.result()
                    get_task = None
                    if message is _CLOSE:
                        closed = True
                    else:
                        await self._handle(message)
                if read_task in done:
                    finished_read, read_task = read_task, None
                    try:
                        data = finished_read.result()
                    except OSError as err:
                        log.error("IPC read error: %r", err)
                        break
                    if not data:
                        break
                    self._feed(data)
        finally:
            self._finished = True
            for task in (get_task, read_task):
                if task is not None:
                    task.cancel()
            self._shutdown()

    def _shutdown(self) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(_recv_error())
        self._pending.clear()
        for queue in self._subscriptions.values():
            queue.put_nowait(_END)
        self._subscriptions.clear()
        while not self._messages.empty():
            self._drop(self._messages.get_nowait())
        self._writer.close()

    def _drop(self, message: Any) -> None:
        match message:
            case _Single(_, _, future):
                if not future.done():
                    future.set_exception(_recv_error())
            case _Batch(entries):
                for _, _, future in entries:
                    if not future.done():
                        future.set_exception(_recv_error())
            case _Subscribe(_, queue):
                queue.put_nowait(_END)

    async def _handle(self, message: Any) -> None:
        match message:
            case _Subscribe(sub_id, queue):
                previous = self._subscriptions.get(sub_id)
                if previous is not None:
                    log.warning("Replacing a subscription with id %r", sub_id)
                    previous.put_nowait(_END)
                self._subscriptions[sub_id] = queue
            case _Unsubscribe(sub_id):
                queue = self._subscriptions.pop(sub_id, None)
                if queue is None:
                    log.warning("Unsubscribing not subscribed id %r", sub_id)
                else:
                    queue.put_nowait(_END)
            case _Single(request_id, call, future):
                self._register(request_id, future)
                if not await self._write(call):
                    self._fail(request_id)
            case _Batch(entries):
                for request_id, _, future in entries:
                    self._register(request_id, future)
                if not await self._write([call for _, call, _ in entries]):
                    for request_id, _, _ in entries:
                        self._fail(request_id)

    def _register(self, request_id: int, future: asyncio.Future) -> None:
        previous = self._pending.get(request_id)
        if previous is not None:
            log.warning("Replacing a pending request with id %r", request_id)
            if not previous.done():
                previous.set_exception(_recv_error())
        self._pending[request_id] = future

    def _fail(self, request_id: int) -> None:
        future = self._pending.pop(request_id, None)
        if future is not None and not future.done():
            future.set_exception(_recv_error())

    async def _write(self, payload: Any) -> bool:
        try:
            self._writer.write(_encode(payload))
            await self._writer.drain()
        except OSError as err:
            log.error("IPC write error: %r", err)
            return False
        return True

    def _feed(self, data: bytes) -> None:
        text = self._buffer + self._utf8.decode(data)
        position = 0
        while True:
            position = _WHITESPACE.match(text, position).end()
            if position >= len(text):
                break
            try:
                value, position = self._json.raw_decode(text, position)
            except json.JSONDecodeError:
                break
            self._dispatch(value)
        self._buffer = text[position:]

    def _dispatch(self, value: Any) -> None:
        if _is_notification(value):
            self._notify(value)
        elif _is_response(value):
            for output in value if isinstance(value, list) else [value]:
                self._respond_output(output)
        else:
            log.warning("JSON is not a response or notification")

    def _notify(self, notification: dict) -> None:
        params = notification.get("params")
        if not isinstance(params, dict):
            return
        sub_id = params.get("subscription")
        if isinstance(sub_id, str) and "result" in params:
            queue = self._subscriptions.get(sub_id)
            if queue is None:
                log.warning("Got notification for unknown subscription (id: %r)", sub_id)
            else:
                queue.put_nowait(params["result"])
        else:
            log.error("Got unsupported notification (id: %r)", sub_id)

    def _respond_output(self, output: dict) -> None:
        request_id = output.get("id")
        if not isinstance(request_id, int) or isinstance(request_id, bool) or request_id < 0:
            log.warning("Got unsupported response (id: %r)", request_id)
            return
        future = self._pending.pop(request_id, None)
        if future is None:
            log.warning("Got response for unknown request (id: %r)", request_id)
        elif future.done():
            log.warning("Sending a response to a dropped request (id: %r)", request_id)
        else:
            future.set_result(output)