"""JSON-RPC building blocks shared by every transport: errors, request helpers and interfaces."""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Iterable, Sequence

JSONRPC_VERSION = "2.0"

Call = dict[str, Any]


class Error(Exception):
    """Base class of every error raised by the transports."""

    def __eq__(self, other: object) -> bool:
        if type(self) is not type(other):
            return NotImplemented
        return self.args == other.args

    def __hash__(self) -> int:
        return hash((type(self), repr(self.args)))


class TransportError(Error):
    """A failure of the underlying transport, described by a message."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class TransportCodeError(TransportError):
    """The transport answered with an unexpected status code."""

    def __init__(self, code: int) -> None:
        super().__init__(f"unexpected status code {code}")
        self.code = code


class RateLimitError(TransportError):
    """The server rate limited the request; retry after some seconds or at a date."""

    def __init__(self, seconds: int | None = None, date: str | None = None) -> None:
        if (seconds is None) == (date is None):
            raise ValueError("exactly one of seconds or date must be given")
        when = f"{seconds} seconds" if seconds is not None else date
        super().__init__(f"rate limited, retry after {when}")
        self.seconds = seconds
        self.date = date


@dataclass
class ErrorObject:
    """The error member of a JSON-RPC failure response."""

    code: int
    message: str
    data: Any = None


class RpcError(Error):
    """The remote end answered with a JSON-RPC error object."""

    def __init__(self, error: ErrorObject) -> None:
        super().__init__(error)
        self.error = error

    def __str__(self) -> str:
        return f"RPC error {self.error.code}: {self.error.message}"


class InvalidResponseError(Error):
    """The response could not be understood."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"invalid response: {self.message}"


class InternalError(Error):
    """A request was dropped or left unanswered inside the library."""

    def __str__(self) -> str:
        return "internal error"


class UnreachableError(Error):
    """The server could not be reached or gave no response."""

    def __str__(self) -> str:
        return "server is unreachable"


def build_request(id: int, method: str, params: Iterable[Any]) -> Call:
    """Build a JSON-RPC 2.0 method call."""
    return {"jsonrpc": JSONRPC_VERSION, "method": method, "params": list(params), "id": id}


def _is_integer(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _parse_error_object(value: Any) -> ErrorObject:
    if not isinstance(value, dict):
        raise InvalidResponseError(f"error member is not an object: {value!r}")
    code = value.get("code")
    message = value.get("message")
    if not _is_integer(code) or not isinstance(message, str):
        raise InvalidResponseError(f"malformed error object: {value!r}")
    return ErrorObject(code=code, message=message, data=value.get("data"))


def to_result_from_output(output: Any) -> Any:
    """Return the result of a JSON-RPC output, raising RpcError for a failure."""
    if not isinstance(output, dict):
        raise InvalidResponseError(f"output is not an object: {output!r}")
    if "error" in output:
        raise RpcError(_parse_error_object(output["error"]))
    if "result" in output:
        return output["result"]
    raise InvalidResponseError(f"output has neither result nor error: {output!r}")


def to_results_from_outputs(outputs: Iterable[Any]) -> list[Any]:
    """Convert outputs to results; failed entries become Error instances."""
    results: list[Any] = []
    for output in outputs:
        try:
            results.append(to_result_from_output(output))
        except Error as err:
            results.append(err)
    return results


def output_id(output: Any) -> int:
    """Return the numeric id of a JSON-RPC output."""
    request_id = output.get("id") if isinstance(output, dict) else None
    if not _is_integer(request_id) or request_id < 0:
        raise InvalidResponseError("response id is not u64")
    return request_id


class Transport(abc.ABC):
    """A channel able to carry single JSON-RPC calls."""

    @abc.abstractmethod
    def prepare(self, method: str, params: Sequence[Any]) -> tuple[int, Call]:
        """Assign an id to a call and build the request."""

    @abc.abstractmethod
    def send(self, id: int, request: Call) -> Awaitable[Any]:
        """Send a prepared request; the awaitable yields its result or raises Error."""

    async def execute(self, method: str, params: Sequence[Any]) -> Any:
        """Prepare and send a call, returning its result."""
        request_id, request = self.prepare(method, params)
        return await self.send(request_id, request)


class BatchTransport(Transport):
    """A transport that can send several calls at once."""

    @abc.abstractmethod
    def send_batch(self, requests: Iterable[tuple[int, Call]]) -> Awaitable[list[Any]]:
        """Send calls together; results come in request order, failures as Error instances."""


class DuplexTransport(Transport):
    """A transport that also delivers subscription notifications."""

    @abc.abstractmethod
    def subscribe(self, id: str) -> AsyncIterator[Any]:
        """Start receiving notifications for a subscription id."""

    @abc.abstractmethod
    def unsubscribe(self, id: str) -> None:
        """Stop receiving notifications for a subscription id."""