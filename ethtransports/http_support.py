"""Pure helpers of the HTTP transport: retry policy, Retry-After handling and batch responses."""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Sequence

from .rpc import Error, InvalidResponseError, RpcError, output_id, to_result_from_output

_U64_MAX = 2**64 - 1
_SECONDS = re.compile(r"\+?[0-9]+")


@dataclass(frozen=True)
class Retries:
    """Retry policy for rate limited (429) and failed (500+) requests.

    ``sleep_for`` is in seconds and doubles on every retry.
    """

    max_retries: int = 0
    sleep_for: float = 0.0
    use_retry_after_header: bool = False

    def step(self) -> "Retries":
        """Return the policy for the next attempt."""
        return replace(
            self,
            max_retries=max(0, self.max_retries - 1),
            sleep_for=self.sleep_for * 2,
        )


def parse_retry_after(value: str | None) -> int | str | None:
    """Interpret a Retry-After header: seconds as int, anything else as a date string."""
    if value is None:
        return None
    if _SECONDS.fullmatch(value):
        seconds = int(value)
        if seconds <= _U64_MAX:
            return seconds
    return value


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def retry_after_delay(value: str, now: datetime | None = None) -> int | None:
    """Seconds to wait until an RFC 2822 date, rounded up by one; None if it does not parse."""
    try:
        until = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if until is None:
        return None
    current = _as_utc(now) if now is not None else datetime.now(timezone.utc)
    seconds = int((_as_utc(until) - current).total_seconds()) + 1
    return seconds if seconds > 0 else 0


def _is_output(value: Any) -> bool:
    return isinstance(value, dict) and ("result" in value or "error" in value)


def handle_possible_error_object(value: Any) -> list[Any]:
    """Return the outputs of a batch response, raising when the server sent a single object."""
    if isinstance(value, dict):
        try:
            to_result_from_output(value)
        except RpcError:
            raise
        except Error as err:
            raise InvalidResponseError(f"Invalid response for batched request: {err}") from err
        raise InvalidResponseError(f"Invalid response for batched request: {value!r}")
    if not isinstance(value, list):
        raise InvalidResponseError(f"batch response is not an array: {value!r}")
    for output in value:
        if not _is_output(output):
            raise InvalidResponseError(f"batch entry is not a JSON-RPC output: {output!r}")
    return value


def handle_batch_response(ids: Sequence[int], outputs: Sequence[Any]) -> list[Any]:
    """Put batch results back into request order; failures become Error instances."""
    if len(ids) != len(outputs):
        raise InvalidResponseError("unexpected number of responses")
    by_id: dict[int, Any] = {}
    for output in outputs:
        request_id = output_id(output)
        try:
            by_id[request_id] = to_result_from_output(output)
        except Error as err:
            by_id[request_id] = err
    results = []
    for request_id in ids:
        if request_id not in by_id:
            raise InvalidResponseError(f"batch response is missing id {request_id}")
        results.append(by_id.pop(request_id))
    return results