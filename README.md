# ethtransports

Asynchronous transports for talking JSON-RPC 2.0 to an Ethereum node, built on `asyncio`.

All transports share a small interface, defined in `ethtransports.rpc`:

- `prepare(method, params)` gives the call an id and returns `(id, call)`. The call is a plain
  dict, `{"jsonrpc": "2.0", "method": ..., "params": [...], "id": ...}`.
- `send(id, call)` returns an awaitable. Awaiting it gives the call's `result` or raises an
  `Error` subclass.
- `execute(method, params)` prepares and sends a call in one step.

A transport that can send several calls at once also has `send_batch(requests)`. It returns
the results in request order. A call that failed appears in that list as an `Error` instance
and is not raised. A transport that receives notifications also has `subscribe(id)`, which
returns an async iterator, and `unsubscribe(id)`.

## Transports

| Class | Module | Batch | Subscriptions |
|-------|--------|-------|---------------|
| `Http` | `ethtransports.http_transport` | yes | no |
| `Ipc` | `ethtransports.ipc` | yes | yes |
| `Batch` | `ethtransports.batch` | queues calls for another batch transport | no |

## HTTP

```python
import asyncio
from ethtransports.http_transport import Http
from ethtransports.http_support import Retries

async def main():
    retries = Retries(max_retries=3, sleep_for=1.0, use_retry_after_header=True)
    async with Http("http://localhost:8545", retries=retries) as http:
        print(await http.execute("eth_blockNumber", []))

asyncio.run(main())
```

Calls are sent as HTTP POST requests with a JSON body. Request ids start at 0. Each batch
also takes one id of its own, which is used only in the log. You can pass an existing
`aiohttp.ClientSession` as `session`, and `close()` leaves that session open. If you do not
pass one, the transport creates a session on first use, and `close()` or leaving the
`async with` block closes it.

Retries are controlled by `Retries` in `ethtransports.http_support`:

- A reply with status 500 or above, or a 429 without a `Retry-After` header, is retried when
  `max_retries` and `sleep_for` are both above zero. The client waits `sleep_for` seconds
  first. Each try lowers `max_retries` by one and doubles `sleep_for`.
- A 429 reply with a `Retry-After` header is retried when `use_retry_after_header` is set or
  `max_retries` is above zero. The client waits for the time the header gives. The header
  may hold a number of seconds or an RFC 2822 date; for a date, the wait is rounded up by
  one second. A header that cannot be read ends the call with `TransportCodeError(429)`.
- Any other status outside 200–299 fails at once with `TransportCodeError`.

A batch reply that is a single JSON-RPC error object raises `RpcError`. A reply with the
wrong number of entries, or with a missing id, raises `InvalidResponseError`. The helpers
`parse_retry_after`, `retry_after_delay`, `handle_possible_error_object` and
`handle_batch_response` are public and have no side effects.

## IPC (Unix domain socket)

```python
from ethtransports.ipc import Ipc

ipc = await Ipc.connect("/tmp/geth.ipc")
block = await ipc.execute("eth_blockNumber", [])

notifications = ipc.subscribe("0x1")
async for value in notifications:
    ...
ipc.unsubscribe("0x1")

await ipc.close()
```

`Ipc.from_streams(reader, writer)` accepts a pair of asyncio streams that are already open.
A background task writes the calls and reads the replies. The replies may come in pieces or
out of order. Request ids start at 1. Notifications of the form
`{"method": ..., "params": {"subscription": id, "result": value}}` go to the matching
subscription. `close()` stops new calls, waits for the answers to pending calls, and then
closes the socket. If the socket closes first, every pending call fails with
`TransportError` and every subscription iterator ends.

## Batching

```python
import asyncio
from ethtransports.batch import Batch

batch = Batch(http)
first = asyncio.ensure_future(batch.execute("eth_blockNumber", []))
second = asyncio.ensure_future(batch.execute("eth_chainId", []))
await asyncio.sleep(0)
results = await batch.submit_batch()
print(await first, await second)
```

`Batch` queues the calls passed to `send` until you call `submit_batch()`. That method sends
them all through the wrapped transport's `send_batch`. Each queued call then gets its own
result. If the whole batch fails, every queued call gets the same error. A call that gets no
entry in the reply fails with `InternalError`.

## Errors

All failures are `ethtransports.rpc.Error` or one of its subclasses:

- `TransportError`: the connection, the send or the read failed, or the reply was not JSON.
- `TransportCodeError`: an HTTP status code that is not a success. Its `code` attribute holds
  the status.
- `RpcError`: the node returned a JSON-RPC error object. Its `error` attribute is an
  `ErrorObject` with `code`, `message` and `data`.
- `InvalidResponseError`: the reply could not be understood.
- `InternalError`: a batched call was left without a result.

Errors compare equal when they have the same type and the same arguments.

## What is not included

There is no WebSocket transport. No transport in this package wraps one of two other
transports. There is no mock transport for tests. Subscriptions are available only over IPC.

## Testing

```
pip install -e .[test]
pytest
```