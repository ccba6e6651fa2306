import json

import pytest

from ethtransports.rpc import (
    BatchTransport,
    ErrorObject,
    InvalidResponseError,
    RateLimitError,
    RpcError,
    Transport,
    TransportCodeError,
    TransportError,
    build_request,
    output_id,
    to_result_from_output,
    to_results_from_outputs,
)


def test_build_request_wire_format():
    request = build_request(0, "eth_getAccounts", [])
    encoded = json.dumps(request, separators=(",", ":"))
    assert encoded == '{"jsonrpc":"2.0","method":"eth_getAccounts","params":[],"id":0}'


def test_build_request_copies_params():
    params = [{"test": -1}]
    request = build_request(1, "eth_test", params)
    params.append("later")
    assert request["params"] == [{"test": -1}]
    assert request["id"] == 1


def test_result_from_success():
    assert to_result_from_output({"jsonrpc": "2.0", "id": 0, "result": "x"}) == "x"


def test_result_from_failure_raises_rpc_error():
    output = {
        "jsonrpc": "2.0",
        "error": {"code": 0, "message": "we can't execute this request"},
        "id": None,
    }
    with pytest.raises(RpcError) as info:
        to_result_from_output(output)
    assert info.value.error == ErrorObject(0, "we can't execute this request", None)


def test_failure_keeps_data():
    output = {"id": 1, "error": {"code": 15, "message": "string1", "data": "string2"}}
    with pytest.raises(RpcError) as info:
        to_result_from_output(output)
    assert info.value.error.data == "string2"
    assert info.value.error.code == 15


@pytest.mark.parametrize(
    "output",
    [
        {"id": 1, "error": {"code": "red", "message": ""}},
        {"id": 1, "error": {}},
        {"id": 1},
        ["not", "an", "object"],
    ],
)
def test_malformed_outputs_raise_invalid_response(output):
    with pytest.raises(InvalidResponseError):
        to_result_from_output(output)


def test_results_from_outputs_keep_errors_in_place():
    outputs = [
        {"id": 1, "result": {"test": 1}},
        {"id": 2, "error": {"code": 3, "message": "boom"}},
    ]
    results = to_results_from_outputs(outputs)
    assert results[0] == {"test": 1}
    assert results[1] == RpcError(ErrorObject(3, "boom"))


def test_output_id_numeric():
    assert output_id({"id": 5, "result": None}) == 5


@pytest.mark.parametrize("bad_id", ["2", None, True, -1])
def test_output_id_rejects_non_numeric(bad_id):
    with pytest.raises(InvalidResponseError):
        output_id({"id": bad_id, "result": None})


def test_error_equality():
    assert TransportCodeError(429) == TransportCodeError(429)
    assert not TransportCodeError(429) == TransportCodeError(500)
    assert not TransportError("x") == InvalidResponseError("x")


def test_rate_limit_requires_exactly_one_value():
    with pytest.raises(ValueError):
        RateLimitError()
    with pytest.raises(ValueError):
        RateLimitError(seconds=3, date="Mon, 1 Jan 2024 00:00:00 +0000")
    assert RateLimitError(seconds=3).seconds == 3


def test_transport_is_abstract():
    with pytest.raises(TypeError):
        Transport()
    with pytest.raises(TypeError):
        BatchTransport()


class _EchoTransport(Transport):
    def __init__(self):
        self.sent = []

    def prepare(self, method, params):
        return 9, build_request(9, method, params)

    async def send(self, id, request):
        self.sent.append((id, request))
        return request["params"]


@pytest.mark.asyncio
async def test_execute_prepares_and_sends():
    transport = _EchoTransport()
    result = await transport.execute("eth_test", ["a"])
    assert result == ["a"]
    assert transport.sent == [(9, build_request(9, "eth_test", ["a"]))]