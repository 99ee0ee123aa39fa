from __future__ import annotations

import json

import httpx
import pytest

from flywheel_engine.rpc import RpcClient, RpcError


def _client(handler):
    rpc = RpcClient("http://rpc.test")
    rpc.client = httpx.Client(transport=httpx.MockTransport(handler))
    return rpc


def _reply(result):
    def handler(request):
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": result})

    return handler


def test_program_account_filters():
    seen = {}

    def handler(request):
        seen.update(json.loads(request.content))
        return httpx.Response(
            200,
            json={"jsonrpc": "2.0", "id": 1, "result": [{"account": {"data": ["AAAA", "base64"]}}]},
        )

    rpc = _client(handler)
    assert rpc.get_program_accounts_base64("Prog", "Mint", classic_token_program=True) == ["AAAA"]
    filters = seen["params"][1]["filters"]
    assert {"memcmp": {"offset": 0, "bytes": "Mint"}} in filters
    assert {"dataSize": 165} in filters


def test_error_response_raises():
    rpc = _client(lambda request: httpx.Response(200, json={"error": {"code": -32002}}))
    with pytest.raises(RpcError):
        rpc.get_balance("addr")


def test_http_status_raises():
    rpc = _client(lambda request: httpx.Response(429))
    with pytest.raises(httpx.HTTPStatusError):
        rpc.get_latest_blockhash()


def test_token_balance_is_raw_amount():
    rpc = _client(_reply({"value": {"amount": "5000000", "decimals": 6, "uiAmount": 5.0}}))
    assert rpc.get_token_account_balance("ata") == 5_000_000


def test_multiple_accounts_length_mismatch_raises():
    rpc = _client(_reply({"value": [None]}))
    with pytest.raises(RpcError):
        rpc.get_multiple_accounts(["a", "b"])


def test_confirm_reports_onchain_error():
    rpc = _client(_reply({"value": [{"err": {"InstructionError": [0, "Custom"]}}]}))
    with pytest.raises(RpcError):
        rpc.confirm_transaction("sig", timeout_s=1)


def test_confirm_accepts_confirmed_status():
    rpc = _client(_reply({"value": [{"err": None, "confirmationStatus": "confirmed"}]}))
    assert rpc.confirm_transaction("sig", timeout_s=1) is True
