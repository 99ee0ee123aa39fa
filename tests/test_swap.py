from __future__ import annotations

import base64

import httpx
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from flywheel_engine.project_constants import REWARD_MINT, WSOL_MINT
from flywheel_engine.swap import JupiterSwapper


def _unsigned_swap_tx(signer):
    ix = transfer(TransferParams(from_pubkey=signer.pubkey(), to_pubkey=Pubkey.new_unique(), lamports=1))
    msg = MessageV0.try_compile(signer.pubkey(), [ix], [], Hash.default())
    return base64.b64encode(bytes(VersionedTransaction(msg, [signer]))).decode("ascii")


def _swapper(ledger, handler):
    swapper = JupiterSwapper(ledger, api_url="https://jup.test/swap/v1/")
    swapper.client = httpx.Client(transport=httpx.MockTransport(handler))
    return swapper


def test_swap_signs_and_submits(ledger):
    signer = Keypair()
    seen = []

    def handler(request):
        seen.append(request.url.path)
        if request.url.path.endswith("/quote"):
            assert request.url.params["inputMint"] == WSOL_MINT
            assert request.url.params["amount"] == "950"
            return httpx.Response(200, json={"outAmount": "777"})
        return httpx.Response(200, json={"swapTransaction": _unsigned_swap_tx(signer)})

    result = _swapper(ledger, handler).swap(950, REWARD_MINT, signer)

    assert seen == ["/swap/v1/quote", "/swap/v1/swap"]
    assert result.signature == "sig1"
    assert result.out_amount == 777
    assert len(ledger.sent) == 1


def test_quote_failure_returns_none(ledger):
    result = _swapper(ledger, lambda request: httpx.Response(500)).swap(1, REWARD_MINT, Keypair())
    assert result is None
    assert ledger.send_attempts == 0


def test_unconfirmed_swap_returns_none(ledger):
    signer = Keypair()
    ledger.unconfirmed.add("sig1")

    def handler(request):
        if request.url.path.endswith("/quote"):
            return httpx.Response(200, json={"outAmount": "1"})
        return httpx.Response(200, json={"swapTransaction": _unsigned_swap_tx(signer)})

    assert _swapper(ledger, handler).swap(1, REWARD_MINT, signer) is None


def test_transaction_for_another_wallet_is_not_sent(ledger):
    def handler(request):
        if request.url.path.endswith("/quote"):
            return httpx.Response(200, json={"outAmount": "1"})
        return httpx.Response(200, json={"swapTransaction": _unsigned_swap_tx(Keypair())})

    assert _swapper(ledger, handler).swap(1, REWARD_MINT, Keypair()) is None
    assert ledger.send_attempts == 0


def test_undecodable_transaction_is_not_sent(ledger):
    def handler(request):
        if request.url.path.endswith("/quote"):
            return httpx.Response(200, json={"outAmount": "1"})
        return httpx.Response(200, json={"swapTransaction": "AAAA"})

    assert _swapper(ledger, handler).swap(1, REWARD_MINT, Keypair()) is None
    assert ledger.send_attempts == 0
