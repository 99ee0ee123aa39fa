from __future__ import annotations

import base64
import sys
from pathlib import Path

import pytest

# Ensure local "src/" takes precedence over any installed copy.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

src_str = str(SRC)
if src_str not in sys.path:
    sys.path.insert(0, src_str)

from solders.hash import Hash  # noqa: E402
from solders.keypair import Keypair  # noqa: E402
from solders.pubkey import Pubkey  # noqa: E402

from flywheel_engine.config import Settings  # noqa: E402
from flywheel_engine.project_constants import REWARD_MINT, SPL_TOKEN_ACCOUNT_SIZE  # noqa: E402
from flywheel_engine.rpc import RpcError  # noqa: E402
from flywheel_engine.state import AccountingContext, EngineDeps  # noqa: E402
from flywheel_engine.store import Store  # noqa: E402
from flywheel_engine.swap import SwapResult  # noqa: E402
from flywheel_engine.token_accounts import encode_token_account  # noqa: E402
from flywheel_engine.transactions import get_associated_token_address  # noqa: E402


def new_address() -> str:
    return str(Pubkey.new_unique())


def account_b64(mint: str, owner: str, amount: int, size: int = SPL_TOKEN_ACCOUNT_SIZE) -> str:
    raw = encode_token_account(mint, owner, amount)
    return base64.b64encode(raw.ljust(size, b"\x00")).decode("ascii")


def reward_ata(owner: str) -> str:
    return str(get_associated_token_address(Pubkey.from_string(owner), Pubkey.from_string(REWARD_MINT)))


class FakeLedger:
    """In-memory stand-in for RpcClient. Records every submission."""

    def __init__(self) -> None:
        self.balances = {}  # address -> lamports
        self.token_balances = {}  # token account -> raw amount
        self.accounts = {}  # address -> account info dict
        self.program_accounts = {}  # mint -> [base64 account data]
        self.program_calls = []
        self.failing_mints = set()
        self.fail_sends = set()  # 1-based submission numbers that raise
        self.unconfirmed = set()  # signatures that never confirm
        self.sent = []
        self.send_attempts = 0
        self.lookup_calls = 0

    def get_account_info(self, address):
        return self.accounts.get(address)

    def get_multiple_accounts(self, addresses):
        self.lookup_calls += 1
        return [self.accounts.get(a) for a in addresses]

    def get_balance(self, address):
        return self.balances.get(address, 0)

    def get_token_account_balance(self, address):
        if address not in self.token_balances:
            raise RpcError("could not find account")
        return self.token_balances[address]

    def get_program_accounts_base64(self, program_id, mint, classic_token_program):
        self.program_calls.append((program_id, mint, classic_token_program))
        if mint in self.failing_mints:
            raise RpcError("getProgramAccounts timed out")
        return list(self.program_accounts.get(mint, []))

    def get_latest_blockhash(self):
        return str(Hash.default())

    def send_transaction(self, tx):
        self.send_attempts += 1
        if self.send_attempts in self.fail_sends:
            raise RpcError("Transaction simulation failed")
        self.sent.append(tx)
        return f"sig{self.send_attempts}"

    def confirm_transaction(self, signature, timeout_s, poll_s=2.0):
        return signature not in self.unconfirmed


class FakeSwapper:
    def __init__(self, out_amount: int = 0, fail: bool = False) -> None:
        self.out_amount = out_amount
        self.fail = fail
        self.calls = []

    def swap(self, amount_in, output_mint, signer):
        self.calls.append((amount_in, output_mint))
        if self.fail:
            return None
        return SwapResult(signature="swapsig", out_amount=self.out_amount)


@pytest.fixture(autouse=True)
def sleeps(monkeypatch):
    """time.sleep becomes a recorder so cycles run instantly."""
    calls = []
    monkeypatch.setattr("time.sleep", lambda s: calls.append(s))
    return calls


@pytest.fixture
def settings(tmp_path):
    return Settings(
        rpc_url="http://127.0.0.1:8899",
        db_path=str(tmp_path / "engine.db"),
        loyalty_mint=new_address(),
        priority_fee_microlamports=0,
    )


@pytest.fixture
def store(settings):
    s = Store(settings.db_path)
    s.init_schema()
    return s


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def deps(ledger, store, settings):
    return EngineDeps(
        rpc=ledger,
        store=store,
        signer=Keypair(),
        context=AccountingContext(),
        settings=settings,
    )
