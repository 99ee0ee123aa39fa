from __future__ import annotations

import pytest

from flywheel_engine import config
from flywheel_engine.config import DEFAULT_PUMP_LIQUIDITY_WALLET, Settings

ENV_KEYS = (
    "RPC_URL",
    "HELIUS_API_KEY",
    "DEV_WALLET_PRIVATE_KEY",
    "DB_PATH",
    "LOYALTY_MINT",
    "PUMP_LIQUIDITY_WALLET",
    "FEE_THRESHOLD_SOL",
    "FLYWHEEL_INTERVAL_S",
    "JUPITER_API_URL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.setattr(config, "load_dotenv", lambda: None)
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_missing_rpc_is_an_error():
    with pytest.raises(RuntimeError, match="HELIUS_API_KEY"):
        Settings.from_env()


def test_helius_key_builds_url(monkeypatch):
    monkeypatch.setenv("HELIUS_API_KEY", "abc")
    s = Settings.from_env()
    assert s.rpc_url == "https://mainnet.helius-rpc.com/?api-key=abc"
    assert s.pump_liquidity_wallet == DEFAULT_PUMP_LIQUIDITY_WALLET
    assert s.fee_threshold_sol == 0.20


def test_override_and_env_values(monkeypatch):
    monkeypatch.setenv("RPC_URL", "http://env-rpc")
    monkeypatch.setenv("FEE_THRESHOLD_SOL", "0.5")
    monkeypatch.setenv("FLYWHEEL_INTERVAL_S", "60")
    monkeypatch.setenv("JUPITER_API_URL", "https://quote.example/v1/")
    s = Settings.from_env(rpc_url_override="http://cli-rpc", timeout_s=5)
    assert s.rpc_url == "http://cli-rpc"
    assert s.fee_threshold_sol == 0.5
    assert s.flywheel_interval_s == 60.0
    assert s.jupiter_api_url == "https://quote.example/v1"
    assert s.rpc_timeout_s == 5
