from __future__ import annotations

import os
from dataclasses import dataclass
from dotenv import load_dotenv

DEFAULT_PUMP_LIQUIDITY_WALLET = "39azUYFWPz3VHgKCf3VChUwbpURdCHRxjWVowf5jUJjg"
DEFAULT_JUPITER_API_URL = "https://lite-api.jup.ag/swap/v1"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else float(default)


@dataclass(frozen=True)
class Settings:
    rpc_url: str
    dev_wallet_private_key: str = ""
    db_path: str = "data/flywheel.db"
    loyalty_mint: str = ""
    pump_liquidity_wallet: str = DEFAULT_PUMP_LIQUIDITY_WALLET
    fee_threshold_sol: float = 0.20
    holder_update_interval_s: float = 300.0
    loyalty_sync_interval_s: float = 120.0
    flywheel_interval_s: float = 300.0
    priority_fee_microlamports: int = 100_000
    jupiter_api_url: str = DEFAULT_JUPITER_API_URL
    rpc_timeout_s: float = 60.0

    @staticmethod
    def from_env(
        rpc_url_override: str | None = None, timeout_s: float | None = None
    ) -> "Settings":
        load_dotenv()

        # If user provides --rpc-url, trust it.
        rpc_url = (rpc_url_override or "").strip() or os.getenv("RPC_URL", "").strip()
        if not rpc_url:
            # Otherwise build helius url from key.
            helius_key = os.getenv("HELIUS_API_KEY", "").strip()
            if not helius_key:
                raise RuntimeError(
                    "Missing HELIUS_API_KEY (or RPC_URL). Put it in .env or export it."
                )
            rpc_url = f"https://mainnet.helius-rpc.com/?api-key={helius_key}"

        return Settings(
            rpc_url=rpc_url,
            dev_wallet_private_key=os.getenv("DEV_WALLET_PRIVATE_KEY", "").strip(),
            db_path=os.getenv("DB_PATH", "data/flywheel.db").strip(),
            loyalty_mint=os.getenv("LOYALTY_MINT", "").strip(),
            pump_liquidity_wallet=os.getenv(
                "PUMP_LIQUIDITY_WALLET", DEFAULT_PUMP_LIQUIDITY_WALLET
            ).strip(),
            fee_threshold_sol=_env_float("FEE_THRESHOLD_SOL", 0.20),
            holder_update_interval_s=_env_float("HOLDER_UPDATE_INTERVAL_S", 300.0),
            loyalty_sync_interval_s=_env_float("LOYALTY_SYNC_INTERVAL_S", 120.0),
            flywheel_interval_s=_env_float("FLYWHEEL_INTERVAL_S", 300.0),
            priority_fee_microlamports=int(
                _env_float("PRIORITY_FEE_MICROLAMPORTS", 100_000)
            ),
            jupiter_api_url=os.getenv("JUPITER_API_URL", DEFAULT_JUPITER_API_URL)
            .strip()
            .rstrip("/"),
            rpc_timeout_s=timeout_s if timeout_s is not None else 60.0,
        )
