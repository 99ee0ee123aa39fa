"""Open-market buy through the Jupiter aggregator."""
from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from solders.keypair import Keypair
from solders.transaction import VersionedTransaction

from .config import DEFAULT_JUPITER_API_URL
from .project_constants import CONFIRM_TIMEOUT_S, WSOL_MINT
from .rpc import RpcError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SwapResult:
    signature: str
    out_amount: int


class JupiterSwapper:
    def __init__(
        self,
        rpc: Any,
        api_url: str = DEFAULT_JUPITER_API_URL,
        slippage_bps: int = 100,
        timeout_s: float = 30.0,
    ) -> None:
        self.rpc = rpc
        self.api_url = api_url.rstrip("/")
        self.slippage_bps = slippage_bps
        self.client = httpx.Client(timeout=timeout_s)

    def close(self) -> None:
        self.client.close()

    def get_quote(self, input_mint: str, output_mint: str, amount_in: int) -> Dict[str, Any]:
        resp = self.client.get(
            f"{self.api_url}/quote",
            params={
                "inputMint": input_mint,
                "outputMint": output_mint,
                "amount": amount_in,
                "slippageBps": self.slippage_bps,
            },
        )
        resp.raise_for_status()
        return resp.json()

    def get_swap_transaction(self, quote: Dict[str, Any], user_pubkey: str) -> str:
        resp = self.client.post(
            f"{self.api_url}/swap",
            json={
                "quoteResponse": quote,
                "userPublicKey": user_pubkey,
                "wrapAndUnwrapSol": True,
            },
        )
        resp.raise_for_status()
        return resp.json()["swapTransaction"]

    def swap(self, amount_in: int, output_mint: str, signer: Keypair) -> Optional[SwapResult]:
        """SOL (lamports) -> output_mint. Returns None on any failure."""
        try:
            quote = self.get_quote(WSOL_MINT, output_mint, amount_in)
            swap_b64 = self.get_swap_transaction(quote, str(signer.pubkey()))

            try:
                unsigned = VersionedTransaction.from_bytes(base64.b64decode(swap_b64))
                tx = VersionedTransaction(unsigned.message, [signer])
            except Exception as e:
                # solders raises its own error types for bad bytes and signer mismatch.
                logger.error("Jupiter swap transaction unusable: %s", e)
                return None

            sig = self.rpc.send_transaction(tx)
            if not self.rpc.confirm_transaction(sig, CONFIRM_TIMEOUT_S):
                logger.error("Jupiter swap not confirmed in time: %s", sig)
                return None
        except (httpx.HTTPError, RpcError, KeyError, ValueError) as e:
            logger.error("Jupiter swap error: %s", e)
            return None

        out_amount = int(quote.get("outAmount", 0))
        logger.info("Jupiter swap completed: SOL -> %s... (%s, out=%d)", output_mint[:5], sig, out_amount)
        return SwapResult(signature=sig, out_amount=out_amount)
