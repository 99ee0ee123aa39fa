from __future__ import annotations

import base64
import time
from typing import Any, Dict, List, Optional, Sequence

import httpx

from .project_constants import SPL_TOKEN_ACCOUNT_SIZE

CONFIRMED_STATUSES = ("confirmed", "finalized")


class RpcError(RuntimeError):
    """JSON-RPC error response (or an on-chain transaction error)."""


class RpcClient:
    def __init__(
        self, rpc_url: str, timeout_s: float = 60.0, commitment: str = "confirmed"
    ) -> None:
        self.rpc_url = rpc_url
        self.commitment = commitment
        self.client = httpx.Client(timeout=timeout_s)

    def close(self) -> None:
        self.client.close()

    def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        resp = self.client.post(self.rpc_url, json=payload)
        resp.raise_for_status()
        data = resp.json()
        if "error" in data:
            raise RpcError(f"RPC error: {data['error']}")
        return data

    def _call(self, method: str, params: List[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        return self._post(payload).get("result")

    def get_account_info(self, address: str) -> Optional[Dict[str, Any]]:
        """Returns the account object (lamports, owner, data) or None if missing."""
        result = self._call(
            "getAccountInfo",
            [address, {"encoding": "base64", "commitment": self.commitment}],
        )
        return (result or {}).get("value")

    def get_multiple_accounts(
        self, addresses: Sequence[str]
    ) -> List[Optional[Dict[str, Any]]]:
        """Same as get_account_info for up to 100 addresses, order preserved."""
        if not addresses:
            return []
        result = self._call(
            "getMultipleAccounts",
            [list(addresses), {"encoding": "base64", "commitment": self.commitment}],
        )
        values = (result or {}).get("value")
        if values is None or len(values) != len(addresses):
            raise RpcError("getMultipleAccounts returned an unexpected result.")
        return values

    def get_balance(self, address: str) -> int:
        """Native balance in lamports."""
        result = self._call("getBalance", [address, {"commitment": self.commitment}])
        return int(result["value"])

    def get_token_account_balance(self, address: str) -> int:
        """Raw (smallest unit) balance of a token account."""
        result = self._call(
            "getTokenAccountBalance", [address, {"commitment": self.commitment}]
        )
        return int(result["value"]["amount"])

    def get_program_accounts_base64(
        self,
        program_id: str,
        mint: str,
        classic_token_program: bool,
    ) -> List[str]:
        """
        Returns base64 strings for account data.
        Note: For classic SPL Token accounts, we enforce dataSize=SPL_TOKEN_ACCOUNT_SIZE.
        Token-2022 accounts can vary due to extensions.
        """
        filters: List[Dict[str, Any]] = [{"memcmp": {"offset": 0, "bytes": mint}}]
        if classic_token_program:
            filters.append({"dataSize": SPL_TOKEN_ACCOUNT_SIZE})

        results = self._call(
            "getProgramAccounts",
            [
                program_id,
                {
                    "encoding": "base64",
                    "commitment": self.commitment,
                    "filters": filters,
                },
            ],
        )
        out: List[str] = []
        for item in results or []:
            # item['account']['data'] is [base64_str, "base64"]
            out.append(item["account"]["data"][0])
        return out

    def get_latest_blockhash(self) -> str:
        result = self._call("getLatestBlockhash", [{"commitment": self.commitment}])
        return result["value"]["blockhash"]

    def send_transaction(self, tx: Any) -> str:
        """Submits a signed (legacy or versioned) transaction, returns its signature."""
        encoded = base64.b64encode(bytes(tx)).decode("ascii")
        result = self._call(
            "sendTransaction",
            [
                encoded,
                {
                    "encoding": "base64",
                    "skipPreflight": False,
                    "preflightCommitment": self.commitment,
                    "maxRetries": 2,
                },
            ],
        )
        if not result:
            raise RpcError("sendTransaction returned no signature.")
        return str(result)

    def get_signature_statuses(
        self, signatures: Sequence[str]
    ) -> List[Optional[Dict[str, Any]]]:
        result = self._call(
            "getSignatureStatuses",
            [list(signatures), {"searchTransactionHistory": False}],
        )
        return (result or {}).get("value") or [None] * len(signatures)

    def confirm_transaction(
        self, signature: str, timeout_s: float, poll_s: float = 2.0
    ) -> bool:
        """
        Polls until the signature reaches confirmed/finalized.
        Returns False on timeout. Raises RpcError if the transaction failed on-chain.
        """
        deadline = time.monotonic() + timeout_s
        while True:
            status = self.get_signature_statuses([signature])[0]
            if status:
                if status.get("err") is not None:
                    raise RpcError(f"Transaction {signature} failed: {status['err']}")
                if status.get("confirmationStatus") in CONFIRMED_STATUSES:
                    return True
            if time.monotonic() >= deadline:
                return False
            time.sleep(poll_s)
