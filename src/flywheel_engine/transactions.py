from __future__ import annotations

import logging
import struct
from typing import Any, List, Sequence

import httpx
from solders.compute_budget import set_compute_unit_price
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction

from .project_constants import (
    ACCOUNT_LOOKUP_ATTEMPTS,
    ACCOUNT_LOOKUP_DELAY_S,
    ASSOCIATED_TOKEN_PROGRAM_ID,
    CONFIRM_TIMEOUT_S,
    TOKEN_2022_PROGRAM_ID,
)
from .retry import retry_call
from .rpc import RpcError

logger = logging.getLogger(__name__)

ATA_PROGRAM = Pubkey.from_string(ASSOCIATED_TOKEN_PROGRAM_ID)
TOKEN_2022 = Pubkey.from_string(TOKEN_2022_PROGRAM_ID)

# SPL token instruction tags
_TRANSFER_CHECKED = 12
_CLOSE_ACCOUNT = 9
# Associated token account instruction tags
_ATA_CREATE_IDEMPOTENT = 1


class TransactionFailed(RuntimeError):
    """Submission error, on-chain error, or confirmation timeout."""


def get_associated_token_address(
    owner: Pubkey, mint: Pubkey, token_program: Pubkey = TOKEN_2022
) -> Pubkey:
    """Derive the associated token account address."""
    seeds = [bytes(owner), bytes(token_program), bytes(mint)]
    ata, _ = Pubkey.find_program_address(seeds, ATA_PROGRAM)
    return ata


def build_create_ata_idempotent_ix(
    payer: Pubkey,
    owner: Pubkey,
    mint: Pubkey,
    token_program: Pubkey = TOKEN_2022,
) -> Instruction:
    """CreateIdempotent: succeeds even if the account already exists."""
    ata = get_associated_token_address(owner, mint, token_program)
    accounts = [
        AccountMeta(pubkey=payer, is_signer=True, is_writable=True),
        AccountMeta(pubkey=ata, is_signer=False, is_writable=True),
        AccountMeta(pubkey=owner, is_signer=False, is_writable=False),
        AccountMeta(pubkey=mint, is_signer=False, is_writable=False),
        AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=token_program, is_signer=False, is_writable=False),
    ]
    return Instruction(ATA_PROGRAM, bytes([_ATA_CREATE_IDEMPOTENT]), accounts)


def build_transfer_checked_ix(
    source_ata: Pubkey,
    mint: Pubkey,
    dest_ata: Pubkey,
    owner: Pubkey,
    amount: int,
    decimals: int,
    token_program: Pubkey = TOKEN_2022,
) -> Instruction:
    data = struct.pack("<BQB", _TRANSFER_CHECKED, amount, decimals)
    accounts = [
        AccountMeta(pubkey=source_ata, is_signer=False, is_writable=True),
        AccountMeta(pubkey=mint, is_signer=False, is_writable=False),
        AccountMeta(pubkey=dest_ata, is_signer=False, is_writable=True),
        AccountMeta(pubkey=owner, is_signer=True, is_writable=False),
    ]
    return Instruction(token_program, data, accounts)


def build_close_account_ix(
    account: Pubkey, destination: Pubkey, owner: Pubkey, token_program: Pubkey
) -> Instruction:
    accounts = [
        AccountMeta(pubkey=account, is_signer=False, is_writable=True),
        AccountMeta(pubkey=destination, is_signer=False, is_writable=True),
        AccountMeta(pubkey=owner, is_signer=True, is_writable=False),
    ]
    return Instruction(token_program, bytes([_CLOSE_ACCOUNT]), accounts)


def build_sol_transfer_ix(source: Pubkey, dest: Pubkey, lamports: int) -> Instruction:
    return transfer(TransferParams(from_pubkey=source, to_pubkey=dest, lamports=lamports))


def accounts_exist(rpc: Any, addresses: Sequence[Pubkey]) -> List[bool]:
    """Existence lookup with bounded retry (read-only, safe to repeat)."""
    infos = retry_call(
        lambda: rpc.get_multiple_accounts([str(a) for a in addresses]),
        attempts=ACCOUNT_LOOKUP_ATTEMPTS,
        delay_s=ACCOUNT_LOOKUP_DELAY_S,
        what="account lookup",
    )
    return [info is not None for info in infos]


def send_and_confirm(
    rpc: Any,
    instructions: Sequence[Instruction],
    signer: Keypair,
    priority_fee_microlamports: int = 0,
    timeout_s: float = CONFIRM_TIMEOUT_S,
) -> str:
    """
    Signs, submits once and waits (bounded) for confirmation.
    Submission is never retried here: a timeout is reported as a failure and
    must be reconciled from the audit log, not resent.
    """
    ixs: List[Instruction] = []
    if priority_fee_microlamports > 0:
        ixs.append(set_compute_unit_price(priority_fee_microlamports))
    ixs.extend(instructions)

    blockhash = Hash.from_string(
        retry_call(
            rpc.get_latest_blockhash,
            attempts=ACCOUNT_LOOKUP_ATTEMPTS,
            delay_s=ACCOUNT_LOOKUP_DELAY_S,
            what="getLatestBlockhash",
        )
    )
    msg = Message.new_with_blockhash(ixs, signer.pubkey(), blockhash)
    tx = Transaction([signer], msg, blockhash)

    try:
        sig = rpc.send_transaction(tx)
    except (RpcError, httpx.HTTPError) as e:
        raise TransactionFailed(f"send failed: {e}") from e

    logger.debug("Submitted %s (%d instructions)", sig, len(ixs))
    try:
        confirmed = rpc.confirm_transaction(sig, timeout_s)
    except (RpcError, httpx.HTTPError) as e:
        raise TransactionFailed(str(e)) from e
    if not confirmed:
        raise TransactionFailed(f"confirmation timed out after {timeout_s:.0f}s: {sig}")
    return sig
