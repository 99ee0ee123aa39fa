"""Pump.fun bonding-curve and AMM addresses plus creator-fee claim instructions."""
from __future__ import annotations

from dataclasses import dataclass
from typing import List

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID

from .project_constants import (
    PUMP_AMM_PROGRAM_ID,
    PUMP_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    WSOL_MINT,
)
from .transactions import (
    build_close_account_ix,
    build_create_ata_idempotent_ix,
    get_associated_token_address,
)

PUMP_PROGRAM = Pubkey.from_string(PUMP_PROGRAM_ID)
PUMP_AMM_PROGRAM = Pubkey.from_string(PUMP_AMM_PROGRAM_ID)
TOKEN_PROGRAM = Pubkey.from_string(TOKEN_PROGRAM_ID)
WSOL = Pubkey.from_string(WSOL_MINT)

# Anchor discriminators
COLLECT_CREATOR_FEE = bytes([20, 22, 86, 123, 198, 28, 219, 132])
COLLECT_COIN_CREATOR_FEE = bytes([160, 57, 89, 42, 181, 139, 43, 66])


@dataclass(frozen=True)
class CreatorFeeVaults:
    bc_vault: Pubkey
    amm_vault_authority: Pubkey
    amm_vault_ata: Pubkey


def bonding_curve_address(mint: str) -> str:
    pda, _ = Pubkey.find_program_address(
        [b"bonding-curve", bytes(Pubkey.from_string(mint))], PUMP_PROGRAM
    )
    return str(pda)


def event_authority(program: Pubkey) -> Pubkey:
    pda, _ = Pubkey.find_program_address([b"__event_authority"], program)
    return pda


def creator_fee_vaults(creator: Pubkey) -> CreatorFeeVaults:
    bc_vault, _ = Pubkey.find_program_address(
        [b"creator-vault", bytes(creator)], PUMP_PROGRAM
    )
    amm_auth, _ = Pubkey.find_program_address(
        [b"creator_vault", bytes(creator)], PUMP_AMM_PROGRAM
    )
    amm_ata = get_associated_token_address(amm_auth, WSOL, TOKEN_PROGRAM)
    return CreatorFeeVaults(bc_vault=bc_vault, amm_vault_authority=amm_auth, amm_vault_ata=amm_ata)


def build_claim_bonding_curve_fees_ix(creator: Pubkey, vaults: CreatorFeeVaults) -> Instruction:
    accounts = [
        AccountMeta(pubkey=creator, is_signer=False, is_writable=True),
        AccountMeta(pubkey=vaults.bc_vault, is_signer=False, is_writable=True),
        AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=event_authority(PUMP_PROGRAM), is_signer=False, is_writable=False),
        AccountMeta(pubkey=PUMP_PROGRAM, is_signer=False, is_writable=False),
    ]
    return Instruction(PUMP_PROGRAM, COLLECT_CREATOR_FEE, accounts)


def build_claim_amm_fees_ixs(creator: Pubkey, vaults: CreatorFeeVaults) -> List[Instruction]:
    """Claim into a temporary WSOL account, then close it to unwrap to SOL."""
    wsol_ata = get_associated_token_address(creator, WSOL, TOKEN_PROGRAM)
    accounts = [
        AccountMeta(pubkey=WSOL, is_signer=False, is_writable=False),
        AccountMeta(pubkey=TOKEN_PROGRAM, is_signer=False, is_writable=False),
        AccountMeta(pubkey=creator, is_signer=True, is_writable=False),
        AccountMeta(pubkey=vaults.amm_vault_authority, is_signer=False, is_writable=False),
        AccountMeta(pubkey=vaults.amm_vault_ata, is_signer=False, is_writable=True),
        AccountMeta(pubkey=wsol_ata, is_signer=False, is_writable=True),
        AccountMeta(pubkey=event_authority(PUMP_AMM_PROGRAM), is_signer=False, is_writable=False),
        AccountMeta(pubkey=PUMP_AMM_PROGRAM, is_signer=False, is_writable=False),
    ]
    return [
        build_create_ata_idempotent_ix(creator, creator, WSOL, TOKEN_PROGRAM),
        Instruction(PUMP_AMM_PROGRAM, COLLECT_COIN_CREATOR_FEE, accounts),
        build_close_account_ix(wsol_ata, creator, creator, TOKEN_PROGRAM),
    ]
