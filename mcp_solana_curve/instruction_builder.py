"""
Builders for bonding curve program instructions.

Each function encodes the command payload and lays out the account metas in the exact
order the processor expects, deriving every program address from its seeds.
"""
from typing import List, Sequence

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from spl.token.constants import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_PROGRAM_ID
from spl.token.instructions import get_associated_token_address

from mcp_solana_curve.accounts import (
    METADATA_PROGRAM_ID,
    find_bonding_curve_address,
    find_metadata_address,
    find_trading_stats_address,
    find_treasury_address,
    find_user_profile_address,
)
from mcp_solana_curve.config import PROGRAM_ID
from mcp_solana_curve.instructions import BuyTokens, GetLeaderboard, Initialize, SellTokens, UpdateProfile


def _meta(pubkey: Pubkey, is_signer: bool = False, is_writable: bool = False) -> AccountMeta:
    return AccountMeta(pubkey=pubkey, is_signer=is_signer, is_writable=is_writable)


def initialize_instruction(
    command: Initialize,
    authority: Pubkey,
    mint: Pubkey,
    payer: Pubkey,
    program_id: Pubkey = PROGRAM_ID,
) -> Instruction:
    """The mint is a fresh keypair and signs alongside the authority and payer."""
    curve, _ = find_bonding_curve_address(mint, program_id)
    treasury, _ = find_treasury_address(mint, program_id)
    stats, _ = find_trading_stats_address(mint, authority, program_id)
    accounts = [
        _meta(authority, is_signer=True, is_writable=True),
        _meta(curve, is_writable=True),
        _meta(mint, is_signer=True, is_writable=True),
        _meta(treasury, is_writable=True),
        _meta(get_associated_token_address(authority, mint), is_writable=True),
        _meta(payer, is_signer=True, is_writable=True),
        _meta(command.fee_recipient, is_writable=True),
        _meta(stats, is_writable=True),
        _meta(SYSTEM_PROGRAM_ID),
        _meta(TOKEN_PROGRAM_ID),
        _meta(ASSOCIATED_TOKEN_PROGRAM_ID),
    ]
    if command.with_metadata or command.has_metadata or command.creator_username:
        accounts += [
            _meta(find_metadata_address(mint)[0], is_writable=True),
            _meta(METADATA_PROGRAM_ID),
        ]
    return Instruction(program_id, command.encode(), accounts)


def buy_instruction(
    buyer: Pubkey,
    mint: Pubkey,
    fee_recipient: Pubkey,
    token_amount: int,
    max_sol_amount: int,
    program_id: Pubkey = PROGRAM_ID,
) -> Instruction:
    curve, _ = find_bonding_curve_address(mint, program_id)
    treasury, _ = find_treasury_address(mint, program_id)
    stats, _ = find_trading_stats_address(mint, buyer, program_id)
    accounts = [
        _meta(buyer, is_signer=True, is_writable=True),
        _meta(curve, is_writable=True),
        _meta(mint, is_writable=True),
        _meta(get_associated_token_address(buyer, mint), is_writable=True),
        _meta(treasury, is_writable=True),
        _meta(fee_recipient, is_writable=True),
        _meta(stats, is_writable=True),
        _meta(SYSTEM_PROGRAM_ID),
        _meta(TOKEN_PROGRAM_ID),
        _meta(ASSOCIATED_TOKEN_PROGRAM_ID),
    ]
    return Instruction(program_id, BuyTokens(token_amount, max_sol_amount).encode(), accounts)


def sell_instruction(
    seller: Pubkey,
    mint: Pubkey,
    fee_recipient: Pubkey,
    token_amount: int,
    min_sol_amount: int,
    program_id: Pubkey = PROGRAM_ID,
) -> Instruction:
    curve, _ = find_bonding_curve_address(mint, program_id)
    treasury, _ = find_treasury_address(mint, program_id)
    stats, _ = find_trading_stats_address(mint, seller, program_id)
    accounts = [
        _meta(seller, is_signer=True, is_writable=True),
        _meta(curve, is_writable=True),
        _meta(mint, is_writable=True),
        _meta(get_associated_token_address(seller, mint), is_writable=True),
        _meta(treasury, is_writable=True),
        _meta(fee_recipient, is_writable=True),
        _meta(stats, is_writable=True),
        _meta(TOKEN_PROGRAM_ID),
        _meta(SYSTEM_PROGRAM_ID),
    ]
    return Instruction(program_id, SellTokens(token_amount, min_sol_amount).encode(), accounts)


def update_profile_instruction(user: Pubkey, username: str, bio: str = "",
                               program_id: Pubkey = PROGRAM_ID) -> Instruction:
    profile, _ = find_user_profile_address(user, program_id)
    accounts = [
        _meta(profile, is_writable=True),
        _meta(user, is_signer=True, is_writable=True),
        _meta(SYSTEM_PROGRAM_ID),
    ]
    return Instruction(program_id, UpdateProfile(username, bio).encode(), accounts)


def get_leaderboard_instruction(mint: Pubkey, traders: Sequence[Pubkey], limit: int, offset: int = 0,
                                program_id: Pubkey = PROGRAM_ID) -> Instruction:
    accounts: List[AccountMeta] = [
        _meta(find_trading_stats_address(mint, trader, program_id)[0]) for trader in traders
    ]
    return Instruction(program_id, GetLeaderboard(limit, offset).encode(), accounts)
