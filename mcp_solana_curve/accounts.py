"""
Account roles, derived addresses and per-instruction account validation.

Every instruction receives an ordered list of ``AccountInfo`` entries. The ``*Accounts``
dataclasses below give each position its role name; their ``validate`` methods check
signer and writable flags, program identities, owners, and recompute every derived
address from its seeds instead of trusting the address the caller supplied.

Derived addresses (all under the program id unless noted):
- bonding curve: ("bonding_curve", mint)
- treasury:      ("treasury", mint), a system-owned account holding the reserve
- trading stats: ("trading_stats", mint, trader)
- user profile:  ("user_profile", user)
- metadata:      ("metadata", metadata_program, mint) under the metadata program
- token accounts are associated token addresses of (owner, mint)
"""
from dataclasses import dataclass, field, fields
from typing import List, Optional, Sequence, Tuple

from construct import ConstructError
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from spl.token._layouts import ACCOUNT_LAYOUT
from spl.token.constants import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_PROGRAM_ID
from spl.token.instructions import get_associated_token_address

from mcp_solana_curve.errors import (
    AccountNotWritableError,
    AccountValidationError,
    IncorrectProgramIdError,
    InvalidAccountDataError,
    InvalidAccountOwnerError,
    InvalidSeedsError,
    MissingSignatureError,
    NotEnoughAccountKeysError,
)

METADATA_PROGRAM_ID = Pubkey.from_string("metaqbxxUerdq28cj1RbAWkYQm3ybzjb6a8bt518x1s")

BONDING_CURVE_SEED = b"bonding_curve"
TREASURY_SEED = b"treasury"
TRADING_STATS_SEED = b"trading_stats"
USER_PROFILE_SEED = b"user_profile"
METADATA_SEED = b"metadata"


@dataclass
class AccountInfo:
    """One account as handed to the processor by the host."""

    key: Pubkey
    is_signer: bool = False
    is_writable: bool = False
    owner: Pubkey = SYSTEM_PROGRAM_ID
    lamports: int = 0
    data: bytes = b""

    @property
    def is_empty(self) -> bool:
        return not self.data


# --- Derived Addresses ---

def find_bonding_curve_address(mint: Pubkey, program_id: Pubkey) -> Tuple[Pubkey, int]:
    return Pubkey.find_program_address([BONDING_CURVE_SEED, bytes(mint)], program_id)


def find_treasury_address(mint: Pubkey, program_id: Pubkey) -> Tuple[Pubkey, int]:
    return Pubkey.find_program_address([TREASURY_SEED, bytes(mint)], program_id)


def find_trading_stats_address(mint: Pubkey, trader: Pubkey, program_id: Pubkey) -> Tuple[Pubkey, int]:
    return Pubkey.find_program_address([TRADING_STATS_SEED, bytes(mint), bytes(trader)], program_id)


def find_user_profile_address(user: Pubkey, program_id: Pubkey) -> Tuple[Pubkey, int]:
    return Pubkey.find_program_address([USER_PROFILE_SEED, bytes(user)], program_id)


def find_metadata_address(mint: Pubkey) -> Tuple[Pubkey, int]:
    return Pubkey.find_program_address(
        [METADATA_SEED, bytes(METADATA_PROGRAM_ID), bytes(mint)], METADATA_PROGRAM_ID
    )


# --- Single-Account Checks ---

def expect_signer(account: AccountInfo, role: str) -> None:
    if not account.is_signer:
        raise MissingSignatureError(f"{role} {account.key} must sign")


def expect_writable(account: AccountInfo, role: str) -> None:
    if not account.is_writable:
        raise AccountNotWritableError(f"{role} {account.key} must be writable")


def expect_program(account: AccountInfo, program_id: Pubkey, role: str) -> None:
    if account.key != program_id:
        raise IncorrectProgramIdError(f"{role} must be {program_id}, got {account.key}")


def expect_owner(account: AccountInfo, owner: Pubkey, role: str) -> None:
    if account.owner != owner:
        raise InvalidAccountOwnerError(f"{role} {account.key} is owned by {account.owner}, expected {owner}")


def expect_address(account: AccountInfo, expected: Pubkey, role: str) -> None:
    if account.key != expected:
        raise InvalidSeedsError(f"{role} must be {expected}, got {account.key}")


def expect_derived(account: AccountInfo, derived: Tuple[Pubkey, int], role: str) -> int:
    """Checks ``account`` against a ``(address, bump)`` pair and returns the bump."""
    address, bump = derived
    expect_address(account, address, role)
    return bump


def read_token_amount(account: AccountInfo, mint: Pubkey, owner: Pubkey) -> int:
    """
    Returns the balance held by a token account, or 0 if the account does not exist yet.

    The account must be a token-program account for ``mint`` belonging to ``owner``.
    """
    if account.is_empty:
        return 0
    expect_owner(account, TOKEN_PROGRAM_ID, "token account")
    try:
        parsed = ACCOUNT_LAYOUT.parse(bytes(account.data))
    except ConstructError as e:
        raise InvalidAccountDataError(f"Could not decode token account {account.key}: {e}")
    if bytes(parsed.mint) != bytes(mint) or bytes(parsed.owner) != bytes(owner):
        raise InvalidAccountDataError(f"Token account {account.key} does not belong to {owner} for mint {mint}")
    return parsed.amount


# --- Per-Instruction Account Lists ---

def _unpack(cls, accounts: Sequence[AccountInfo], required: int):
    if len(accounts) < required:
        raise NotEnoughAccountKeysError(f"{cls.__name__} needs {required} accounts, got {len(accounts)}")
    names = [f.name for f in fields(cls)]
    return cls(**dict(zip(names, accounts)))


def _expect_trader_accounts(accounts, trader: AccountInfo, trader_token_account: AccountInfo,
                            program_id: Pubkey, role: str) -> None:
    """Checks shared by buys and sells: roles, writability and every derived address."""
    expect_signer(trader, role)
    for name in ("bonding_curve", "mint", "treasury", "fee_recipient", "trading_stats"):
        expect_writable(getattr(accounts, name), name)
    expect_writable(trader, role)
    expect_writable(trader_token_account, f"{role} token account")

    mint = accounts.mint.key
    expect_derived(accounts.bonding_curve, find_bonding_curve_address(mint, program_id), "bonding curve")
    expect_derived(accounts.treasury, find_treasury_address(mint, program_id), "treasury")
    expect_derived(accounts.trading_stats, find_trading_stats_address(mint, trader.key, program_id), "trading stats")
    expect_address(trader_token_account, get_associated_token_address(trader.key, mint), f"{role} token account")
    expect_owner(accounts.mint, TOKEN_PROGRAM_ID, "mint")
    expect_program(accounts.token_program, TOKEN_PROGRAM_ID, "token program")
    expect_program(accounts.system_program, SYSTEM_PROGRAM_ID, "system program")


@dataclass
class InitializeAccounts:
    authority: AccountInfo
    bonding_curve: AccountInfo
    mint: AccountInfo
    treasury: AccountInfo
    authority_token_account: AccountInfo
    payer: AccountInfo
    fee_recipient: AccountInfo
    authority_trading_stats: AccountInfo
    system_program: AccountInfo
    token_program: AccountInfo
    associated_token_program: AccountInfo
    metadata: Optional[AccountInfo] = None
    metadata_program: Optional[AccountInfo] = None

    BASE_ACCOUNT_COUNT = 11
    METADATA_ACCOUNT_COUNT = 13

    @classmethod
    def from_list(cls, accounts: Sequence[AccountInfo], with_metadata: bool = False) -> "InitializeAccounts":
        required = cls.METADATA_ACCOUNT_COUNT if with_metadata else cls.BASE_ACCOUNT_COUNT
        return _unpack(cls, accounts, required)

    def validate(self, program_id: Pubkey, fee_recipient: Pubkey, with_metadata: bool = False) -> int:
        """Validates every account and returns the bonding curve bump."""
        expect_signer(self.authority, "authority")
        expect_signer(self.payer, "payer")
        for name in ("authority", "bonding_curve", "mint", "treasury", "authority_token_account",
                     "payer", "fee_recipient", "authority_trading_stats"):
            expect_writable(getattr(self, name), name)

        mint = self.mint.key
        bump = expect_derived(self.bonding_curve, find_bonding_curve_address(mint, program_id), "bonding curve")
        expect_derived(self.treasury, find_treasury_address(mint, program_id), "treasury")
        expect_derived(
            self.authority_trading_stats,
            find_trading_stats_address(mint, self.authority.key, program_id),
            "authority trading stats",
        )
        expect_address(
            self.authority_token_account,
            get_associated_token_address(self.authority.key, mint),
            "authority token account",
        )
        expect_address(self.fee_recipient, fee_recipient, "fee recipient")
        expect_program(self.system_program, SYSTEM_PROGRAM_ID, "system program")
        expect_program(self.token_program, TOKEN_PROGRAM_ID, "token program")
        expect_program(self.associated_token_program, ASSOCIATED_TOKEN_PROGRAM_ID, "associated token program")

        if with_metadata:
            expect_writable(self.metadata, "metadata")
            expect_derived(self.metadata, find_metadata_address(mint), "metadata")
            expect_program(self.metadata_program, METADATA_PROGRAM_ID, "metadata program")
        return bump


@dataclass
class BuyAccounts:
    buyer: AccountInfo
    bonding_curve: AccountInfo
    mint: AccountInfo
    buyer_token_account: AccountInfo
    treasury: AccountInfo
    fee_recipient: AccountInfo
    trading_stats: AccountInfo
    system_program: AccountInfo
    token_program: AccountInfo
    associated_token_program: AccountInfo

    @classmethod
    def from_list(cls, accounts: Sequence[AccountInfo]) -> "BuyAccounts":
        return _unpack(cls, accounts, len(fields(cls)))

    def validate(self, program_id: Pubkey) -> None:
        _expect_trader_accounts(self, self.buyer, self.buyer_token_account, program_id, "buyer")
        expect_program(self.associated_token_program, ASSOCIATED_TOKEN_PROGRAM_ID, "associated token program")


@dataclass
class SellAccounts:
    seller: AccountInfo
    bonding_curve: AccountInfo
    mint: AccountInfo
    seller_token_account: AccountInfo
    treasury: AccountInfo
    fee_recipient: AccountInfo
    trading_stats: AccountInfo
    token_program: AccountInfo
    system_program: AccountInfo

    @classmethod
    def from_list(cls, accounts: Sequence[AccountInfo]) -> "SellAccounts":
        return _unpack(cls, accounts, len(fields(cls)))

    def validate(self, program_id: Pubkey) -> None:
        _expect_trader_accounts(self, self.seller, self.seller_token_account, program_id, "seller")


@dataclass
class UpdateProfileAccounts:
    user_profile: AccountInfo
    user: AccountInfo
    system_program: AccountInfo

    @classmethod
    def from_list(cls, accounts: Sequence[AccountInfo]) -> "UpdateProfileAccounts":
        return _unpack(cls, accounts, len(fields(cls)))

    def validate(self, program_id: Pubkey) -> None:
        expect_signer(self.user, "user")
        expect_writable(self.user, "user")
        expect_writable(self.user_profile, "user profile")
        expect_derived(self.user_profile, find_user_profile_address(self.user.key, program_id), "user profile")
        if not self.user_profile.is_empty:
            expect_owner(self.user_profile, program_id, "user profile")
        expect_program(self.system_program, SYSTEM_PROGRAM_ID, "system program")


@dataclass
class LeaderboardAccounts:
    stats_accounts: List[AccountInfo] = field(default_factory=list)

    @classmethod
    def from_list(cls, accounts: Sequence[AccountInfo]) -> "LeaderboardAccounts":
        return cls(list(accounts))

    def validate(self, program_id: Pubkey) -> None:
        seen = set()
        for account in self.stats_accounts:
            if account.key in seen:
                raise InvalidAccountDataError(f"Leaderboard account {account.key} is listed more than once")
            seen.add(account.key)
            if account.is_writable:
                raise AccountValidationError(f"Leaderboard account {account.key} must be read-only")
            if not account.is_empty:
                expect_owner(account, program_id, "trading stats")

    @property
    def traded(self) -> List[AccountInfo]:
        """Stats accounts that hold a record; traders who never traded have none."""
        return [account for account in self.stats_accounts if not account.is_empty]
