"""
Effect requests and the result of processing one instruction.

The processor never moves lamports or tokens itself. It returns a ``StateDiff``: the
program-owned records it wants written, plus an ordered list of requests for the
system program, the token ledger and the metadata program. The host applies the
requests in order and then the writes; if any request fails, nothing is applied.
"""
from dataclasses import dataclass, field
from typing import List, Optional, Union

from solders.pubkey import Pubkey

from mcp_solana_curve.errors import CurveProgramError

# Rent-exempt minimum: (128 byte account overhead + data) * 3480 lamports/byte-year * 2 years
ACCOUNT_STORAGE_OVERHEAD = 128
LAMPORTS_PER_BYTE_YEAR = 3_480
EXEMPTION_THRESHOLD_YEARS = 2

MINT_ACCOUNT_SIZE = 82
TOKEN_ACCOUNT_SIZE = 165


def rent_exempt_minimum(space: int) -> int:
    return (ACCOUNT_STORAGE_OVERHEAD + space) * LAMPORTS_PER_BYTE_YEAR * EXEMPTION_THRESHOLD_YEARS


# --- Requests ---

@dataclass(frozen=True)
class CreateAccount:
    payer: Pubkey
    new_account: Pubkey
    lamports: int
    space: int
    owner: Pubkey


@dataclass(frozen=True)
class TransferLamports:
    source: Pubkey
    destination: Pubkey
    lamports: int


@dataclass(frozen=True)
class InitializeMint:
    mint: Pubkey
    decimals: int
    mint_authority: Pubkey


@dataclass(frozen=True)
class CreateAssociatedTokenAccount:
    payer: Pubkey
    owner: Pubkey
    mint: Pubkey
    address: Pubkey


@dataclass(frozen=True)
class MintTokens:
    mint: Pubkey
    destination: Pubkey
    authority: Pubkey
    amount: int


@dataclass(frozen=True)
class BurnTokens:
    mint: Pubkey
    source: Pubkey
    owner: Pubkey
    amount: int


@dataclass(frozen=True)
class CreateMetadata:
    metadata: Pubkey
    mint: Pubkey
    mint_authority: Pubkey
    payer: Pubkey
    update_authority: Pubkey
    name: str
    symbol: str
    uri: str


Request = Union[
    CreateAccount,
    TransferLamports,
    InitializeMint,
    CreateAssociatedTokenAccount,
    MintTokens,
    BurnTokens,
    CreateMetadata,
]


# --- Diff / Result ---

@dataclass(frozen=True)
class AccountWrite:
    """New data for a program-owned account."""

    key: Pubkey
    data: bytes


@dataclass
class StateDiff:
    requests: List[Request] = field(default_factory=list)
    writes: List[AccountWrite] = field(default_factory=list)
    logs: List[str] = field(default_factory=list)
    return_data: Optional[bytes] = None

    def request(self, request: Request) -> None:
        self.requests.append(request)

    def write(self, key: Pubkey, data: bytes) -> None:
        self.writes.append(AccountWrite(key, data))

    def log(self, message: str) -> None:
        self.logs.append(message)

    def written(self, key: Pubkey) -> Optional[bytes]:
        """Latest data written to ``key`` in this diff, if any."""
        for account_write in reversed(self.writes):
            if account_write.key == key:
                return account_write.data
        return None


@dataclass(frozen=True)
class ProcessResult:
    """Either a ``StateDiff`` or an error code and message, never both."""

    diff: Optional[StateDiff] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error_code is None

    @classmethod
    def success(cls, diff: StateDiff) -> "ProcessResult":
        return cls(diff=diff)

    @classmethod
    def failure(cls, error: CurveProgramError) -> "ProcessResult":
        return cls(error_code=error.code, error_message=error.message)
