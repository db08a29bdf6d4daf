"""
Local in-memory host for the bonding curve program.

The host stands in for the chain: it stores accounts, runs one instruction at a time
under a lock, and applies the processor's diff all-or-nothing. Effect requests are
applied in order to a working copy of the store (system transfers and account
creation, SPL mint/token bookkeeping, metadata accounts), then the record writes; the
copy replaces the store only if every step succeeds.

Token accounts and mints are kept in the real SPL byte layouts, so code that reads
them (the processor, ``read_token_amount``) sees exactly what it would on chain.

A snapshot of the store can be saved to and loaded from a JSON file.
"""
import base64
import json
import threading
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, ValidationError
from solders.instruction import Instruction
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from spl.token._layouts import ACCOUNT_LAYOUT, MINT_LAYOUT
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import get_associated_token_address

from mcp_solana_curve import config
from mcp_solana_curve.accounts import METADATA_PROGRAM_ID, AccountInfo
from mcp_solana_curve.effects import (
    MINT_ACCOUNT_SIZE,
    TOKEN_ACCOUNT_SIZE,
    BurnTokens,
    CreateAccount,
    CreateAssociatedTokenAccount,
    CreateMetadata,
    InitializeMint,
    MintTokens,
    ProcessResult,
    StateDiff,
    TransferLamports,
    rent_exempt_minimum,
)
from mcp_solana_curve.errors import IncorrectProgramIdError, TransactionFailedError
from mcp_solana_curve.processor import process_instruction
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)

U64_MAX = 2**64 - 1


@dataclass(frozen=True)
class StoredAccount:
    lamports: int = 0
    owner: Pubkey = SYSTEM_PROGRAM_ID
    data: bytes = b""

    @property
    def exists(self) -> bool:
        return self.lamports > 0 or bool(self.data)


class StoredAccountModel(BaseModel):
    key: str
    lamports: int
    owner: str
    data: str


class LocalHost:
    """Account store plus a serialized ``execute`` loop around ``process_instruction``."""

    def __init__(self, program_id: Pubkey = config.PROGRAM_ID,
                 reserve_cap: int = config.RESERVE_CAP_LAMPORTS):
        self.program_id = program_id
        self.reserve_cap = reserve_cap
        self._accounts: Dict[Pubkey, StoredAccount] = {}
        self._lock = threading.Lock()

    # --- Store access ---

    def get_account(self, key: Pubkey) -> Optional[StoredAccount]:
        account = self._accounts.get(key)
        return account if account is not None and account.exists else None

    def set_account(self, key: Pubkey, lamports: int = 0, data: bytes = b"",
                    owner: Pubkey = SYSTEM_PROGRAM_ID) -> None:
        with self._lock:
            self._accounts[key] = StoredAccount(lamports, owner, bytes(data))

    def airdrop(self, key: Pubkey, lamports: int) -> None:
        with self._lock:
            account = self._accounts.get(key, StoredAccount())
            self._accounts[key] = replace(account, lamports=account.lamports + lamports)

    def lamports(self, key: Pubkey) -> int:
        account = self._accounts.get(key)
        return account.lamports if account else 0

    def data(self, key: Pubkey) -> bytes:
        account = self._accounts.get(key)
        return account.data if account else b""

    def token_balance(self, owner: Pubkey, mint: Pubkey) -> int:
        account = self.get_account(get_associated_token_address(owner, mint))
        if account is None:
            return 0
        return ACCOUNT_LAYOUT.parse(account.data).amount

    def mint_supply(self, mint: Pubkey) -> int:
        account = self.get_account(mint)
        if account is None:
            return 0
        return MINT_LAYOUT.parse(account.data).supply

    # --- Execution ---

    def execute(self, instruction: Instruction, signers: Iterable[Pubkey],
                clock: Optional[int] = None) -> ProcessResult:
        """
        Runs one instruction and commits its effects if it succeeds.

        ``signers`` are the keys that signed the enclosing transaction; an account meta
        only counts as signed if it is marked as a signer and its key is in this set.
        """
        if instruction.program_id != self.program_id:
            return ProcessResult.failure(
                IncorrectProgramIdError(f"Instruction targets {instruction.program_id}, host runs {self.program_id}")
            )
        signers = set(signers)
        clock = int(time.time()) if clock is None else clock

        with self._lock:
            infos = []
            for meta in instruction.accounts:
                stored = self._accounts.get(meta.pubkey, StoredAccount())
                infos.append(AccountInfo(
                    key=meta.pubkey,
                    is_signer=meta.is_signer and meta.pubkey in signers,
                    is_writable=meta.is_writable,
                    owner=stored.owner,
                    lamports=stored.lamports,
                    data=stored.data,
                ))

            result = process_instruction(self.program_id, infos, bytes(instruction.data), clock, self.reserve_cap)
            if not result.ok:
                return result

            writable = {meta.pubkey for meta in instruction.accounts if meta.is_writable}
            try:
                working = self._apply(result.diff, writable)
            except TransactionFailedError as e:
                logger.warning(f"Effects rejected, instruction discarded: {e.message}")
                return ProcessResult.failure(e)

            self._accounts = working
        for line in result.diff.logs:
            logger.debug(f"Program log: {line}")
        return result

    def _apply(self, diff: StateDiff, writable: set) -> Dict[Pubkey, StoredAccount]:
        working = dict(self._accounts)
        applier = _EffectApplier(working, writable)
        for request in diff.requests:
            applier.apply(request)
        for account_write in diff.writes:
            applier.write_record(account_write.key, account_write.data, self.program_id)
        return working

    # --- Persistence ---

    def save(self, path: Path) -> None:
        """Writes every account to a JSON snapshot."""
        snapshot = [
            StoredAccountModel(
                key=str(key),
                lamports=account.lamports,
                owner=str(account.owner),
                data=base64.b64encode(account.data).decode("ascii"),
            ).model_dump(mode="json")
            for key, account in self._accounts.items()
            if account.exists
        ]
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump({"program_id": str(self.program_id), "accounts": snapshot}, f, indent=4)
        logger.info(f"Saved {len(snapshot)} accounts to {path}")

    @classmethod
    def load(cls, path: Path, reserve_cap: int = config.RESERVE_CAP_LAMPORTS) -> "LocalHost":
        """Restores a host from a JSON snapshot written by ``save``."""
        with open(path, "r") as f:
            snapshot = json.load(f)
        host = cls(Pubkey.from_string(snapshot["program_id"]), reserve_cap)
        for raw in snapshot.get("accounts", []):
            try:
                model = StoredAccountModel.model_validate(raw)
            except ValidationError as e:
                logger.error(f"Skipping invalid account entry in {path}: {e}")
                continue
            host._accounts[Pubkey.from_string(model.key)] = StoredAccount(
                model.lamports, Pubkey.from_string(model.owner), base64.b64decode(model.data)
            )
        logger.info(f"Loaded {len(host._accounts)} accounts from {path}")
        return host


class _EffectApplier:
    """Applies effect requests to a working copy of the account store."""

    def __init__(self, accounts: Dict[Pubkey, StoredAccount], writable: set):
        self.accounts = accounts
        self.writable = writable

    def _get(self, key: Pubkey) -> StoredAccount:
        return self.accounts.get(key, StoredAccount())

    def _expect_writable(self, key: Pubkey) -> None:
        if key not in self.writable:
            raise TransactionFailedError(f"Account {key} was not passed as writable")

    def _debit(self, key: Pubkey, lamports: int) -> None:
        self._expect_writable(key)
        account = self._get(key)
        if account.lamports < lamports:
            raise TransactionFailedError(f"Account {key} has {account.lamports} lamports, needs {lamports}")
        self.accounts[key] = replace(account, lamports=account.lamports - lamports)

    def _credit(self, key: Pubkey, lamports: int) -> None:
        self._expect_writable(key)
        account = self._get(key)
        if account.lamports + lamports > U64_MAX:
            raise TransactionFailedError(f"Account {key} balance would overflow")
        self.accounts[key] = replace(account, lamports=account.lamports + lamports)

    def _create(self, payer: Pubkey, key: Pubkey, space: int, owner: Pubkey, lamports: int) -> None:
        if self._get(key).exists:
            raise TransactionFailedError(f"Account {key} already in use")
        self._debit(payer, lamports)
        self._expect_writable(key)
        self.accounts[key] = StoredAccount(lamports, owner, bytes(space))

    def apply(self, request) -> None:
        if isinstance(request, CreateAccount):
            self._create(request.payer, request.new_account, request.space, request.owner, request.lamports)
        elif isinstance(request, TransferLamports):
            self._debit(request.source, request.lamports)
            self._credit(request.destination, request.lamports)
        elif isinstance(request, InitializeMint):
            self._initialize_mint(request)
        elif isinstance(request, CreateAssociatedTokenAccount):
            self._create_token_account(request)
        elif isinstance(request, MintTokens):
            self._mint_to(request)
        elif isinstance(request, BurnTokens):
            self._burn(request)
        elif isinstance(request, CreateMetadata):
            self._create_metadata(request)
        else:
            raise TransactionFailedError(f"Unsupported request {request!r}")

    def write_record(self, key: Pubkey, data: bytes, program_id: Pubkey) -> None:
        self._expect_writable(key)
        account = self._get(key)
        if account.owner != program_id:
            raise TransactionFailedError(f"Account {key} is not owned by the program")
        if len(account.data) != len(data):
            raise TransactionFailedError(f"Record for {key} is {len(data)} bytes, account holds {len(account.data)}")
        self.accounts[key] = replace(account, data=bytes(data))

    # --- SPL token bookkeeping ---

    def _parse_mint(self, mint: Pubkey):
        account = self._get(mint)
        if account.owner != TOKEN_PROGRAM_ID or len(account.data) != MINT_ACCOUNT_SIZE:
            raise TransactionFailedError(f"{mint} is not a mint")
        return MINT_LAYOUT.parse(account.data)

    def _parse_token_account(self, key: Pubkey, mint: Pubkey):
        account = self._get(key)
        if account.owner != TOKEN_PROGRAM_ID or len(account.data) != TOKEN_ACCOUNT_SIZE:
            raise TransactionFailedError(f"{key} is not a token account")
        parsed = ACCOUNT_LAYOUT.parse(account.data)
        if bytes(parsed.mint) != bytes(mint):
            raise TransactionFailedError(f"Token account {key} is not for mint {mint}")
        return parsed

    def _store(self, key: Pubkey, layout, parsed) -> None:
        self._expect_writable(key)
        self.accounts[key] = replace(self._get(key), data=layout.build(parsed))

    def _initialize_mint(self, request: InitializeMint) -> None:
        account = self._get(request.mint)
        if account.owner != TOKEN_PROGRAM_ID or account.data != bytes(MINT_ACCOUNT_SIZE):
            raise TransactionFailedError(f"Mint {request.mint} is not an empty token-program account")
        parsed = MINT_LAYOUT.parse(account.data)
        parsed.mint_authority_option = 1
        parsed.mint_authority = bytes(request.mint_authority)
        parsed.decimals = request.decimals
        parsed.is_initialized = True
        self._store(request.mint, MINT_LAYOUT, parsed)

    def _create_token_account(self, request: CreateAssociatedTokenAccount) -> None:
        if request.address != get_associated_token_address(request.owner, request.mint):
            raise TransactionFailedError(f"{request.address} is not the associated token address")
        self._parse_mint(request.mint)
        self._create(request.payer, request.address, TOKEN_ACCOUNT_SIZE, TOKEN_PROGRAM_ID,
                     rent_exempt_minimum(TOKEN_ACCOUNT_SIZE))
        parsed = ACCOUNT_LAYOUT.parse(bytes(TOKEN_ACCOUNT_SIZE))
        parsed.mint = bytes(request.mint)
        parsed.owner = bytes(request.owner)
        parsed.state = 1
        self._store(request.address, ACCOUNT_LAYOUT, parsed)

    def _mint_to(self, request: MintTokens) -> None:
        mint = self._parse_mint(request.mint)
        if not mint.mint_authority_option or bytes(mint.mint_authority) != bytes(request.authority):
            raise TransactionFailedError(f"{request.authority} is not the mint authority of {request.mint}")
        token = self._parse_token_account(request.destination, request.mint)
        if mint.supply + request.amount > U64_MAX or token.amount + request.amount > U64_MAX:
            raise TransactionFailedError("Mint would overflow token supply")
        mint.supply += request.amount
        token.amount += request.amount
        self._store(request.mint, MINT_LAYOUT, mint)
        self._store(request.destination, ACCOUNT_LAYOUT, token)

    def _burn(self, request: BurnTokens) -> None:
        mint = self._parse_mint(request.mint)
        token = self._parse_token_account(request.source, request.mint)
        if bytes(token.owner) != bytes(request.owner):
            raise TransactionFailedError(f"{request.owner} does not own token account {request.source}")
        if token.amount < request.amount:
            raise TransactionFailedError(f"Token account {request.source} holds only {token.amount}")
        mint.supply -= request.amount
        token.amount -= request.amount
        self._store(request.mint, MINT_LAYOUT, mint)
        self._store(request.source, ACCOUNT_LAYOUT, token)

    def _create_metadata(self, request: CreateMetadata) -> None:
        self._parse_mint(request.mint)
        data = json.dumps(
            {"mint": str(request.mint), "update_authority": str(request.update_authority),
             "name": request.name, "symbol": request.symbol, "uri": request.uri}
        ).encode("utf-8")
        self._create(request.payer, request.metadata, len(data), METADATA_PROGRAM_ID, rent_exempt_minimum(len(data)))
        self.accounts[request.metadata] = replace(self._get(request.metadata), data=data)


def metadata_of(host: LocalHost, metadata_address: Pubkey) -> Optional[dict]:
    """Decodes a metadata account created by the host, if present."""
    data = host.data(metadata_address)
    return json.loads(data) if data else None
