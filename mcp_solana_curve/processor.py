"""
Instruction Processor for the Bonding Curve Program

This module executes one instruction at a time against a list of accounts supplied by
the host. It is a pure function of its inputs: it reads the accounts, never mutates
them, and returns a ``ProcessResult`` that carries either a ``StateDiff`` (record
writes plus effect requests for the system program, token ledger and metadata
program) or a tagged error.

Execution Flow (every instruction):
1. Decode the payload into a typed command
2. Validate accounts, derived addresses and preconditions
3. Compute every new value (prices, fees, balances, counters)
4. Emit the diff in one piece

Any error raised in steps 1-3 is returned as a failed result, so no write and no
request ever escapes a failing instruction.

Instructions:
- Initialize: Create a bonding curve, its treasury and mint, optionally pre-buy for the
  authority and request token metadata
- BuyTokens: Pay cost + fee, mint tokens to the buyer's associated token account
- SellTokens: Burn tokens, pay proceeds - fee out of the treasury
- UpdateProfile: Create or overwrite a user profile
- GetLeaderboard: Rank the supplied trading stats accounts (read only)
"""
from typing import Optional, Sequence

from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from spl.token.constants import TOKEN_PROGRAM_ID

from mcp_solana_curve import config
from mcp_solana_curve.accounts import (
    AccountInfo,
    BuyAccounts,
    InitializeAccounts,
    LeaderboardAccounts,
    SellAccounts,
    UpdateProfileAccounts,
    expect_owner,
    expect_signer,
    read_token_amount,
)
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
from mcp_solana_curve.errors import (
    AlreadyInitializedError,
    CurveArithmeticError,
    CurveProgramError,
    InsufficientFundsError,
    InsufficientReserveError,
    InsufficientTokenBalanceError,
    InvalidAccountDataError,
    InvalidAccountOwnerError,
    InvalidCurveParametersError,
    InvalidTokenAmountError,
    NotInitializedError,
    ReserveCapExceededError,
    SlippageExceededError,
    StateError,
    SupplyExceededError,
)
from mcp_solana_curve.fees import validate_fee_basis_points
from mcp_solana_curve.instructions import (
    BuyTokens,
    GetLeaderboard,
    Initialize,
    SellTokens,
    UpdateProfile,
    decode_instruction,
)
from mcp_solana_curve.leaderboard import encode_ranking, rank_traders, validate_page
from mcp_solana_curve.pricing import quote_buy, quote_sell, to_u64
from mcp_solana_curve.state import (
    BONDING_CURVE_SIZE,
    TRADING_STATS_SIZE,
    USER_PROFILE_SIZE,
    BondingCurve,
    TradingStats,
    UserProfile,
    is_initialized_curve,
)
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)

MAX_DECIMALS = 9
U32_MAX = 2**32 - 1


def load_curve(account: AccountInfo, program_id: Pubkey) -> BondingCurve:
    if account.is_empty:
        raise NotInitializedError(f"Bonding curve {account.key} does not exist")
    if account.owner != program_id:
        raise InvalidAccountOwnerError(f"Bonding curve {account.key} is not owned by the program")
    if not is_initialized_curve(account.data):
        raise NotInitializedError(f"Bonding curve {account.key} is not initialized")
    return BondingCurve.from_bytes(account.data)


def load_trading_stats(account: AccountInfo, trader: Pubkey, program_id: Pubkey) -> Optional[TradingStats]:
    """Returns the trader's stats, or None if the record has not been created yet."""
    if account.is_empty:
        return None
    expect_owner(account, program_id, "trading stats")
    stats = TradingStats.from_bytes(account.data)
    if stats.owner != trader:
        raise InvalidAccountDataError(f"Trading stats {account.key} belong to {stats.owner}, not {trader}")
    return stats


def record_trade(stats: Optional[TradingStats], trader: Pubkey, side: str, token_amount: int, clock: int) -> TradingStats:
    """Applies one trade to a trader's counters with overflow checks."""
    stats = stats or TradingStats(owner=trader)
    if side == "buy":
        update = dict(
            total_bought=to_u64(stats.total_bought + token_amount, "total_bought"),
            buy_count=stats.buy_count + 1,
        )
        if update["buy_count"] > U32_MAX:
            raise CurveArithmeticError("buy_count overflows u32")
    else:
        update = dict(
            total_sold=to_u64(stats.total_sold + token_amount, "total_sold"),
            sell_count=stats.sell_count + 1,
        )
        if update["sell_count"] > U32_MAX:
            raise CurveArithmeticError("sell_count overflows u32")
    update["last_trade_timestamp"] = max(stats.last_trade_timestamp, clock)
    return stats.model_copy(update=update)


def _check_curve_accounts(curve: BondingCurve, mint: AccountInfo, treasury: AccountInfo,
                          fee_recipient: AccountInfo) -> None:
    if mint.key != curve.mint:
        raise InvalidAccountDataError(f"Mint {mint.key} does not belong to this bonding curve")
    if treasury.key != curve.treasury:
        raise InvalidAccountDataError(f"Treasury {treasury.key} does not belong to this bonding curve")
    if fee_recipient.key != curve.fee_recipient:
        raise InvalidAccountDataError(f"Fee recipient {fee_recipient.key} does not match the bonding curve")


class InstructionProcessor:
    """Runs one decoded command against its accounts and builds the resulting diff."""

    def __init__(self, program_id: Pubkey, clock: int, reserve_cap: int = 0):
        self.program_id = program_id
        self.clock = clock
        self.reserve_cap = reserve_cap

    def process(self, accounts: Sequence[AccountInfo], data: bytes) -> StateDiff:
        command = decode_instruction(data)
        if isinstance(command, Initialize):
            return self.initialize(accounts, command)
        if isinstance(command, BuyTokens):
            return self.buy_tokens(accounts, command)
        if isinstance(command, SellTokens):
            return self.sell_tokens(accounts, command)
        if isinstance(command, UpdateProfile):
            return self.update_profile(accounts, command)
        return self.get_leaderboard(accounts, command)

    # --- Buy (shared with the Initialize pre-buy) ---

    def _buy(self, diff: StateDiff, curve: BondingCurve, curve_address: Pubkey, trader: Pubkey,
             payer: Pubkey, payer_budget: int, token_account: AccountInfo, stats_account: AccountInfo,
             token_amount: int, max_sol_amount: int) -> BondingCurve:
        if token_amount <= 0:
            raise InvalidTokenAmountError("Token amount must be greater than zero")
        if curve.current_supply + token_amount > curve.max_supply:
            raise SupplyExceededError(
                f"Buying {token_amount} would exceed max supply "
                f"({curve.current_supply} of {curve.max_supply} issued)"
            )

        quote = quote_buy(curve, token_amount)
        if quote.net_amount > max_sol_amount:
            raise SlippageExceededError(f"Total cost {quote.net_amount} exceeds maximum {max_sol_amount}")

        stats = load_trading_stats(stats_account, trader, self.program_id)
        rent = 0
        if token_account.is_empty:
            rent += rent_exempt_minimum(TOKEN_ACCOUNT_SIZE)
        if stats is None:
            rent += rent_exempt_minimum(TRADING_STATS_SIZE)
        if payer_budget < quote.net_amount + rent:
            raise InsufficientFundsError(
                f"Payer has {payer_budget} lamports, needs {quote.net_amount + rent} (including {rent} rent)"
            )

        new_reserve = to_u64(curve.reserve_balance + quote.gross_amount, "reserve balance")
        if self.reserve_cap and new_reserve > self.reserve_cap:
            raise ReserveCapExceededError(f"Reserve would reach {new_reserve}, cap is {self.reserve_cap}")

        new_stats = record_trade(stats, trader, "buy", token_amount, self.clock)
        new_curve = curve.model_copy(update=dict(current_supply=quote.new_supply, reserve_balance=new_reserve))

        if quote.gross_amount:
            diff.request(TransferLamports(payer, curve.treasury, quote.gross_amount))
        if quote.fee:
            diff.request(TransferLamports(payer, curve.fee_recipient, quote.fee))
        if token_account.is_empty:
            diff.request(CreateAssociatedTokenAccount(payer, trader, curve.mint, token_account.key))
        diff.request(MintTokens(curve.mint, token_account.key, curve_address, token_amount))
        if stats is None:
            diff.request(CreateAccount(payer, stats_account.key, rent_exempt_minimum(TRADING_STATS_SIZE),
                                       TRADING_STATS_SIZE, self.program_id))
        diff.write(stats_account.key, new_stats.to_bytes())
        diff.write(curve_address, new_curve.to_bytes())
        diff.log(f"Buy: {token_amount} tokens for {quote.gross_amount} + {quote.fee} fee lamports")
        return new_curve

    # --- Handlers ---

    def initialize(self, accounts: Sequence[AccountInfo], command: Initialize) -> StateDiff:
        accs = InitializeAccounts.from_list(accounts, with_metadata=command.with_metadata)

        validate_fee_basis_points(command.fee_basis_points)
        if command.max_supply == 0:
            raise InvalidCurveParametersError("max_supply must be greater than zero")
        if command.base_price == 0:
            raise InvalidCurveParametersError("base_price must be greater than zero")
        if command.decimals > MAX_DECIMALS:
            raise InvalidCurveParametersError(f"decimals must be at most {MAX_DECIMALS}, got {command.decimals}")

        bump = accs.validate(self.program_id, command.fee_recipient, with_metadata=command.with_metadata)
        if not accs.bonding_curve.is_empty:
            raise AlreadyInitializedError(f"Bonding curve {accs.bonding_curve.key} already exists")
        if not accs.mint.is_empty:
            raise InvalidAccountDataError(f"Mint {accs.mint.key} already exists")
        expect_signer(accs.mint, "mint")

        curve_address = accs.bonding_curve.key
        curve = BondingCurve(
            authority=accs.authority.key,
            mint=accs.mint.key,
            treasury=accs.treasury.key,
            fee_recipient=command.fee_recipient,
            curve_type=command.curve_type,
            base_price=command.base_price,
            slope=command.slope,
            max_supply=command.max_supply,
            fee_basis_points=command.fee_basis_points,
            bump=bump,
        )

        diff = StateDiff()
        diff.log(f"Initialize: {command.curve_type.name} curve for mint {curve.mint}")
        creation_rent = 0
        for key, space, owner in (
            (curve_address, BONDING_CURVE_SIZE, self.program_id),
            (accs.treasury.key, 0, SYSTEM_PROGRAM_ID),
            (accs.mint.key, MINT_ACCOUNT_SIZE, TOKEN_PROGRAM_ID),
        ):
            lamports = rent_exempt_minimum(space)
            creation_rent += lamports
            diff.request(CreateAccount(accs.payer.key, key, lamports, space, owner))
        diff.request(InitializeMint(accs.mint.key, command.decimals, curve_address))
        diff.write(curve_address, curve.to_bytes())

        if accs.payer.lamports < creation_rent:
            raise InsufficientFundsError(f"Payer needs {creation_rent} lamports to create the curve accounts")

        if command.initial_buy_amount > 0:
            self._buy(
                diff, curve, curve_address,
                trader=accs.authority.key,
                payer=accs.payer.key,
                payer_budget=accs.payer.lamports - creation_rent,
                token_account=accs.authority_token_account,
                stats_account=accs.authority_trading_stats,
                token_amount=command.initial_buy_amount,
                max_sol_amount=command.initial_max_sol,
            )

        if command.with_metadata and command.has_metadata:
            diff.request(CreateMetadata(
                metadata=accs.metadata.key,
                mint=accs.mint.key,
                mint_authority=curve_address,
                payer=accs.payer.key,
                update_authority=accs.authority.key,
                name=command.token_name,
                symbol=command.token_symbol,
                uri=command.token_uri,
            ))
        if command.creator_username:
            diff.log(f"Creator: {command.creator_username}")

        logger.info(f"Initialized {command.curve_type.name} bonding curve {curve_address}")
        return diff

    def buy_tokens(self, accounts: Sequence[AccountInfo], command: BuyTokens) -> StateDiff:
        accs = BuyAccounts.from_list(accounts)
        accs.validate(self.program_id)
        curve = load_curve(accs.bonding_curve, self.program_id)
        _check_curve_accounts(curve, accs.mint, accs.treasury, accs.fee_recipient)

        diff = StateDiff()
        self._buy(
            diff, curve, accs.bonding_curve.key,
            trader=accs.buyer.key,
            payer=accs.buyer.key,
            payer_budget=accs.buyer.lamports,
            token_account=accs.buyer_token_account,
            stats_account=accs.trading_stats,
            token_amount=command.token_amount,
            max_sol_amount=command.max_sol_amount,
        )
        logger.info(f"Buyer {accs.buyer.key} bought {command.token_amount} tokens of {curve.mint}")
        return diff

    def sell_tokens(self, accounts: Sequence[AccountInfo], command: SellTokens) -> StateDiff:
        accs = SellAccounts.from_list(accounts)
        accs.validate(self.program_id)
        curve = load_curve(accs.bonding_curve, self.program_id)
        _check_curve_accounts(curve, accs.mint, accs.treasury, accs.fee_recipient)

        seller = accs.seller.key
        amount = command.token_amount
        if amount <= 0:
            raise InvalidTokenAmountError("Token amount must be greater than zero")
        if amount > curve.current_supply:
            raise StateError(f"Cannot sell {amount} tokens, only {curve.current_supply} in circulation")
        balance = read_token_amount(accs.seller_token_account, curve.mint, seller)
        if balance < amount:
            raise InsufficientTokenBalanceError(f"Seller holds {balance} tokens, tried to sell {amount}")

        quote = quote_sell(curve, amount)
        if quote.net_amount < command.min_sol_amount:
            raise SlippageExceededError(
                f"Net proceeds {quote.net_amount} are below minimum {command.min_sol_amount}"
            )
        if curve.reserve_balance < quote.gross_amount or accs.treasury.lamports < quote.gross_amount:
            raise InsufficientReserveError(
                f"Reserve holds {curve.reserve_balance} lamports, sale needs {quote.gross_amount}"
            )

        stats = load_trading_stats(accs.trading_stats, seller, self.program_id)
        stats_rent = rent_exempt_minimum(TRADING_STATS_SIZE) if stats is None else 0
        if accs.seller.lamports + quote.net_amount < stats_rent:
            raise InsufficientFundsError(f"Seller cannot fund {stats_rent} lamports of trading stats rent")

        new_stats = record_trade(stats, seller, "sell", amount, self.clock)
        new_curve = curve.model_copy(update=dict(
            current_supply=quote.new_supply,
            reserve_balance=curve.reserve_balance - quote.gross_amount,
        ))

        diff = StateDiff()
        diff.request(BurnTokens(curve.mint, accs.seller_token_account.key, seller, amount))
        if quote.net_amount:
            diff.request(TransferLamports(curve.treasury, seller, quote.net_amount))
        if quote.fee:
            diff.request(TransferLamports(curve.treasury, curve.fee_recipient, quote.fee))
        if stats is None:
            diff.request(CreateAccount(seller, accs.trading_stats.key, stats_rent, TRADING_STATS_SIZE, self.program_id))
        diff.write(accs.trading_stats.key, new_stats.to_bytes())
        diff.write(accs.bonding_curve.key, new_curve.to_bytes())
        diff.log(f"Sell: {amount} tokens for {quote.net_amount} lamports ({quote.fee} fee)")
        logger.info(f"Seller {seller} sold {amount} tokens of {curve.mint}")
        return diff

    def update_profile(self, accounts: Sequence[AccountInfo], command: UpdateProfile) -> StateDiff:
        accs = UpdateProfileAccounts.from_list(accounts)
        accs.validate(self.program_id)

        diff = StateDiff()
        if accs.user_profile.is_empty:
            rent = rent_exempt_minimum(USER_PROFILE_SIZE)
            if accs.user.lamports < rent:
                raise InsufficientFundsError(f"User needs {rent} lamports to create a profile")
            diff.request(CreateAccount(accs.user.key, accs.user_profile.key, rent, USER_PROFILE_SIZE, self.program_id))
        else:
            existing = UserProfile.from_bytes(accs.user_profile.data)
            if existing.owner != accs.user.key:
                raise InvalidAccountDataError(f"Profile {accs.user_profile.key} belongs to {existing.owner}")

        profile = UserProfile(owner=accs.user.key, username=command.username, bio=command.bio)
        diff.write(accs.user_profile.key, profile.to_bytes())
        diff.log(f"UpdateProfile: {command.username}")
        return diff

    def get_leaderboard(self, accounts: Sequence[AccountInfo], command: GetLeaderboard) -> StateDiff:
        validate_page(command.limit, command.offset)
        accs = LeaderboardAccounts.from_list(accounts)
        accs.validate(self.program_id)

        stats = [TradingStats.from_bytes(account.data) for account in accs.traded]
        ranked = rank_traders(stats, command.limit, command.offset)

        diff = StateDiff(return_data=encode_ranking(ranked))
        diff.log(f"GetLeaderboard: {len(ranked)} of {len(stats)} traders")
        return diff


def process_instruction(
    program_id: Pubkey,
    accounts: Sequence[AccountInfo],
    data: bytes,
    clock: int,
    reserve_cap: int = config.RESERVE_CAP_LAMPORTS,
) -> ProcessResult:
    """
    Program entrypoint. Never raises.

    Args:
        program_id: Address the program runs as; every derived address uses it.
        accounts: Accounts in the order the instruction expects.
        data: Raw instruction data (discriminator + payload).
        clock: Current unix timestamp, recorded on trades.
        reserve_cap: Maximum reserve per curve in lamports, 0 for no cap.

    Returns:
        A successful result holding the diff, or a failed result holding the error code.
    """
    processor = InstructionProcessor(program_id, clock, reserve_cap)
    try:
        diff = processor.process(accounts, data)
    except CurveProgramError as e:
        logger.warning(f"Instruction failed with {e.code}: {e.message}")
        return ProcessResult.failure(e)
    except Exception as e:
        logger.exception(f"Unexpected error processing instruction: {e}")
        return ProcessResult(error_code="InternalError", error_message=str(e))
    return ProcessResult.success(diff)
