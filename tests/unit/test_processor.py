import pytest
from unittest.mock import patch
from solders.keypair import Keypair
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from spl.token.constants import TOKEN_PROGRAM_ID

from mcp_solana_curve.accounts import (
    find_bonding_curve_address,
    find_trading_stats_address,
    find_treasury_address,
)
from mcp_solana_curve.effects import (
    CreateAccount,
    CreateAssociatedTokenAccount,
    InitializeMint,
    MintTokens,
    TransferLamports,
    rent_exempt_minimum,
)
from mcp_solana_curve.instruction_builder import (
    buy_instruction,
    get_leaderboard_instruction,
    initialize_instruction,
    sell_instruction,
)
from mcp_solana_curve.instructions import Initialize
from mcp_solana_curve.processor import process_instruction, record_trade
from mcp_solana_curve.schemas import CurveType
from mcp_solana_curve.state import BondingCurve, TradingStats

SCALE = 1_000_000_000
CLOCK = 1_700_000_000


@pytest.fixture
def initialize_setup(program_id, account_infos):
    authority, mint, payer = Keypair().pubkey(), Keypair().pubkey(), Keypair().pubkey()

    def build(**overrides):
        fields = dict(
            decimals=6,
            curve_type=CurveType.linear,
            fee_basis_points=100,
            base_price=SCALE,
            slope=SCALE,
            max_supply=10**12,
            fee_recipient=Keypair().pubkey(),
        )
        fields.update(overrides)
        ix = initialize_instruction(Initialize(**fields), authority, mint, payer, program_id)
        return account_infos(ix, {payer: (SYSTEM_PROGRAM_ID, 10 * SCALE, b"")}), ix

    return authority, mint, payer, build


@pytest.fixture
def live_curve(program_id, make_curve):
    """A funded curve with 2e9 tokens in circulation, as account snapshots."""
    mint = Keypair().pubkey()
    curve_address, _ = find_bonding_curve_address(mint, program_id)
    treasury, _ = find_treasury_address(mint, program_id)
    curve = make_curve(mint=mint, treasury=treasury, current_supply=2 * SCALE, reserve_balance=3 * SCALE,
                       fee_basis_points=100)
    accounts = {
        curve_address: (program_id, rent_exempt_minimum(173), curve.to_bytes()),
        mint: (TOKEN_PROGRAM_ID, rent_exempt_minimum(82), bytes(82)),
        treasury: (SYSTEM_PROGRAM_ID, rent_exempt_minimum(0) + 3 * SCALE, b""),
    }
    return curve, curve_address, accounts


def test_initialize_emits_accounts_and_record(initialize_setup, program_id):
    authority, mint, _, build = initialize_setup
    infos, ix = build()

    result = process_instruction(program_id, infos, bytes(ix.data), CLOCK)

    assert result.ok
    kinds = [type(request) for request in result.diff.requests]
    assert kinds == [CreateAccount, CreateAccount, CreateAccount, InitializeMint]
    curve_address, bump = find_bonding_curve_address(mint, program_id)
    assert result.diff.requests[3].mint_authority == curve_address
    curve = BondingCurve.from_bytes(result.diff.written(curve_address))
    assert curve.authority == authority
    assert curve.current_supply == 0
    assert curve.reserve_balance == 0
    assert curve.bump == bump
    assert curve.initialized


def test_initialize_rejects_fee_above_100_percent(initialize_setup, program_id):
    _, _, _, build = initialize_setup
    infos, ix = build(fee_basis_points=10_001)

    result = process_instruction(program_id, infos, bytes(ix.data), CLOCK)

    assert result.error_code == "InvalidFeeBasisPoints"
    assert result.diff is None


def test_initialize_rejects_unknown_curve_tag(initialize_setup, program_id):
    _, _, _, build = initialize_setup
    infos, ix = build()
    data = bytearray(bytes(ix.data))
    data[2] = 7
    assert process_instruction(program_id, infos, bytes(data), CLOCK).error_code == "InvalidCurveType"


@pytest.mark.parametrize("overrides", [dict(max_supply=0), dict(base_price=0), dict(decimals=10)])
def test_initialize_rejects_degenerate_parameters(initialize_setup, program_id, overrides):
    _, _, _, build = initialize_setup
    infos, ix = build(**overrides)
    assert process_instruction(program_id, infos, bytes(ix.data), CLOCK).error_code == "InvalidCurveParameters"


def test_initialize_twice(initialize_setup, program_id):
    _, _, _, build = initialize_setup
    infos, ix = build()
    infos[1].owner, infos[1].data = program_id, bytes(173)
    assert process_instruction(program_id, infos, bytes(ix.data), CLOCK).error_code == "AccountAlreadyInitialized"


def test_initialize_needs_mint_signature(initialize_setup, program_id):
    _, _, _, build = initialize_setup
    infos, ix = build()
    infos[2].is_signer = False
    assert process_instruction(program_id, infos, bytes(ix.data), CLOCK).error_code == "MissingRequiredSignature"


def test_buy_emits_payment_and_mint(live_curve, program_id, account_infos):
    curve, curve_address, accounts = live_curve
    buyer = Keypair().pubkey()
    accounts[buyer] = (SYSTEM_PROGRAM_ID, 10 * SCALE, b"")
    ix = buy_instruction(buyer, curve.mint, curve.fee_recipient, SCALE, 4 * SCALE, program_id)

    result = process_instruction(program_id, account_infos(ix, accounts), bytes(ix.data), CLOCK)

    assert result.ok
    # spot price at supply 2e9 is 3e9 per 1e9 tokens
    transfer, fee, create_ata, mint_to, create_stats = result.diff.requests
    assert transfer == TransferLamports(buyer, curve.treasury, 3 * SCALE)
    assert fee == TransferLamports(buyer, curve.fee_recipient, 30_000_000)
    assert isinstance(create_ata, CreateAssociatedTokenAccount)
    assert mint_to == MintTokens(curve.mint, create_ata.address, curve_address, SCALE)
    assert isinstance(create_stats, CreateAccount)

    new_curve = BondingCurve.from_bytes(result.diff.written(curve_address))
    assert new_curve.current_supply == 3 * SCALE
    assert new_curve.reserve_balance == 6 * SCALE
    stats = TradingStats.from_bytes(result.diff.written(find_trading_stats_address(curve.mint, buyer, program_id)[0]))
    assert (stats.total_bought, stats.buy_count, stats.last_trade_timestamp) == (SCALE, 1, CLOCK)


def test_buy_slippage(live_curve, program_id, account_infos):
    curve, _, accounts = live_curve
    buyer = Keypair().pubkey()
    accounts[buyer] = (SYSTEM_PROGRAM_ID, 10 * SCALE, b"")
    ix = buy_instruction(buyer, curve.mint, curve.fee_recipient, SCALE, 3 * SCALE + 29_999_999, program_id)

    result = process_instruction(program_id, account_infos(ix, accounts), bytes(ix.data), CLOCK)
    assert result.error_code == "SlippageExceeded"


def test_buy_zero_tokens(live_curve, program_id, account_infos):
    curve, _, accounts = live_curve
    buyer = Keypair().pubkey()
    accounts[buyer] = (SYSTEM_PROGRAM_ID, 10 * SCALE, b"")
    ix = buy_instruction(buyer, curve.mint, curve.fee_recipient, 0, 3 * SCALE, program_id)
    assert process_instruction(program_id, account_infos(ix, accounts), bytes(ix.data), CLOCK).error_code == "InvalidTokenAmount"


def test_buy_against_missing_curve(program_id, account_infos):
    mint, buyer = Keypair().pubkey(), Keypair().pubkey()
    ix = buy_instruction(buyer, mint, Keypair().pubkey(), SCALE, SCALE, program_id)
    infos = account_infos(ix, {mint: (TOKEN_PROGRAM_ID, 0, bytes(82))})
    assert process_instruction(program_id, infos, bytes(ix.data), CLOCK).error_code == "AccountNotInitialized"


def test_buy_with_wrong_fee_recipient(live_curve, program_id, account_infos):
    curve, _, accounts = live_curve
    buyer = Keypair().pubkey()
    accounts[buyer] = (SYSTEM_PROGRAM_ID, 10 * SCALE, b"")
    ix = buy_instruction(buyer, curve.mint, Keypair().pubkey(), SCALE, 10 * SCALE, program_id)
    assert process_instruction(program_id, account_infos(ix, accounts), bytes(ix.data), CLOCK).error_code == "InvalidAccountData"


def test_reserve_cap(live_curve, program_id, account_infos):
    curve, _, accounts = live_curve
    buyer = Keypair().pubkey()
    accounts[buyer] = (SYSTEM_PROGRAM_ID, 10 * SCALE, b"")
    ix = buy_instruction(buyer, curve.mint, curve.fee_recipient, SCALE, 10 * SCALE, program_id)
    infos = account_infos(ix, accounts)

    assert process_instruction(program_id, infos, bytes(ix.data), CLOCK, reserve_cap=6 * SCALE).ok
    result = process_instruction(program_id, infos, bytes(ix.data), CLOCK, reserve_cap=6 * SCALE - 1)
    assert result.error_code == "ReserveCapExceeded"


def test_sell_more_than_supply(live_curve, program_id, account_infos):
    curve, _, accounts = live_curve
    seller = Keypair().pubkey()
    ix = sell_instruction(seller, curve.mint, curve.fee_recipient, 2 * SCALE + 1, 0, program_id)

    result = process_instruction(program_id, account_infos(ix, accounts), bytes(ix.data), CLOCK)

    assert result.error_code == "StateError"
    assert result.diff is None


def test_sell_without_tokens(live_curve, program_id, account_infos):
    curve, _, accounts = live_curve
    ix = sell_instruction(Keypair().pubkey(), curve.mint, curve.fee_recipient, SCALE, 0, program_id)
    result = process_instruction(program_id, account_infos(ix, accounts), bytes(ix.data), CLOCK)
    assert result.error_code == "InsufficientTokenBalance"


def test_leaderboard_limit_zero(program_id):
    ix = get_leaderboard_instruction(Keypair().pubkey(), [], limit=0, program_id=program_id)
    assert process_instruction(program_id, [], bytes(ix.data), CLOCK).error_code == "InvalidInstructionData"


def test_unknown_instruction(program_id):
    assert process_instruction(program_id, [], bytes([42]), CLOCK).error_code == "InvalidInstructionData"


def test_unexpected_exceptions_become_internal_errors(live_curve, program_id, account_infos):
    curve, _, accounts = live_curve
    buyer = Keypair().pubkey()
    accounts[buyer] = (SYSTEM_PROGRAM_ID, 10 * SCALE, b"")
    ix = buy_instruction(buyer, curve.mint, curve.fee_recipient, SCALE, 10 * SCALE, program_id)

    with patch("mcp_solana_curve.processor.quote_buy", side_effect=RuntimeError("boom")):
        result = process_instruction(program_id, account_infos(ix, accounts), bytes(ix.data), CLOCK)

    assert result.error_code == "InternalError"
    assert result.diff is None


def test_record_trade_keeps_latest_timestamp():
    stats = TradingStats(owner=Keypair().pubkey(), total_bought=5, buy_count=1, last_trade_timestamp=200)
    updated = record_trade(stats, stats.owner, "sell", 3, clock=100)
    assert updated.total_sold == 3
    assert updated.sell_count == 1
    assert updated.last_trade_timestamp == 200
    assert stats.total_sold == 0
