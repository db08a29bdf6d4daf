import pytest
from solders.keypair import Keypair

from mcp_solana_curve.errors import InvalidAccountDataError
from mcp_solana_curve.schemas import CurveType
from mcp_solana_curve.state import (
    BONDING_CURVE_SIZE,
    TRADING_STATS_SIZE,
    USER_PROFILE_SIZE,
    BondingCurve,
    TradingStats,
    UserProfile,
    is_initialized_curve,
)


def test_record_sizes():
    assert BONDING_CURVE_SIZE == 173
    assert TRADING_STATS_SIZE == 64
    assert USER_PROFILE_SIZE == 266


def test_bonding_curve_bytes(make_curve):
    curve = make_curve(curve_type=CurveType.logarithmic, current_supply=42, reserve_balance=7, fee_basis_points=30)
    data = curve.to_bytes()
    assert len(data) == BONDING_CURVE_SIZE
    assert is_initialized_curve(data)
    assert BondingCurve.from_bytes(data) == curve


def test_zeroed_curve_account_is_not_initialized():
    assert not is_initialized_curve(bytes(BONDING_CURVE_SIZE))
    assert not is_initialized_curve(b"")


def test_stored_curve_with_unknown_tag_is_invalid_data(make_curve):
    data = bytearray(make_curve().to_bytes())
    data[128] = 9  # curve_type follows the four keys
    with pytest.raises(InvalidAccountDataError):
        BondingCurve.from_bytes(bytes(data))


def test_truncated_record_is_invalid_data(make_curve):
    with pytest.raises(InvalidAccountDataError):
        BondingCurve.from_bytes(make_curve().to_bytes()[:-1])
    with pytest.raises(InvalidAccountDataError):
        TradingStats.from_bytes(bytes(63))


def test_trading_stats_volume():
    stats = TradingStats(owner=Keypair().pubkey(), total_bought=10, total_sold=4, buy_count=2, sell_count=1,
                         last_trade_timestamp=-5)
    assert stats.volume == 14
    assert TradingStats.from_bytes(stats.to_bytes()) == stats


def test_user_profile_text():
    profile = UserProfile(owner=Keypair().pubkey(), username="zoë", bio="gm")
    data = profile.to_bytes()
    assert len(data) == USER_PROFILE_SIZE
    assert UserProfile.from_bytes(data) == profile


def test_user_profile_with_bad_length_prefix():
    data = bytearray(UserProfile(owner=Keypair().pubkey(), username="alice").to_bytes())
    data[32] = 40
    with pytest.raises(InvalidAccountDataError):
        UserProfile.from_bytes(bytes(data))
