import pytest
from dotenv import load_dotenv
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from mcp_solana_curve.accounts import AccountInfo
from mcp_solana_curve.schemas import CurveType
from mcp_solana_curve.state import BondingCurve

load_dotenv()

SCALE = 1_000_000_000


def _make_curve(curve_type=CurveType.linear, base_price=SCALE, slope=SCALE, max_supply=10**15,
                current_supply=0, reserve_balance=0, fee_basis_points=0, **keys) -> BondingCurve:
    return BondingCurve(
        authority=keys.get("authority", Keypair().pubkey()),
        mint=keys.get("mint", Keypair().pubkey()),
        treasury=keys.get("treasury", Keypair().pubkey()),
        fee_recipient=keys.get("fee_recipient", Keypair().pubkey()),
        curve_type=curve_type,
        base_price=base_price,
        slope=slope,
        max_supply=max_supply,
        current_supply=current_supply,
        reserve_balance=reserve_balance,
        fee_basis_points=fee_basis_points,
        bump=255,
    )


def _account_infos(ix: Instruction, accounts=None):
    """AccountInfo list for an instruction; ``accounts`` maps keys to (owner, lamports, data)."""
    accounts = accounts or {}
    infos = []
    for meta in ix.accounts:
        info = AccountInfo(key=meta.pubkey, is_signer=meta.is_signer, is_writable=meta.is_writable)
        if meta.pubkey in accounts:
            info.owner, info.lamports, info.data = accounts[meta.pubkey]
        infos.append(info)
    return infos


@pytest.fixture
def make_curve():
    return _make_curve


@pytest.fixture
def account_infos():
    return _account_infos


@pytest.fixture
def program_id() -> Pubkey:
    return Pubkey.from_string("7utv7LmctA7qFDHnKKdHAXuUV2WWSG49a4QaYythRZNZ")
