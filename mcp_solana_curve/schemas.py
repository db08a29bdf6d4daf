"""
Pydantic Data Models and Validation Schemas

This module defines the closed curve-type enumeration used across the program and the
response models returned by the MCP server and the Actions endpoint.

Key Components:
- CurveType: The three supported curve shapes, with a single checked entry point for
  numeric tags read from the wire or from account data
- TradeQuoteModel: Cost/proceeds breakdown of a prospective buy or sell
- CurveInfoModel: Human-facing view of a BondingCurve record
- LeaderboardEntryModel / ProfileModel: Read-only views of TradingStats and UserProfile

The persisted records themselves live in ``state.py``; the models here are what leaves
the process as JSON.
"""
from enum import IntEnum
from typing import List, Optional

from pydantic import BaseModel, Field

from mcp_solana_curve.errors import InvalidCurveTypeError


class CurveType(IntEnum):
    linear = 0
    exponential = 1
    logarithmic = 2

    @classmethod
    def from_tag(cls, tag: int) -> "CurveType":
        """Converts a raw numeric tag, rejecting anything outside the enumeration."""
        try:
            return cls(tag)
        except ValueError:
            raise InvalidCurveTypeError(f"Unknown curve type tag: {tag}")


class TradeQuoteModel(BaseModel):
    side: str
    token_amount: int = Field(gt=0)
    unit_price: int = Field(ge=0, description="Spot price used for the whole batch (lamports per 1e9 base units).")
    gross_amount: int = Field(ge=0, description="Cost before fee (buy) or proceeds before fee (sell).")
    fee: int = Field(ge=0)
    net_amount: int = Field(ge=0, description="Total paid by the buyer or received by the seller.")
    new_supply: int = Field(ge=0)


class CurveInfoModel(BaseModel):
    address: str
    authority: str
    mint: str
    treasury: str
    fee_recipient: str
    curve_type: CurveType
    base_price: int
    slope: int
    max_supply: int
    current_supply: int
    reserve_balance: int
    fee_basis_points: int
    spot_price: int
    remaining_supply: int


class LeaderboardEntryModel(BaseModel):
    rank: int
    owner: str
    volume: int
    total_bought: int
    total_sold: int
    buy_count: int
    sell_count: int
    last_trade_timestamp: int
    username: Optional[str] = None


class LeaderboardModel(BaseModel):
    limit: int
    offset: int
    entries: List[LeaderboardEntryModel] = []


class ProfileModel(BaseModel):
    owner: str
    username: str
    bio: str
