"""
Persisted account records and their binary layouts.

Each record is a frozen pydantic model paired with a ``construct`` layout. Records are
read with ``from_bytes`` and written back with ``to_bytes``; updates go through
``model_copy(update=...)`` so a handler never mutates the record it was given.

Layouts (little-endian, no implicit padding):
- BondingCurve (173 bytes): authority, mint, treasury, fee_recipient, curve_type,
  base_price, slope, max_supply, current_supply, reserve_balance, fee_basis_points,
  bump, initialized
- TradingStats (64 bytes): owner, total_bought, total_sold, buy_count, sell_count,
  last_trade_timestamp
- UserProfile (266 bytes): owner, username_len, bio_len, username[32], bio[200]
"""
from construct import Bytes, ConstructError, Flag, Int8ul, Int16ul, Int32ul, Int64sl, Int64ul, Struct
from pydantic import BaseModel, ConfigDict
from solders.pubkey import Pubkey

from mcp_solana_curve.errors import InvalidAccountDataError, InvalidCurveTypeError
from mcp_solana_curve.schemas import CurveType

PUBLIC_KEY_LAYOUT = Bytes(32)

MAX_USERNAME_LEN = 32
MAX_BIO_LEN = 200

BONDING_CURVE_LAYOUT = Struct(
    "authority" / PUBLIC_KEY_LAYOUT,
    "mint" / PUBLIC_KEY_LAYOUT,
    "treasury" / PUBLIC_KEY_LAYOUT,
    "fee_recipient" / PUBLIC_KEY_LAYOUT,
    "curve_type" / Int8ul,
    "base_price" / Int64ul,
    "slope" / Int64ul,
    "max_supply" / Int64ul,
    "current_supply" / Int64ul,
    "reserve_balance" / Int64ul,
    "fee_basis_points" / Int16ul,
    "bump" / Int8ul,
    "initialized" / Flag,
)

TRADING_STATS_LAYOUT = Struct(
    "owner" / PUBLIC_KEY_LAYOUT,
    "total_bought" / Int64ul,
    "total_sold" / Int64ul,
    "buy_count" / Int32ul,
    "sell_count" / Int32ul,
    "last_trade_timestamp" / Int64sl,
)

USER_PROFILE_LAYOUT = Struct(
    "owner" / PUBLIC_KEY_LAYOUT,
    "username_len" / Int8ul,
    "bio_len" / Int8ul,
    "username" / Bytes(MAX_USERNAME_LEN),
    "bio" / Bytes(MAX_BIO_LEN),
)

BONDING_CURVE_SIZE = BONDING_CURVE_LAYOUT.sizeof()
TRADING_STATS_SIZE = TRADING_STATS_LAYOUT.sizeof()
USER_PROFILE_SIZE = USER_PROFILE_LAYOUT.sizeof()


def _parse(layout, data: bytes, record_name: str):
    if len(data) != layout.sizeof():
        raise InvalidAccountDataError(
            f"{record_name} data must be {layout.sizeof()} bytes, got {len(data)}"
        )
    try:
        return layout.parse(bytes(data))
    except ConstructError as e:
        raise InvalidAccountDataError(f"Could not decode {record_name}: {e}")


class BondingCurve(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    authority: Pubkey
    mint: Pubkey
    treasury: Pubkey
    fee_recipient: Pubkey
    curve_type: CurveType
    base_price: int
    slope: int
    max_supply: int
    current_supply: int = 0
    reserve_balance: int = 0
    fee_basis_points: int
    bump: int
    initialized: bool = True

    @property
    def remaining_supply(self) -> int:
        return self.max_supply - self.current_supply

    @classmethod
    def from_bytes(cls, data: bytes) -> "BondingCurve":
        raw = _parse(BONDING_CURVE_LAYOUT, data, "BondingCurve")
        try:
            curve_type = CurveType.from_tag(raw.curve_type)
        except InvalidCurveTypeError as e:
            raise InvalidAccountDataError(f"Stored curve has {e.message}")
        return cls(
            authority=Pubkey.from_bytes(raw.authority),
            mint=Pubkey.from_bytes(raw.mint),
            treasury=Pubkey.from_bytes(raw.treasury),
            fee_recipient=Pubkey.from_bytes(raw.fee_recipient),
            curve_type=curve_type,
            base_price=raw.base_price,
            slope=raw.slope,
            max_supply=raw.max_supply,
            current_supply=raw.current_supply,
            reserve_balance=raw.reserve_balance,
            fee_basis_points=raw.fee_basis_points,
            bump=raw.bump,
            initialized=raw.initialized,
        )

    def to_bytes(self) -> bytes:
        return BONDING_CURVE_LAYOUT.build(
            dict(
                authority=bytes(self.authority),
                mint=bytes(self.mint),
                treasury=bytes(self.treasury),
                fee_recipient=bytes(self.fee_recipient),
                curve_type=int(self.curve_type),
                base_price=self.base_price,
                slope=self.slope,
                max_supply=self.max_supply,
                current_supply=self.current_supply,
                reserve_balance=self.reserve_balance,
                fee_basis_points=self.fee_basis_points,
                bump=self.bump,
                initialized=self.initialized,
            )
        )


def is_initialized_curve(data: bytes) -> bool:
    """True if ``data`` holds a BondingCurve whose initialized flag is set."""
    return len(data) == BONDING_CURVE_SIZE and data[-1] != 0


class TradingStats(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    owner: Pubkey
    total_bought: int = 0
    total_sold: int = 0
    buy_count: int = 0
    sell_count: int = 0
    last_trade_timestamp: int = 0

    @property
    def volume(self) -> int:
        return self.total_bought + self.total_sold

    @classmethod
    def from_bytes(cls, data: bytes) -> "TradingStats":
        raw = _parse(TRADING_STATS_LAYOUT, data, "TradingStats")
        return cls(
            owner=Pubkey.from_bytes(raw.owner),
            total_bought=raw.total_bought,
            total_sold=raw.total_sold,
            buy_count=raw.buy_count,
            sell_count=raw.sell_count,
            last_trade_timestamp=raw.last_trade_timestamp,
        )

    def to_bytes(self) -> bytes:
        return TRADING_STATS_LAYOUT.build(
            dict(
                owner=bytes(self.owner),
                total_bought=self.total_bought,
                total_sold=self.total_sold,
                buy_count=self.buy_count,
                sell_count=self.sell_count,
                last_trade_timestamp=self.last_trade_timestamp,
            )
        )


class UserProfile(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    owner: Pubkey
    username: str
    bio: str = ""

    @classmethod
    def from_bytes(cls, data: bytes) -> "UserProfile":
        raw = _parse(USER_PROFILE_LAYOUT, data, "UserProfile")
        if raw.username_len > MAX_USERNAME_LEN or raw.bio_len > MAX_BIO_LEN:
            raise InvalidAccountDataError("UserProfile length prefix out of range")
        try:
            username = raw.username[: raw.username_len].decode("utf-8")
            bio = raw.bio[: raw.bio_len].decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidAccountDataError(f"UserProfile text is not UTF-8: {e}")
        return cls(owner=Pubkey.from_bytes(raw.owner), username=username, bio=bio)

    def to_bytes(self) -> bytes:
        username = self.username.encode("utf-8")
        bio = self.bio.encode("utf-8")
        return USER_PROFILE_LAYOUT.build(
            dict(
                owner=bytes(self.owner),
                username_len=len(username),
                bio_len=len(bio),
                username=username.ljust(MAX_USERNAME_LEN, b"\x00"),
                bio=bio.ljust(MAX_BIO_LEN, b"\x00"),
            )
        )
