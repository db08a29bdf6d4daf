"""
Instruction wire format: a 1-byte discriminator followed by fixed little-endian fields.

    0 Initialize      decimals u8, curve_type u8, fee_basis_points u16, padding u32,
                      base_price u64, slope u64, max_supply u64, fee_recipient [32]
                      (64 bytes), optionally followed by
                      initial_buy_amount u64, initial_max_sol u64 (80 bytes), optionally
                      followed by username [32], token_name [32], token_symbol [10],
                      token_uri [200] where each field's first byte is its length (354 bytes)
    1 BuyTokens       token_amount u64, max_sol_amount u64
    2 SellTokens      token_amount u64, min_sol_amount u64
    3 UpdateProfile   username_len u8, bio_len u8, padding u16, username [32], bio [200]
    4 GetLeaderboard  limit u8, offset u8

``decode_instruction`` turns raw bytes into one of the command dataclasses below; every
command can ``encode`` itself back to the same bytes.
"""
from dataclasses import dataclass
from enum import IntEnum
from typing import Union

from construct import Bytes, ConstructError, Int8ul, Int16ul, Int64ul, Padding, Struct
from solders.pubkey import Pubkey

from mcp_solana_curve.errors import InvalidInstructionError, InvalidProfileDataError
from mcp_solana_curve.schemas import CurveType
from mcp_solana_curve.state import MAX_BIO_LEN, MAX_USERNAME_LEN


class InstructionType(IntEnum):
    initialize = 0
    buy_tokens = 1
    sell_tokens = 2
    update_profile = 3
    get_leaderboard = 4


INITIALIZE_LAYOUT = Struct(
    "decimals" / Int8ul,
    "curve_type" / Int8ul,
    "fee_basis_points" / Int16ul,
    Padding(4),
    "base_price" / Int64ul,
    "slope" / Int64ul,
    "max_supply" / Int64ul,
    "fee_recipient" / Bytes(32),
)

INITIALIZE_PRE_BUY_LAYOUT = Struct(
    "initial_buy_amount" / Int64ul,
    "initial_max_sol" / Int64ul,
)

INITIALIZE_METADATA_LAYOUT = Struct(
    "username" / Bytes(32),
    "token_name" / Bytes(32),
    "token_symbol" / Bytes(10),
    "token_uri" / Bytes(200),
)

TRADE_LAYOUT = Struct(
    "token_amount" / Int64ul,
    "sol_amount" / Int64ul,
)

UPDATE_PROFILE_LAYOUT = Struct(
    "username_len" / Int8ul,
    "bio_len" / Int8ul,
    Padding(2),
    "username" / Bytes(MAX_USERNAME_LEN),
    "bio" / Bytes(MAX_BIO_LEN),
)

GET_LEADERBOARD_LAYOUT = Struct(
    "limit" / Int8ul,
    "offset" / Int8ul,
)

INITIALIZE_BASE_SIZE = INITIALIZE_LAYOUT.sizeof()
INITIALIZE_PRE_BUY_SIZE = INITIALIZE_BASE_SIZE + INITIALIZE_PRE_BUY_LAYOUT.sizeof()
INITIALIZE_METADATA_SIZE = INITIALIZE_PRE_BUY_SIZE + INITIALIZE_METADATA_LAYOUT.sizeof()


def _decode_prefixed(raw: bytes, field_name: str) -> str:
    length = raw[0]
    if length > len(raw) - 1:
        raise InvalidInstructionError(f"{field_name} length {length} exceeds {len(raw) - 1} bytes")
    try:
        return raw[1:1 + length].decode("utf-8")
    except UnicodeDecodeError:
        raise InvalidInstructionError(f"{field_name} is not valid UTF-8")


def _encode_prefixed(text: str, size: int, field_name: str) -> bytes:
    encoded = text.encode("utf-8")
    if len(encoded) > size - 1:
        raise InvalidInstructionError(f"{field_name} is longer than {size - 1} bytes")
    return (bytes([len(encoded)]) + encoded).ljust(size, b"\x00")


@dataclass(frozen=True)
class Initialize:
    decimals: int
    curve_type: CurveType
    fee_basis_points: int
    base_price: int
    slope: int
    max_supply: int
    fee_recipient: Pubkey
    initial_buy_amount: int = 0
    initial_max_sol: int = 0
    creator_username: str = ""
    token_name: str = ""
    token_symbol: str = ""
    token_uri: str = ""
    with_metadata: bool = False

    @property
    def has_metadata(self) -> bool:
        return bool(self.token_name or self.token_symbol or self.token_uri)

    def encode(self) -> bytes:
        data = INITIALIZE_LAYOUT.build(
            dict(
                decimals=self.decimals,
                curve_type=int(self.curve_type),
                fee_basis_points=self.fee_basis_points,
                base_price=self.base_price,
                slope=self.slope,
                max_supply=self.max_supply,
                fee_recipient=bytes(self.fee_recipient),
            )
        )
        with_metadata = self.with_metadata or self.has_metadata or bool(self.creator_username)
        if with_metadata or self.initial_buy_amount or self.initial_max_sol:
            data += INITIALIZE_PRE_BUY_LAYOUT.build(
                dict(initial_buy_amount=self.initial_buy_amount, initial_max_sol=self.initial_max_sol)
            )
        if with_metadata:
            data += INITIALIZE_METADATA_LAYOUT.build(
                dict(
                    username=_encode_prefixed(self.creator_username, 32, "username"),
                    token_name=_encode_prefixed(self.token_name, 32, "token name"),
                    token_symbol=_encode_prefixed(self.token_symbol, 10, "token symbol"),
                    token_uri=_encode_prefixed(self.token_uri, 200, "token uri"),
                )
            )
        return bytes([InstructionType.initialize]) + data

    @classmethod
    def decode(cls, payload: bytes) -> "Initialize":
        if len(payload) not in (INITIALIZE_BASE_SIZE, INITIALIZE_PRE_BUY_SIZE, INITIALIZE_METADATA_SIZE):
            raise InvalidInstructionError(f"Initialize payload has unsupported length {len(payload)}")

        base = INITIALIZE_LAYOUT.parse(payload[:INITIALIZE_BASE_SIZE])
        fields = dict(
            decimals=base.decimals,
            curve_type=CurveType.from_tag(base.curve_type),
            fee_basis_points=base.fee_basis_points,
            base_price=base.base_price,
            slope=base.slope,
            max_supply=base.max_supply,
            fee_recipient=Pubkey.from_bytes(base.fee_recipient),
        )
        if len(payload) >= INITIALIZE_PRE_BUY_SIZE:
            pre_buy = INITIALIZE_PRE_BUY_LAYOUT.parse(payload[INITIALIZE_BASE_SIZE:INITIALIZE_PRE_BUY_SIZE])
            fields.update(initial_buy_amount=pre_buy.initial_buy_amount, initial_max_sol=pre_buy.initial_max_sol)
        if len(payload) == INITIALIZE_METADATA_SIZE:
            meta = INITIALIZE_METADATA_LAYOUT.parse(payload[INITIALIZE_PRE_BUY_SIZE:])
            fields.update(
                creator_username=_decode_prefixed(meta.username, "username"),
                token_name=_decode_prefixed(meta.token_name, "token name"),
                token_symbol=_decode_prefixed(meta.token_symbol, "token symbol"),
                token_uri=_decode_prefixed(meta.token_uri, "token uri"),
                with_metadata=True,
            )
        return cls(**fields)


@dataclass(frozen=True)
class BuyTokens:
    token_amount: int
    max_sol_amount: int

    def encode(self) -> bytes:
        return bytes([InstructionType.buy_tokens]) + TRADE_LAYOUT.build(
            dict(token_amount=self.token_amount, sol_amount=self.max_sol_amount)
        )

    @classmethod
    def decode(cls, payload: bytes) -> "BuyTokens":
        _expect_size(payload, TRADE_LAYOUT, "BuyTokens")
        parsed = TRADE_LAYOUT.parse(payload)
        return cls(token_amount=parsed.token_amount, max_sol_amount=parsed.sol_amount)


@dataclass(frozen=True)
class SellTokens:
    token_amount: int
    min_sol_amount: int

    def encode(self) -> bytes:
        return bytes([InstructionType.sell_tokens]) + TRADE_LAYOUT.build(
            dict(token_amount=self.token_amount, sol_amount=self.min_sol_amount)
        )

    @classmethod
    def decode(cls, payload: bytes) -> "SellTokens":
        _expect_size(payload, TRADE_LAYOUT, "SellTokens")
        parsed = TRADE_LAYOUT.parse(payload)
        return cls(token_amount=parsed.token_amount, min_sol_amount=parsed.sol_amount)


@dataclass(frozen=True)
class UpdateProfile:
    username: str
    bio: str = ""

    def encode(self) -> bytes:
        username = self.username.encode("utf-8")
        bio = self.bio.encode("utf-8")
        if len(username) > MAX_USERNAME_LEN or len(bio) > MAX_BIO_LEN:
            raise InvalidProfileDataError("username or bio is too long")
        return bytes([InstructionType.update_profile]) + UPDATE_PROFILE_LAYOUT.build(
            dict(
                username_len=len(username),
                bio_len=len(bio),
                username=username.ljust(MAX_USERNAME_LEN, b"\x00"),
                bio=bio.ljust(MAX_BIO_LEN, b"\x00"),
            )
        )

    @classmethod
    def decode(cls, payload: bytes) -> "UpdateProfile":
        _expect_size(payload, UPDATE_PROFILE_LAYOUT, "UpdateProfile")
        parsed = UPDATE_PROFILE_LAYOUT.parse(payload)
        if not 1 <= parsed.username_len <= MAX_USERNAME_LEN:
            raise InvalidProfileDataError(f"username length must be 1-{MAX_USERNAME_LEN}, got {parsed.username_len}")
        if parsed.bio_len > MAX_BIO_LEN:
            raise InvalidProfileDataError(f"bio length must be at most {MAX_BIO_LEN}, got {parsed.bio_len}")
        try:
            username = parsed.username[: parsed.username_len].decode("utf-8")
            bio = parsed.bio[: parsed.bio_len].decode("utf-8")
        except UnicodeDecodeError:
            raise InvalidProfileDataError("username and bio must be valid UTF-8")
        return cls(username=username, bio=bio)


@dataclass(frozen=True)
class GetLeaderboard:
    limit: int
    offset: int = 0

    def encode(self) -> bytes:
        return bytes([InstructionType.get_leaderboard]) + GET_LEADERBOARD_LAYOUT.build(
            dict(limit=self.limit, offset=self.offset)
        )

    @classmethod
    def decode(cls, payload: bytes) -> "GetLeaderboard":
        _expect_size(payload, GET_LEADERBOARD_LAYOUT, "GetLeaderboard")
        parsed = GET_LEADERBOARD_LAYOUT.parse(payload)
        return cls(limit=parsed.limit, offset=parsed.offset)


Command = Union[Initialize, BuyTokens, SellTokens, UpdateProfile, GetLeaderboard]

_COMMANDS = {
    InstructionType.initialize: Initialize,
    InstructionType.buy_tokens: BuyTokens,
    InstructionType.sell_tokens: SellTokens,
    InstructionType.update_profile: UpdateProfile,
    InstructionType.get_leaderboard: GetLeaderboard,
}


def _expect_size(payload: bytes, layout, name: str) -> None:
    if len(payload) != layout.sizeof():
        raise InvalidInstructionError(f"{name} payload must be {layout.sizeof()} bytes, got {len(payload)}")


def decode_instruction(data: bytes) -> Command:
    """
    Decodes raw instruction data into a typed command.

    Raises:
        InvalidInstructionError: Empty data, unknown discriminator or wrong payload size.
        InvalidCurveTypeError: Initialize with a curve tag outside the enumeration.
        InvalidProfileDataError: UpdateProfile with bad lengths or non-UTF-8 text.
    """
    if not data:
        raise InvalidInstructionError("Instruction data is empty")
    try:
        instruction_type = InstructionType(data[0])
    except ValueError:
        raise InvalidInstructionError(f"Unknown instruction discriminator {data[0]}")
    try:
        return _COMMANDS[instruction_type].decode(bytes(data[1:]))
    except ConstructError as e:
        raise InvalidInstructionError(f"Malformed {instruction_type.name} payload: {e}")
