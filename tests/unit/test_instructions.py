import pytest
from solders.keypair import Keypair

from mcp_solana_curve.errors import (
    InvalidCurveTypeError,
    InvalidInstructionError,
    InvalidProfileDataError,
)
from mcp_solana_curve.instructions import (
    BuyTokens,
    GetLeaderboard,
    Initialize,
    SellTokens,
    UpdateProfile,
    decode_instruction,
)
from mcp_solana_curve.schemas import CurveType


def _initialize(**overrides) -> Initialize:
    fields = dict(
        decimals=6,
        curve_type=CurveType.exponential,
        fee_basis_points=250,
        base_price=1_000_000,
        slope=5_000,
        max_supply=10**12,
        fee_recipient=Keypair().pubkey(),
    )
    fields.update(overrides)
    return Initialize(**fields)


def _profile_payload(username: bytes, bio: bytes = b"", username_len=None, bio_len=None) -> bytes:
    return (
        bytes([3, len(username) if username_len is None else username_len,
               len(bio) if bio_len is None else bio_len, 0, 0])
        + username.ljust(32, b"\x00")[:32]
        + bio.ljust(200, b"\x00")[:200]
    )


def test_initialize_base_payload_is_64_bytes():
    command = _initialize()
    data = command.encode()
    assert len(data) == 1 + 64
    assert decode_instruction(data) == command


def test_initialize_with_pre_buy_is_80_bytes():
    command = _initialize(initial_buy_amount=5_000, initial_max_sol=10**9)
    data = command.encode()
    assert len(data) == 1 + 80
    assert decode_instruction(data) == command


def test_initialize_with_metadata_is_354_bytes():
    command = _initialize(
        creator_username="maker",
        token_name="Curve Token",
        token_symbol="CRV",
        token_uri="https://example.com/crv.json",
        with_metadata=True,
    )
    data = command.encode()
    assert len(data) == 1 + 354

    decoded = decode_instruction(data)
    assert decoded == command
    assert decoded.has_metadata
    assert decoded.token_symbol == "CRV"


def test_initialize_with_zero_pre_buy_decodes_like_the_base_form():
    base = _initialize()
    decoded = decode_instruction(base.encode() + bytes(16))
    assert decoded == base
    assert decoded.encode() == base.encode()


def test_initialize_rejects_unknown_curve_tag():
    data = bytearray(_initialize().encode())
    data[2] = 3
    with pytest.raises(InvalidCurveTypeError) as excinfo:
        decode_instruction(bytes(data))
    assert excinfo.value.code == "InvalidCurveType"


@pytest.mark.parametrize("extra", [-1, 1, 17])
def test_initialize_rejects_unsupported_lengths(extra):
    data = _initialize().encode()
    data = data[:extra] if extra < 0 else data + bytes(extra)
    with pytest.raises(InvalidInstructionError):
        decode_instruction(data)


def test_initialize_rejects_oversized_symbol():
    with pytest.raises(InvalidInstructionError):
        _initialize(token_symbol="TOOLONGSYMBOL", with_metadata=True).encode()


def test_trade_commands():
    raw = bytes([1]) + (5).to_bytes(8, "little") + (7).to_bytes(8, "little")
    assert decode_instruction(raw) == BuyTokens(token_amount=5, max_sol_amount=7)

    raw = bytes([2]) + (9).to_bytes(8, "little") + (3).to_bytes(8, "little")
    assert decode_instruction(raw) == SellTokens(token_amount=9, min_sol_amount=3)


def test_trade_payload_of_wrong_size():
    with pytest.raises(InvalidInstructionError):
        decode_instruction(bytes([1]) + bytes(15))


def test_empty_data_and_unknown_discriminator():
    with pytest.raises(InvalidInstructionError) as excinfo:
        decode_instruction(b"")
    assert excinfo.value.code == "InvalidInstructionData"
    with pytest.raises(InvalidInstructionError):
        decode_instruction(bytes([5, 0, 0]))


def test_update_profile_decodes_utf8():
    command = UpdateProfile(username="zoë", bio="building 🚀")
    data = command.encode()
    assert len(data) == 1 + 236
    assert decode_instruction(data) == command


def test_update_profile_requires_a_username():
    with pytest.raises(InvalidProfileDataError) as excinfo:
        decode_instruction(_profile_payload(b""))
    assert excinfo.value.code == "InvalidProfileData"


def test_update_profile_length_prefixes_are_bounded():
    with pytest.raises(InvalidProfileDataError):
        decode_instruction(_profile_payload(b"a" * 32, username_len=33))
    with pytest.raises(InvalidProfileDataError):
        decode_instruction(_profile_payload(b"alice", b"x" * 200, bio_len=201))


def test_update_profile_rejects_invalid_utf8():
    with pytest.raises(InvalidProfileDataError):
        decode_instruction(_profile_payload(b"\xff\xfe"))


def test_update_profile_encode_rejects_long_fields():
    with pytest.raises(InvalidProfileDataError):
        UpdateProfile(username="a" * 33).encode()


def test_get_leaderboard():
    assert decode_instruction(bytes([4, 10, 5])) == GetLeaderboard(limit=10, offset=5)
    assert GetLeaderboard(limit=3).encode() == bytes([4, 3, 0])
