"""
Protocol fee calculation (deterministic, integer-only).

The fee is always rounded down, and always computed on the gross amount of a trade:
the buyer's cost before the fee is added, or the seller's proceeds before the fee is
taken out.
"""
from mcp_solana_curve.errors import CurveArithmeticError, InvalidFeeBasisPointsError

BPS_DENOM = 10_000
U64_MAX = 2**64 - 1
U128_MAX = 2**128 - 1


def validate_fee_basis_points(fee_basis_points: int) -> int:
    """Return ``fee_basis_points`` if it is a rate between 0% and 100%."""
    if not isinstance(fee_basis_points, int) or not (0 <= fee_basis_points <= BPS_DENOM):
        raise InvalidFeeBasisPointsError(
            f"fee_basis_points must be in [0, {BPS_DENOM}], got {fee_basis_points}"
        )
    return fee_basis_points


def calculate_fee(amount: int, fee_basis_points: int) -> int:
    """
    Computes ``floor(amount * fee_basis_points / 10000)``.

    Args:
        amount: Gross amount in lamports (u64).
        fee_basis_points: Fee rate in basis points, 0-10000.

    Returns:
        The fee in lamports; never larger than ``amount``.

    Raises:
        InvalidFeeBasisPointsError: If the rate is out of range.
        CurveArithmeticError: If ``amount`` is not a u64 or the product overflows 128 bits.
    """
    validate_fee_basis_points(fee_basis_points)
    if amount < 0 or amount > U64_MAX:
        raise CurveArithmeticError(f"fee base amount {amount} is not a u64")

    product = amount * fee_basis_points
    if product > U128_MAX:
        raise CurveArithmeticError("fee product overflows 128 bits")
    return product // BPS_DENOM
