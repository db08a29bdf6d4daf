"""
Token Pricing Engine with Bonding Curves

This module is the single source of truth for what a trade costs. It computes the spot
price of the token as a pure function of circulating supply, and the cost of a buy or the
proceeds of a sell, using unsigned fixed-point integers scaled by 1e9. No floating point
is used anywhere, so two executions with identical inputs always produce identical
integers.

Bonding Curve Types Supported:
- Linear:      price = base_price + slope * supply / 1e9
- Exponential: price = base_price * (1 + slope / 1e9) ** supply
- Logarithmic: price = base_price * ln(1 + slope * supply / 1000)

Fixed-Point Rules:
- Prices and slopes are u64 values scaled by SCALE (1e9)
- Every product is checked against 128 bits before it is divided
- Every value that lands in a record or a transfer is checked against 64 bits
- Overflow raises CurveArithmeticError; nothing saturates or wraps

Exponential Evaluation:
    The growth factor (SCALE + slope) is raised to ``supply`` by left-to-right
    square-and-multiply over the bits of ``supply``, truncating after every fixed-point
    multiplication. The running value never decreases, so an overflow at any step means
    the final price would overflow as well.

Logarithmic Evaluation:
    The argument ``SCALE + slope * supply / 1000`` is a fixed-point number >= 1.0. Its
    natural log is ``log2(x) * ln(2)``; the integer part of log2 comes from the bit length
    of the integer part of x, and 32 fraction bits come from repeated squaring of the
    normalised mantissa (the classic binary logarithm algorithm). ``ln(2)`` is the
    constant 693147180 / 1e9.

Trade Pricing Policy:
    A batch is priced at one spot price: the price at the lower edge of the supply band
    the trade moves through. For a buy that is the pre-trade supply; for a sell of ``n``
    from supply ``s + n`` it is ``s``. Selling back exactly what was just bought is
    therefore priced identically to the buy. Buyer cost is rounded up and seller proceeds
    are rounded down, so rounding never moves value out of the reserve.
"""
from dataclasses import dataclass

from mcp_solana_curve.errors import CurveArithmeticError, InvalidTokenAmountError
from mcp_solana_curve.fees import calculate_fee
from mcp_solana_curve.schemas import CurveType
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)

SCALE = 1_000_000_000
U64_MAX = 2**64 - 1
U128_MAX = 2**128 - 1

LOG_ARGUMENT_DIVISOR = 1_000
LN2_SCALED = 693_147_180
LOG_FRACTION_BITS = 32


# --- Checked Fixed-Point Helpers ---

def to_u64(value: int, what: str = "value") -> int:
    """Returns ``value`` if it fits an unsigned 64-bit integer."""
    if value < 0 or value > U64_MAX:
        raise CurveArithmeticError(f"{what} {value} does not fit in u64")
    return value


def _check_u128(value: int, what: str) -> int:
    if value < 0 or value > U128_MAX:
        raise CurveArithmeticError(f"{what} overflows 128 bits")
    return value


def mul_div_floor(a: int, b: int, denominator: int) -> int:
    """``floor(a * b / denominator)`` with a 128-bit checked product."""
    return _check_u128(a * b, "product") // denominator


def mul_div_ceil(a: int, b: int, denominator: int) -> int:
    """``ceil(a * b / denominator)`` with a 128-bit checked product."""
    return -(-_check_u128(a * b, "product") // denominator)


def fixed_mul(a: int, b: int) -> int:
    return mul_div_floor(a, b, SCALE)


def fixed_pow(factor: int, exponent: int) -> int:
    """Raises a 1e9-scaled ``factor`` (>= 1.0) to an integer power, checking every step."""
    result = SCALE
    for bit in bin(exponent)[2:]:
        result = fixed_mul(result, result)
        if bit == "1":
            result = fixed_mul(result, factor)
    return result


def fixed_ln(x: int) -> int:
    """Natural log of a 1e9-scaled fixed-point ``x >= 1.0``, as a 1e9-scaled integer."""
    if x < SCALE:
        raise CurveArithmeticError(f"logarithm argument {x} is below 1.0")

    whole_bits = (x // SCALE).bit_length() - 1
    one = 1 << LOG_FRACTION_BITS
    two = one << 1

    # mantissa in [1, 2) as a Q32 number
    mantissa = (x << LOG_FRACTION_BITS) // (SCALE << whole_bits)
    log2_q = whole_bits << LOG_FRACTION_BITS
    for i in range(1, LOG_FRACTION_BITS + 1):
        mantissa = (mantissa * mantissa) >> LOG_FRACTION_BITS
        if mantissa >= two:
            mantissa >>= 1
            log2_q |= 1 << (LOG_FRACTION_BITS - i)

    return (log2_q * LN2_SCALED) >> LOG_FRACTION_BITS


# --- Spot Price ---

def price_at(curve_type: CurveType, base_price: int, slope: int, supply: int) -> int:
    """
    Computes the spot price per 1e9 base units at the given circulating supply.

    Args:
        curve_type: One of the enumerated curve shapes.
        base_price: Price at zero supply (lamports, scaled by 1e9).
        slope: Curve steepness (scaled by 1e9).
        supply: Circulating supply in token base units.

    Returns:
        The unit price as a u64.

    Raises:
        CurveArithmeticError: If any intermediate overflows.
    """
    to_u64(base_price, "base_price")
    to_u64(slope, "slope")
    to_u64(supply, "supply")

    if curve_type == CurveType.linear:
        price = base_price + mul_div_floor(slope, supply, SCALE)
    elif curve_type == CurveType.exponential:
        factor = fixed_pow(SCALE + slope, supply)
        price = fixed_mul(base_price, factor)
    elif curve_type == CurveType.logarithmic:
        argument = _check_u128(SCALE + slope * supply // LOG_ARGUMENT_DIVISOR, "logarithm argument")
        price = fixed_mul(base_price, fixed_ln(argument))
    else:
        raise CurveArithmeticError(f"No pricing rule for curve type {curve_type!r}")

    return to_u64(price, "price")


# --- Trade Cost / Proceeds ---

def cost_to_buy(curve, supply: int, amount: int):
    """
    Cost of buying ``amount`` base units starting from ``supply``.

    ``curve`` is anything exposing ``curve_type``, ``base_price`` and ``slope``
    (normally a BondingCurve record).

    Returns:
        ``(total_cost, new_supply)`` with the cost rounded up.
    """
    if amount <= 0:
        raise InvalidTokenAmountError("Buy amount must be positive")

    new_supply = to_u64(supply + amount, "new supply")
    price = price_at(curve.curve_type, curve.base_price, curve.slope, supply)
    total_cost = to_u64(mul_div_ceil(price, amount, SCALE), "buy cost")
    return total_cost, new_supply


def proceeds_from_sell(curve, supply: int, amount: int):
    """
    Proceeds of selling ``amount`` base units starting from ``supply``.

    Returns:
        ``(total_proceeds, new_supply)`` with the proceeds rounded down.
    """
    if amount <= 0:
        raise InvalidTokenAmountError("Sell amount must be positive")
    if amount > supply:
        raise CurveArithmeticError(f"Cannot sell {amount} from a supply of {supply}")

    new_supply = supply - amount
    price = price_at(curve.curve_type, curve.base_price, curve.slope, new_supply)
    total_proceeds = to_u64(mul_div_floor(price, amount, SCALE), "sell proceeds")
    return total_proceeds, new_supply


@dataclass(frozen=True)
class TradeQuote:
    """A fully priced trade: the numbers the processor commits and the server reports."""

    side: str
    token_amount: int
    unit_price: int
    gross_amount: int
    fee: int
    net_amount: int
    new_supply: int


def quote_buy(curve, token_amount: int) -> TradeQuote:
    """Prices a buy against the curve's current supply, fee included."""
    cost, new_supply = cost_to_buy(curve, curve.current_supply, token_amount)
    fee = calculate_fee(cost, curve.fee_basis_points)
    total = to_u64(cost + fee, "buy total")
    unit_price = price_at(curve.curve_type, curve.base_price, curve.slope, curve.current_supply)
    logger.debug(f"Buy quote: amount={token_amount}, price={unit_price}, cost={cost}, fee={fee}, total={total}")
    return TradeQuote("buy", token_amount, unit_price, cost, fee, total, new_supply)


def quote_sell(curve, token_amount: int) -> TradeQuote:
    """Prices a sell against the curve's current supply, fee deducted."""
    proceeds, new_supply = proceeds_from_sell(curve, curve.current_supply, token_amount)
    fee = calculate_fee(proceeds, curve.fee_basis_points)
    net = proceeds - fee
    unit_price = price_at(curve.curve_type, curve.base_price, curve.slope, new_supply)
    logger.debug(f"Sell quote: amount={token_amount}, price={unit_price}, proceeds={proceeds}, fee={fee}, net={net}")
    return TradeQuote("sell", token_amount, unit_price, proceeds, fee, net, new_supply)
