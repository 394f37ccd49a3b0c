"""
AMM pricing math.

Constant-product output with the fee taken from the input, price impact
against the spot price, and slippage minimums. All inputs are Decimal.
"""

from decimal import Decimal, ROUND_DOWN, getcontext

getcontext().prec = 50

ONE = Decimal(1)


def constant_product_out(
    amount_in: Decimal, reserve_in: Decimal, reserve_out: Decimal, fee: Decimal
) -> Decimal:
    """
    Output of an x*y=k swap with the fee applied to the input.

        out = in * (1 - fee) * reserve_out / (reserve_in + in * (1 - fee))

    Raises:
        ValueError: If the amount is not positive, a reserve is empty, or the
            fee is outside [0, 1)
    """
    if amount_in <= 0:
        raise ValueError(f"amount_in must be positive: {amount_in}")
    if reserve_in <= 0 or reserve_out <= 0:
        raise ValueError(
            f"Reserves must be positive: in={reserve_in}, out={reserve_out}"
        )
    if fee < 0 or fee >= 1:
        raise ValueError(f"Fee must be in [0, 1): {fee}")

    amount_in_with_fee = amount_in * (ONE - fee)
    return (amount_in_with_fee * reserve_out) / (reserve_in + amount_in_with_fee)


def constant_product_impact(
    amount_in: Decimal, reserve_in: Decimal, reserve_out: Decimal, fee: Decimal
) -> Decimal:
    """
    Price impact of a constant-product swap, as a fraction.

    impact = 1 - actual_out / spot_out, where spot_out prices the post-fee
    input at reserve_out / reserve_in. Empty pools report 100%.
    """
    if reserve_in <= 0 or reserve_out <= 0:
        return ONE
    amount_in_with_fee = amount_in * (ONE - fee)
    actual = (amount_in_with_fee * reserve_out) / (reserve_in + amount_in_with_fee)
    theoretical = (amount_in_with_fee * reserve_out) / reserve_in
    if theoretical == 0:
        return ONE
    impact = ONE - actual / theoretical
    return max(Decimal(0), min(impact, ONE))


def rate_impact(full_out: Decimal, full_in: Decimal, probe_out: Decimal, probe_in: Decimal) -> Decimal:
    """Price impact of a quoted swap, comparing its rate to a small probe quote."""
    if probe_out <= 0 or probe_in <= 0 or full_in <= 0:
        return ONE
    impact = ONE - (full_out / full_in) / (probe_out / probe_in)
    return max(Decimal(0), min(impact, ONE))


def min_output(amount: Decimal, tolerance: Decimal) -> Decimal:
    """Smallest output still accepted under a slippage tolerance."""
    if tolerance < 0 or tolerance >= 1:
        raise ValueError(f"Slippage tolerance must be in [0, 1): {tolerance}")
    return amount * (ONE - tolerance)


def to_raw(amount: Decimal, decimals: int) -> int:
    """Convert whole-token units to the integer amount the chain uses (rounds down)."""
    scaled = (amount * (Decimal(10) ** decimals)).quantize(ONE, rounding=ROUND_DOWN)
    return int(scaled)


def from_raw(raw: int, decimals: int) -> Decimal:
    return Decimal(raw) / (Decimal(10) ** decimals)


def stable_swap_out(
    amount_in: Decimal, rate: Decimal, fee: Decimal, reserve_out: Decimal
) -> Decimal:
    """
    Output of a stable-swap trade priced at a quoted rate.

    Raises:
        ValueError: If the amount is not positive, the rate is not positive,
            or the pool cannot pay the output
    """
    if amount_in <= 0:
        raise ValueError(f"amount_in must be positive: {amount_in}")
    if rate <= 0:
        raise ValueError(f"rate must be positive: {rate}")
    out = amount_in * rate * (ONE - fee)
    if out >= reserve_out:
        raise ValueError(f"Pool holds {reserve_out}, cannot pay {out}")
    return out
