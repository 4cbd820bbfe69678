"""
Precision-safe token amount conversion.

Converts between human decimal amounts ("100.5") and integer base units
(100500000 at 6 decimals) for any ERC20 decimals value in [0, 255].

Rules:
- Amounts never pass through binary floating point arithmetic. Parsing uses
  `decimal.Decimal` with a context wide enough for the input; rendering base
  units back to text uses integer `divmod` only.
- `to_base_units` truncates toward zero and then runs a mandatory round-trip
  check. Any digit that would be dropped raises `PrecisionLoss`; there is no
  best-effort fallback.
- `format_for_display` and `compact_balance` are cosmetic. Their output must
  never be fed back into `to_base_units`.
"""

from __future__ import annotations

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation, localcontext
from typing import Optional, Union

from errors import InvalidAmount, InvalidDecimals, PrecisionLoss
from observability import build_log_context, log_event

AmountLike = Union[str, int, float, Decimal]

MAX_DECIMALS = 255
MAX_UINT256 = 2**256 - 1
_MIN_PRECISION = 100

CODEC_CTX = build_log_context(tool="amounts")


def _check_decimals(decimals: int) -> int:
    if isinstance(decimals, bool) or not isinstance(decimals, int):
        raise InvalidDecimals(f"Invalid decimals: {decimals!r}. Expected an integer between 0-255.", {"decimals": repr(decimals)})
    if decimals < 0 or decimals > MAX_DECIMALS:
        raise InvalidDecimals(f"Invalid decimals: {decimals}. Expected an integer between 0-255.", {"decimals": decimals})
    return decimals


def _parse_amount(amount: AmountLike) -> Decimal:
    """
    Parse a user/API supplied amount into an exact Decimal.

    Floats are read through repr(), the shortest string that round-trips the
    binary value, so 0.1 becomes Decimal("0.1") rather than the 55-digit
    expansion of the underlying double.
    """
    if isinstance(amount, bool):
        raise InvalidAmount(f"Invalid amount type: {type(amount).__name__}")
    if isinstance(amount, Decimal):
        value = amount
    elif isinstance(amount, int):
        value = Decimal(amount)
    elif isinstance(amount, float):
        text = repr(amount)
        log_event(
            "float_amount_input",
            ctx=CODEC_CTX,
            level="warning",
            data={"amount": text, "exponential": "e" in text},
        )
        value = _decimal_from_text(text)
    elif isinstance(amount, str):
        value = _decimal_from_text(amount)
    else:
        raise InvalidAmount(f"Invalid amount type: {type(amount).__name__}. Expected string or number.")

    if not value.is_finite():
        raise InvalidAmount(f"Invalid amount: {amount!r}")
    if value < 0:
        raise InvalidAmount(f"Amount must not be negative: {amount!r}")
    return value


def _decimal_from_text(text: str) -> Decimal:
    s = text.strip()
    # Decimal() accepts PEP 515 underscores; token amounts never carry them.
    if not s or "_" in s:
        raise InvalidAmount(f"Invalid amount: {text!r}")
    try:
        return Decimal(s)
    except InvalidOperation:
        raise InvalidAmount(f"Invalid amount: {text!r}") from None


def _precision_for(value: Decimal, decimals: int) -> int:
    digits = len(value.as_tuple().digits)
    return max(_MIN_PRECISION, digits + decimals + 2)


def to_base_units(amount: AmountLike, decimals: int) -> int:
    """
    Convert a human decimal amount to integer base units.

    Examples:
        >>> to_base_units("1.5", 6)
        1500000
        >>> to_base_units("509287.390999000000026626", 18)
        509287390999000000026626

    Raises:
        InvalidAmount: not a finite, non-negative number, or above uint256.
        InvalidDecimals: decimals outside [0, 255].
        PrecisionLoss: the amount has more fractional digits than the token
            can represent (the round-trip check failed).
    """
    _check_decimals(decimals)
    value = _parse_amount(amount)
    if value == 0:
        return 0

    # Reject absurd magnitudes before widening the context for them.
    if value.adjusted() + decimals > 78:
        raise InvalidAmount(f"Amount {amount!r} exceeds the uint256 range at {decimals} decimals")

    with localcontext() as ctx:
        ctx.prec = _precision_for(value, decimals)
        scaled = value.scaleb(decimals)
        base_units = int(scaled.to_integral_value(rounding=ROUND_DOWN))
        restored = Decimal(base_units).scaleb(-decimals)

    if restored != value:
        raise PrecisionLoss(
            f"Precision loss detected! Original: {amount}, after conversion: {_plain(restored)}",
            {"amount": str(amount), "decimals": decimals, "restored": _plain(restored)},
        )
    if base_units > MAX_UINT256:
        raise InvalidAmount(f"Amount {amount!r} exceeds the uint256 range at {decimals} decimals")
    return base_units


def _coerce_base_units(base_units: Union[int, str]) -> int:
    if isinstance(base_units, bool):
        raise InvalidAmount(f"Invalid base units type: {type(base_units).__name__}")
    if isinstance(base_units, int):
        units = base_units
    elif isinstance(base_units, str):
        s = base_units.strip()
        if s.lower().startswith("0x"):
            try:
                units = int(s, 16)
            except ValueError:
                raise InvalidAmount(f"Invalid base units: {base_units!r}") from None
        elif s.isdigit():
            units = int(s)
        else:
            # RPC payloads sometimes arrive in exponential form; accept only exact integers.
            value = _decimal_from_text(s)
            if not value.is_finite() or value != value.to_integral_value():
                raise InvalidAmount(f"Base units must be an integer: {base_units!r}")
            log_event("exponential_base_units", ctx=CODEC_CTX, level="warning", data={"raw": s})
            with localcontext() as ctx:
                ctx.prec = _precision_for(value, 0)
                units = int(value)
    else:
        raise InvalidAmount(f"Invalid base units type: {type(base_units).__name__}. Expected int or string.")
    if units < 0:
        raise InvalidAmount(f"Base units must not be negative: {base_units!r}")
    return units


def to_decimal_string(base_units: Union[int, str], decimals: int) -> str:
    """
    Render base units as a canonical decimal string using integer arithmetic.

    Zero renders as "0"; trailing fractional zeros are trimmed and an all-zero
    remainder drops the decimal point. 1 wei at 18 decimals renders as
    "0.000000000000000001", never "0".
    """
    _check_decimals(decimals)
    units = _coerce_base_units(base_units)
    if units == 0:
        return "0"
    whole, remainder = divmod(units, 10**decimals)
    if remainder == 0:
        return str(whole)
    fraction = str(remainder).rjust(decimals, "0").rstrip("0")
    return f"{whole}.{fraction}"


def _plain(value: Decimal) -> str:
    with localcontext() as ctx:
        ctx.prec = _precision_for(value, 0)
        normalized = value.normalize()
    text = format(normalized, "f")
    return "0" if normalized == 0 else text


def canonicalize(amount: AmountLike) -> str:
    """Strip leading zeros and trailing fractional zeros ("007.500" -> "7.5")."""
    return _plain(_parse_amount(amount))


def prevent_scientific_notation(amount: AmountLike) -> str:
    """
    Return a plain decimal string for `amount`, expanding exponential notation
    through Decimal rather than by editing the string.
    """
    if isinstance(amount, str):
        s = amount.strip()
        if "e" not in s.lower():
            _parse_amount(s)
            return s
    return _plain(_parse_amount(amount))


def validate_amount_precision(amount: AmountLike, decimals: int) -> bool:
    try:
        to_base_units(amount, decimals)
    except (InvalidAmount, InvalidDecimals, PrecisionLoss):
        return False
    return True


def rounds_to_zero(base_units: Union[int, str], decimals: int, width: int) -> bool:
    """True when a non-zero amount would print as zero with `width` fractional digits."""
    _check_decimals(decimals)
    units = _coerce_base_units(base_units)
    if units == 0 or width >= decimals:
        return False
    return units < 10 ** (decimals - width)


def _display_source(value: Union[int, str, Decimal], decimals: int) -> str:
    if isinstance(value, int) and not isinstance(value, bool):
        return to_decimal_string(value, decimals)
    return canonicalize(value)


def _group(whole: str) -> str:
    return f"{int(whole):,}"


def format_for_display(
    value: Union[int, str, Decimal],
    decimals: int,
    *,
    max_fraction_digits: Optional[int] = None,
    fixed_width: Optional[int] = None,
    group_thousands: bool = False,
) -> str:
    """
    Presentation helper layered on the codec.

    `value` is base units when an int, a human decimal otherwise.

    - max_fraction_digits: round down to at most this many fractional digits,
      extending as needed so a non-zero amount keeps its first significant
      digit.
    - fixed_width: pad/truncate to exactly this many fractional digits. When
      that would print a non-zero amount as zero the result is flagged with a
      "<" prefix, e.g. "<0.0001".
    """
    _check_decimals(decimals)
    full = _display_source(value, decimals)
    whole, _, fraction = full.partition(".")
    nonzero = full != "0"

    if fixed_width is not None:
        if fixed_width < 0:
            raise ValueError("fixed_width must be >= 0")
        shown = fraction[:fixed_width].ljust(fixed_width, "0")
        if nonzero and whole == "0" and not shown.strip("0"):
            tiny = "1" if fixed_width == 0 else "0." + "0" * (fixed_width - 1) + "1"
            return "<" + tiny
        head = _group(whole) if group_thousands else whole
        return f"{head}.{shown}" if fixed_width else head

    if max_fraction_digits is not None:
        if max_fraction_digits < 0:
            raise ValueError("max_fraction_digits must be >= 0")
        keep = max_fraction_digits
        if whole == "0" and fraction and not fraction[:keep].strip("0"):
            keep = len(fraction) - len(fraction.lstrip("0")) + 1
        fraction = fraction[:keep].rstrip("0")

    head = _group(whole) if group_thousands else whole
    return f"{head}.{fraction}" if fraction else head


def compact_balance(value: Union[int, str, Decimal], decimals: int = 18) -> str:
    """
    Compact balance summary: 6, 4, 2 or 0 fractional digits by magnitude.

    Cosmetic only. Non-zero amounts below the smallest shown unit render as
    "<0.000001" instead of zero.
    """
    amount = Decimal(_display_source(value, decimals))
    if amount == 0:
        return "0.00"
    if amount < Decimal("0.0001"):
        places = 6
    elif amount < 1:
        places = 4
    elif amount < 1000:
        places = 2
    else:
        places = 0
    with localcontext() as ctx:
        ctx.prec = _precision_for(amount, places)
        quantum = Decimal(1).scaleb(-places)
        rounded = amount.quantize(quantum, rounding=ROUND_HALF_UP)
    if rounded == 0:
        return "<" + format(quantum, "f")
    return format(rounded, "f")
