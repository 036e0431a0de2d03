"""
Frame codec for the SANTAK UPS polling protocol.

Turns raw device responses into token lists and converts individual
tokens into numbers or status flags. Conversion is best effort: a bad
field degrades to a placeholder value and never raises.
"""
import logging
import math
import re
import string
import struct
from typing import List, Optional, Union

logger = logging.getLogger(__name__)

NAK_MARKER = "(NAK\r"
FRAME_START = "("

# Placeholder published for a field that is not a number
NOT_AVAILABLE = "___._"

_DECIMAL_RE = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")

Numeric = Union[float, str]


def split_frame(raw: str) -> List[str]:
    """
    Split a raw device response into tokens.

    Removes every NAK marker, strips one leading "(" and splits on
    whitespace.

    Args:
        raw: Decoded response text.

    Returns:
        Token list, empty for an empty response.
    """
    cleaned = raw.replace(NAK_MARKER, "")
    if cleaned.startswith(FRAME_START):
        cleaned = cleaned[len(FRAME_START):]
    return cleaned.split()


def _to_float32(value: float) -> float:
    return struct.unpack("f", struct.pack("f", value))[0]


def _round_half_away(value: float) -> float:
    return math.copysign(math.floor(abs(value) + 0.5), value)


def parse_numeric(token: str) -> Numeric:
    """
    Parse a decimal token as a single-precision value rounded to 0.1.

    Rounding is half away from zero on the tenths digit, applied to the
    single-precision value (so "12.34" -> 12.3 and "12.36" -> 12.4).

    Args:
        token: Decimal text with optional sign, fraction and exponent.

    Returns:
        The rounded value, or NOT_AVAILABLE if the token is not a
        decimal or does not fit in single precision.
    """
    if not _DECIMAL_RE.fullmatch(token):
        logger.error(f"Cannot convert {token!r} to a number")
        return NOT_AVAILABLE

    try:
        value = _to_float32(float(token))
    except OverflowError:
        value = math.inf
    if not math.isfinite(value):
        logger.error(f"Value {token!r} is out of single-precision range")
        return NOT_AVAILABLE

    return _round_half_away(value * 10) / 10


def bit_at(token: str, position: int) -> Optional[int]:
    """
    Read the digit at a 1-based position of a status token.

    Args:
        token: String of ASCII digits, e.g. "10010110".
        position: 1-based character position.

    Returns:
        The digit value, 0 if the character is not a digit, or None if
        the position is outside the token.
    """
    if position < 1 or position > len(token):
        logger.error(
            f"Bit position {position} is outside status token {token!r}"
        )
        return None

    char = token[position - 1]
    if char not in string.digits:
        logger.error(f"Status character {char!r} in {token!r} is not a digit")
        return 0

    return int(char)
