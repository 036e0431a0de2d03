"""
Telemetry mapping for WA and Q6 frames.

Each frame kind has a fixed token count and a fixed table from token
position to telemetry key.
"""
import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from ..exceptions import MalformedFrameError
from .frame_codec import Numeric, bit_at, parse_numeric

logger = logging.getLogger(__name__)

TelemetryValue = Union[Numeric, Optional[int]]
TelemetryBundle = Dict[str, TelemetryValue]


class FrameKind(str, Enum):
    """Poll frame kinds, named after their protocol codes."""
    WA = "WA"
    Q6 = "Q6"

    @property
    def token_count(self) -> int:
        """Number of tokens in a well-formed frame of this kind."""
        return FRAME_TOKEN_COUNTS[self]

    @property
    def reply(self) -> bytes:
        """Query sent to the device to request this frame kind."""
        return f"{self.value}\r".encode("ascii")


FRAME_TOKEN_COUNTS = {
    FrameKind.WA: 13,
    FrameKind.Q6: 20,
}

# WA: load measurements plus the status bit string in token 12
WA_NUMERIC_FIELDS = {
    "loadpower": 0,
    "loadvirtualpower": 3,
    "loadpercentage": 11,
}
WA_STATUS_TOKEN = 12
WA_STATUS_BITS = {
    "utilityfailstatus": 1,
    "batterylowstatus": 2,
    "bypassstatus": 3,
    "upsfailedstatus": 4,
    "upstypestatus": 5,
    "testinprogressstatus": 6,
    "shutdownstatus": 7,
}

# Q6: input/output and battery measurements
Q6_NUMERIC_FIELDS = {
    "batterylevel": 15,
    "batterytemperature": 16,
    "outputvoltage": 4,
    "inputfrequency": 3,
    "outputfrequency": 7,
    "batteryvoltage": 11,
    "inputvoltage": 0,
}


def _check_length(kind: FrameKind, tokens: List[str]) -> None:
    if len(tokens) != kind.token_count:
        raise MalformedFrameError(kind.value, kind.token_count, len(tokens))


def _numeric_fields(fields: Dict[str, int], tokens: List[str]) -> TelemetryBundle:
    return {key: parse_numeric(tokens[pos]) for key, pos in fields.items()}


def map_wa_frame(tokens: List[str]) -> TelemetryBundle:
    """
    Map a 13-token WA frame to a telemetry bundle.

    Raises:
        MalformedFrameError: If the frame does not have 13 tokens.
    """
    _check_length(FrameKind.WA, tokens)
    bundle = _numeric_fields(WA_NUMERIC_FIELDS, tokens)
    status = tokens[WA_STATUS_TOKEN]
    for key, position in WA_STATUS_BITS.items():
        bundle[key] = bit_at(status, position)
    return bundle


def map_q6_frame(tokens: List[str]) -> TelemetryBundle:
    """
    Map a 20-token Q6 frame to a telemetry bundle.

    Raises:
        MalformedFrameError: If the frame does not have 20 tokens.
    """
    _check_length(FrameKind.Q6, tokens)
    return _numeric_fields(Q6_NUMERIC_FIELDS, tokens)


_MAPPERS = {
    FrameKind.WA: map_wa_frame,
    FrameKind.Q6: map_q6_frame,
}


def map_frame(kind: FrameKind, tokens: List[str]) -> TelemetryBundle:
    """Map tokens of the given frame kind to a telemetry bundle."""
    return _MAPPERS[kind](tokens)


def bundle_keys(kind: FrameKind) -> List[str]:
    """All keys a bundle of the given kind contains."""
    if kind is FrameKind.WA:
        return [*WA_NUMERIC_FIELDS, *WA_STATUS_BITS]
    return list(Q6_NUMERIC_FIELDS)


def describe(bundle: Dict[str, Any]) -> str:
    """Compact one-line rendering of a bundle for logs."""
    return ", ".join(f"{key}={value}" for key, value in bundle.items())
