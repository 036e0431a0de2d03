"""
SANTAK UPS polling protocol.

Frame codec, WA/Q6 telemetry mapping and the per-connection session
state machine.
"""
from .frame_codec import NOT_AVAILABLE, bit_at, parse_numeric, split_frame
from .session import DeviceSession, SessionPhase, build_credential
from .telemetry_mapper import FrameKind, map_frame, map_q6_frame, map_wa_frame

__all__ = [
    "NOT_AVAILABLE",
    "bit_at",
    "parse_numeric",
    "split_frame",
    "DeviceSession",
    "SessionPhase",
    "build_credential",
    "FrameKind",
    "map_frame",
    "map_q6_frame",
    "map_wa_frame",
]
