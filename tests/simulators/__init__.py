"""
Device simulators for connector tests.
"""
from .ups_simulator import (
    CREDENTIAL,
    Q6_FRAME,
    REGISTRATION,
    SHORT_FRAME,
    WA_FRAME,
    UPSSimulator,
)

__all__ = [
    "CREDENTIAL",
    "Q6_FRAME",
    "REGISTRATION",
    "SHORT_FRAME",
    "WA_FRAME",
    "UPSSimulator",
]
