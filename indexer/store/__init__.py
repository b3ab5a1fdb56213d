"""
Projection storage and replayability verification.
"""

from .projection import ProjectionStore
from .verify import VerificationReport, verify_projection

__all__ = ["ProjectionStore", "VerificationReport", "verify_projection"]
