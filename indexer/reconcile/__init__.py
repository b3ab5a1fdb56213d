"""
Out-of-band reconciliation of the projection against the ledger.
"""

from .drift import DriftDetector, DriftRecord, DriftReport

__all__ = ["DriftDetector", "DriftRecord", "DriftReport"]
