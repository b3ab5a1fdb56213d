"""
Range-atomic replay of ledger logs into the projection.
"""

from .coordinator import ReplayCoordinator, RunResult, SourceStatus

__all__ = ["ReplayCoordinator", "RunResult", "SourceStatus"]
