"""
Ledger log decoding.

This module provides:
- EventSpec / Source: event catalogue of the indexed contracts
- EventDecoder: raw log -> typed domain events (batch explosion included)
"""

from .abi import EventSpec, Source, SOURCE_EVENTS, EVENTS_BY_NAME, default_sources
from .decoder import EventDecoder, explode_batch

__all__ = [
    "EventSpec",
    "Source",
    "SOURCE_EVENTS",
    "EVENTS_BY_NAME",
    "default_sources",
    "EventDecoder",
    "explode_batch",
]
