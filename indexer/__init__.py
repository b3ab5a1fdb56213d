"""
Ledger Projection Indexer

Event-sourced projection of fractional property ownership, revenue and
marketplace activity from an append-only ledger.
"""

__version__ = "0.1.0"
