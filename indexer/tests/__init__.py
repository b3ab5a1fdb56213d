"""
Test suite for the ledger projection indexer.

Focus areas:
- Decoding and batch explosion
- Idempotent, ordered application
- Range-atomic checkpoints and snapshots
- Drift reconciliation against the ledger
"""
