"""
Transcript module boundary for Lexiscribe.

Design intent:
- Hold the typed transcript/vocabulary contracts shared by the oracle and API layers.
- Keep chunk reconciliation (global offsets, ownership, dedupe, ordering) free of I/O.
"""
