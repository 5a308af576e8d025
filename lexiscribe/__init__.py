"""
Lexiscribe package.

Design intent:
- Turn one long recording into a time-aligned bilingual transcript plus vocabulary list.
- Keep chunking, scheduling and reconciliation independent from any one transcription oracle.
"""
