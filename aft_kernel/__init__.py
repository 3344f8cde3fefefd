"""
AFT Kernel - Request Lifecycle Engine

A multi-role approval workflow for Assured File Transfer requests with:
- Explicit status state machine
- Central transition authorization table
- Typed, write-once workflow accumulators
- Append-only, hash-chained audit trail
"""

__version__ = "0.1.0"
