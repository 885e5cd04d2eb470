"""Core Layer: pure request-dispatch logic, no IO, no async, no sockets.

Invariants:
    - No module in core/ imports from services/, api/ or infrastructure/
    - Every value produced here is immutable once built

Design Decisions:
    - Functional core separated from imperative shell (ADR: impureim sandwich)
"""
