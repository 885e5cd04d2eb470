"""API Layer: FastAPI transport adapter and global error handlers.

Invariants:
    - The adapter only converts between Starlette and core messages

Design Decisions:
    - Thin transport delegates to RequestPipeline (ADR: impureim sandwich)
"""
