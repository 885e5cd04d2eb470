"""restcore: a stateless request-dispatch core.

Invariants:
    - Package root contains no executable code (import side-effects prohibited)

Design Decisions:
    - Version lives here so config and the health resource report the same value
"""

__version__ = "1.0.0"
