"""Service Layer: dispatch, negotiation and response composition around the core.

Invariants:
    - Services hold configuration only, never per-request state

Design Decisions:
    - Collaborators (authenticator, codecs) injected through constructors
"""
