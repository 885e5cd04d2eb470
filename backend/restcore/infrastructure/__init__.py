"""Infrastructure Layer: cross-cutting concerns such as logging setup.

Invariants:
    - Infrastructure never imports from core/ domain logic
"""
