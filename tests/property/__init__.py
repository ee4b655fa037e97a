# tests/property/__init__.py
"""Property-based tests for audiotrace.

Property-based testing validates invariants that must hold for ALL inputs,
not just the specific examples we think of.

Test categories:
- topology: live edges only join constructed nodes, the link log only grows
- signature: evaluation is a deterministic function of evidence history
- session: ordinals strictly increase, recording states alternate
"""
