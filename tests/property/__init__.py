# tests/property/__init__.py
"""Property-based tests for boundpool.

Property-based testing validates invariants that must hold for ALL inputs,
not just the specific examples we think of.

Test categories:
- pooling/: Pool and limiter bookkeeping state machines, FIFO hand-off order
"""
