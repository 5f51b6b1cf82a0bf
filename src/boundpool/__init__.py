"""
boundpool: bounded-concurrency resource pools.

Lets many callers share a fixed set of interchangeable resources so that
at most N are in use at once, excess demand queues in FIFO order, and
every checkout is released exactly once.
"""

__version__ = "0.1.0"
