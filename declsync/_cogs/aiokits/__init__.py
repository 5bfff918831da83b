"""
Asyncio kits: low-level primitives missing in the standard library.

Tasks' orchestration, toggles, rate limiters, and the work queue.
None of them knows anything about the resources or the reconciliation.
"""
