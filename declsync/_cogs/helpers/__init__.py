"""
General-purpose helpers not related to reconciliation itself,
which are used to prepare and control the runtime environment.

Helpers do not depend on anything else in the package. They implement
low-level patterns (typing, loading of files), not the concepts of
declared state, ownership, or the resource store.
"""
