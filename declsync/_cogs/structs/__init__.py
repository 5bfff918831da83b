"""
The data structures of the resource store and of the declared state.

Identities, bodies, bookkeeping metadata, scopes & resource references.

All the functions here are purely data-manipulative and computational.
No external calls or any i/o activities are done here.
"""
