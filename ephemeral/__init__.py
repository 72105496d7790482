"""ephemeral/ -- Time-bounded key-value storage (Redis) for auth records.

Layer rule: ephemeral/ imports only stdlib, third-party libraries, and core/.
It knows nothing about auth/ record shapes -- it moves strings and JSON.
"""
