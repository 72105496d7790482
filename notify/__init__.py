"""notify/ -- Outbound notifications (email) and the background task pool.

Layer rule: notify/ imports stdlib and core/ only. It knows nothing about
users, tokens, or devices; callers pass plain strings.
"""
