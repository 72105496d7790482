"""auth/ -- Authentication, session, and device-trust package for permitauth.

Layer rule: auth/ imports stdlib, third-party libraries, core/, ephemeral/,
and notify/. It does NOT import from api/.
api/ imports from auth/, not the other way around.
"""
