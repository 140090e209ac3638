"""auth/ -- Identity, tokens and permission checks for RoleGate.

Layer rule: auth/ imports only stdlib, third-party libraries and core/config.
It does NOT import from api/ or cache/.
api/ and cache/ import from auth/, not the other way around.
"""
