"""auth/ -- Authentication and authorization package for hearthgate.

Stores (users, sessions, roles, invites), the RS256 token service, the access
control facade and the FastAPI dependencies built on it.

Layer rule: auth/ imports stdlib, third-party libraries and core/.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
