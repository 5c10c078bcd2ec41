"""auth/ -- Authentication engine for SessionGate.

Credential sign-up/sign-in, database-backed sessions, email verification and
OAuth account linking. AuthService (auth/service.py) is the single entry point
the HTTP layers use.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/ or web/.
api/ and web/ import from auth/, not the other way around.
"""
