"""auth/ -- Authentication core: credentials, tokens, sessions, identity resolution.

Layer rule: auth/ imports only stdlib, third-party libraries, core/ and cache/.
It does NOT import from api/ (except auth/dependencies.py, which speaks FastAPI).
api/ imports from auth/, not the other way around.
"""
