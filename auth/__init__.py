"""auth/ -- Identity, session, and role-based access-control core.

Entry point is auth.service.RbacService (assembled by build_service()).
auth/dependencies.py and auth/oauth.py hold the FastAPI and Authlib glue.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/ or mail/. api/ imports from auth/, not the
other way around.
"""
