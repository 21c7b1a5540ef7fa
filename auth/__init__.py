"""auth/ -- Identity, token and session package for the community service.

Layer rule: auth/ imports stdlib, third-party libraries and core.config only.
It does NOT import from api/, web/ or content/.
api/ and web/ import from auth/, not the other way around.
"""
