"""auth/ -- Authentication, sessions and request authorization for Gatehouse.

Layer rule: auth/ imports from core/, cache/ and rbac/ (the guard resolves
effective permissions). It does NOT import from api/.
api/ imports from auth/, not the other way around.
"""
