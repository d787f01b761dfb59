"""rbac/ -- Role-based access control: permissions, roles and their assignment.

Layer rule: rbac/ imports from core/ and auth/errors only.
It does NOT import from api/ or cache/.
"""
