"""auth/ -- Credential checks, identity resolution and admin sessions.

Layer rule: auth/ may import from core/ and admins/. admins/ imports only
auth/passwords.py from here (the password hasher is a leaf with no imports).
Hosting applications import from auth/facility.py and auth/dependencies.py.
"""
