"""admins/ -- Admin accounts, their storage and daily-limit configuration.

Layer rule: admins/ imports from core/ and auth/passwords.py only.
It does NOT import from the rest of auth/; auth/ builds on top of admins/.
"""
