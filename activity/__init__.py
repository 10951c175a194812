"""activity/ -- Append-only audit log of account activity.

Layer rule: activity/ imports only stdlib + third-party libraries. It does
NOT import from api/, auth/ or directory/.
"""
