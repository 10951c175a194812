"""auth/ -- Authentication and authorization package for Authenticator.

Layer rule: auth/ imports from core/ and directory/ (the DirectoryAuthority
interface and its errors) plus third-party libraries. It does NOT import from
api/ or activity/. api/ imports from auth/, not the other way around.
"""
