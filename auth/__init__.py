"""auth/ -- Authentication and account lifecycle package for Eventara.

Layer rule: auth/ imports stdlib, third-party libraries, core/ (config) and
cache/ (the code store behind the one-time code flows). It does NOT import
from api/. api/ imports from auth/, not the other way around.
"""
