"""auth/ -- Authentication package for Hobby Tracker.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/ or circles/.
api/ imports from auth/, not the other way around.
"""
