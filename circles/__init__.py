"""circles/ -- Circle-based sharing permissions for Hobby Tracker.

Layer rule: circles/ imports only stdlib, third-party libraries, core/ and the
engine helpers in auth.store. It does NOT import from api/.
"""
