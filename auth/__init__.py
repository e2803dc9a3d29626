"""auth/ -- Identity resolution package for Pulse.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/, teams/, access/, or cache/.
api/ imports from auth/, not the other way around.
"""
