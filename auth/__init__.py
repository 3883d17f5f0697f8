"""auth/ -- Authentication package for NoPass.

Layer rule: auth/ imports only stdlib + third-party libraries and core/.
It does NOT import from api/ or vault/.
api/ imports from auth/, not the other way around.
"""
