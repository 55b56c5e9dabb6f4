"""auth/ -- Identity, session and credential primitives for Tonka.

Layer rule: auth/ imports only stdlib + third-party libraries + core/.
It does NOT import from api/, web/ or gateway/.
gateway/ stages, api/ and web/ import from auth/, not the other way around.
"""
