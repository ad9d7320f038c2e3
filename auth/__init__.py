"""auth/ -- Legacy credential store and legacy session package for AuthBridge.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/, web/, identity/, migration/, or frontend/.
migration/, api/ and web/ import from auth/, not the other way around.
"""
