"""identity/ -- Hosted identity provider adapter.

Admin REST calls (user directory, sign-in tokens) and hosted session token
verification. Layer rule: imports only stdlib, third-party libraries, and
core/. Never imports from auth/ -- the two identity spaces meet only in
migration/.
"""
