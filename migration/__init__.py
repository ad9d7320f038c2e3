"""migration/ -- Lazy legacy-to-hosted identity migration.

The decision engine, the shared provisioning step, and the per-request dual
session context. This is the only package that imports both auth/ and
identity/.
"""
