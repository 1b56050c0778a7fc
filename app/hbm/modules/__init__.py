"""
Feature modules live under this package.

Each module owns its models, service and JSON blueprint, while reusing the
platform primitives (RBAC, status engine, ledger, DB session).
"""
