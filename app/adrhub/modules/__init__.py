"""
Feature modules live under this package.

Each module owns its models, store, service and blueprint, and reuses the
platform pieces (auth, rbac, audit, notifications, DB session).
"""
