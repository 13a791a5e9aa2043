"""Federated, role-scoped search over logistics collections."""

__version__ = "1.0.0"
