"""Multi-tenant gateway to a remote analytical query service."""

__version__ = "1.0.0"
