"""Multi-tenant article admission, scoring and source-health core."""

__version__ = "0.1.0"
