"""xerolink - multi-tenant access coordinator for the Xero and Pipedrive APIs."""

__version__ = "0.1.0"


__all__ = ["__version__"]
