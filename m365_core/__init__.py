"""Microsoft 365 administration over Microsoft Graph and Azure Resource Manager."""

__version__ = "1.0.0"
