"""Blue Azure PIM: activate and deactivate eligible Entra ID and Azure RBAC roles."""

__version__ = "0.1.0"
