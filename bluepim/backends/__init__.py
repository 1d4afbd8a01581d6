from bluepim.backends.azure import AzureRoleBackend
from bluepim.backends.base import RoleBackend
from bluepim.backends.entra import EntraRoleBackend

__all__ = ["AzureRoleBackend", "EntraRoleBackend", "RoleBackend"]
