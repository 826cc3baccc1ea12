from .roles import AccessControl, Role

__all__ = ["AccessControl", "Role"]
