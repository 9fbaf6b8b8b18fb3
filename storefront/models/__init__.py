from storefront.models.auth import User, UserSession

__all__ = ["User", "UserSession"]
