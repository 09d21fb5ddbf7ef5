from schoolbot.middlewares.services_middleware import ServicesMiddleware
from schoolbot.middlewares.auth_middleware import AuthMiddleware, IsAuthenticated

__all__ = ["ServicesMiddleware", "AuthMiddleware", "IsAuthenticated"]
