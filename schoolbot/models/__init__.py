from schoolbot.models.base import Base, engine, AsyncSessionFactory
from schoolbot.models.models import (
    OrphanedAccount,
    Role,
    Gender,
    Medium,
    LandingView,
)

__all__ = [
    "Base",
    "engine",
    "AsyncSessionFactory",
    "OrphanedAccount",
    "Role",
    "Gender",
    "Medium",
    "LandingView",
]
