from schoolbot.services.api_client import (
    SchoolApiClient, AccountRef, Subject,
    ApiError, NetworkError, UnauthorizedError,
)
from schoolbot.services.registration_wizard import (
    Phase, RegistrationSession, RegistrationWizard, StepOutcome,
    LifecycleSignal, WizardRegistry,
)
from schoolbot.services.auth_service import (
    SessionContext, SessionStore, login, logout, refresh_user,
    parse_permissions, landing_view_for,
)
from schoolbot.services.compensation_service import (
    record_orphan, list_unresolved, reconcile_orphans, remember_orphan,
)

__all__ = [
    # backend client
    "SchoolApiClient", "AccountRef", "Subject",
    "ApiError", "NetworkError", "UnauthorizedError",
    # registration wizard
    "Phase", "RegistrationSession", "RegistrationWizard", "StepOutcome",
    "LifecycleSignal", "WizardRegistry",
    # auth
    "SessionContext", "SessionStore", "login", "logout", "refresh_user",
    "parse_permissions", "landing_view_for",
    # orphaned-account ledger
    "record_orphan", "list_unresolved", "reconcile_orphans", "remember_orphan",
]
