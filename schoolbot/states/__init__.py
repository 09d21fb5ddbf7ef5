from schoolbot.states.registration_states import (
    BasicInfoStates,
    TeacherDetailStates,
    ParentDetailStates,
    StudentDetailStates,
)
from schoolbot.states.login_states import LoginStates

__all__ = [
    "BasicInfoStates", "TeacherDetailStates",
    "ParentDetailStates", "StudentDetailStates",
    "LoginStates",
]
