from aiogram.fsm.state import State, StatesGroup


class LoginStates(StatesGroup):
    """FSM for /login."""
    enter_username = State()
    enter_password = State()
