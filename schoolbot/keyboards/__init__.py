from schoolbot.keyboards.callbacks import (
    MainMenuCb,
    WizardCb,
    PickCb,
    EntryCb,
)
from schoolbot.keyboards.main_menu import (
    guest_main_menu,
    user_main_menu,
    back_to_main,
    login_prompt_kb,
)
from schoolbot.keyboards.registration_kb import (
    cancel_registration_kb,
    back_kb,
    gender_kb,
    role_kb,
    review_kb,
    pick_kb,
    staged_list_kb,
)

__all__ = [
    # callbacks
    "MainMenuCb", "WizardCb", "PickCb", "EntryCb",
    # main menu
    "guest_main_menu", "user_main_menu", "back_to_main", "login_prompt_kb",
    # registration
    "cancel_registration_kb", "back_kb", "gender_kb", "role_kb",
    "review_kb", "pick_kb", "staged_list_kb",
]
