"""
Centralized CallbackData factories.
Telegram limits callback_data to 64 bytes — all prefixes are kept short.
"""
from aiogram.filters.callback_data import CallbackData


class MainMenuCb(CallbackData, prefix="mm"):
    action: str           # main | register | login | logout | profile


class WizardCb(CallbackData, prefix="wz"):
    action: str           # gender | role | submit | edit | back | add | finish
    value: str = ""


class PickCb(CallbackData, prefix="pk"):
    field: str            # grade | class | subject | medium
    idx: int = 0          # index into the option list stored in FSM data


class EntryCb(CallbackData, prefix="ent"):
    action: str           # remove
    eid: str = ""         # staged entry id (uuid hex)
