"""
Keyboards for the registration wizard.
"""
from typing import Sequence

from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup
from aiogram.utils.keyboard import InlineKeyboardBuilder

from schoolbot.keyboards.callbacks import EntryCb, MainMenuCb, PickCb, WizardCb
from schoolbot.models.models import Gender, Role


def _cancel_row(builder: InlineKeyboardBuilder) -> None:
    builder.row(InlineKeyboardButton(text="❌ Cancel", callback_data=MainMenuCb(action="main").pack()))


def _back_row(builder: InlineKeyboardBuilder) -> None:
    # Phase 2 only: going back deletes the account created in phase 1
    builder.row(InlineKeyboardButton(text="⬅️ Back", callback_data=WizardCb(action="back").pack()))


def cancel_registration_kb() -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    _cancel_row(builder)
    return builder.as_markup()


def back_kb() -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    _back_row(builder)
    return builder.as_markup()


def gender_kb() -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(*[
        InlineKeyboardButton(text=g, callback_data=WizardCb(action="gender", value=g).pack())
        for g in Gender.ALL
    ])
    _cancel_row(builder)
    return builder.as_markup()


def role_kb() -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    for role in Role.ALL:
        builder.row(
            InlineKeyboardButton(
                text=Role.LABELS[role],
                callback_data=WizardCb(action="role", value=role).pack(),
            )
        )
    _cancel_row(builder)
    return builder.as_markup()


def review_kb() -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(
        InlineKeyboardButton(text="✅ Create account", callback_data=WizardCb(action="submit").pack()),
        InlineKeyboardButton(text="✏️ Start over",    callback_data=WizardCb(action="edit").pack()),
    )
    _cancel_row(builder)
    return builder.as_markup()


def pick_kb(field: str, options: Sequence[str], columns: int = 2) -> InlineKeyboardMarkup:
    """One button per option; the callback carries the option's index."""
    builder = InlineKeyboardBuilder()
    for idx, option in enumerate(options):
        builder.button(text=option, callback_data=PickCb(field=field, idx=idx).pack())
    builder.adjust(columns)
    _back_row(builder)
    return builder.as_markup()


def staged_list_kb(entries: Sequence, add_label: str) -> InlineKeyboardMarkup:
    """Panel for Teacher assignments / Parent links: remove, add, submit, back."""
    builder = InlineKeyboardBuilder()
    for entry in entries:
        builder.row(
            InlineKeyboardButton(
                text=f"🗑 {entry.label}",
                callback_data=EntryCb(action="remove", eid=entry.id).pack(),
            )
        )
    builder.row(InlineKeyboardButton(text=add_label, callback_data=WizardCb(action="add").pack()))
    if entries:
        builder.row(
            InlineKeyboardButton(text="✅ Submit registration", callback_data=WizardCb(action="finish").pack())
        )
    _back_row(builder)
    return builder.as_markup()
