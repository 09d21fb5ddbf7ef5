"""
Main menu keyboards — context-aware (guest vs. logged-in user).
"""
from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup
from aiogram.utils.keyboard import InlineKeyboardBuilder

from schoolbot.keyboards.callbacks import MainMenuCb


def guest_main_menu() -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(
        InlineKeyboardButton(text="📝 Register",  callback_data=MainMenuCb(action="register").pack()),
    )
    builder.row(
        InlineKeyboardButton(text="🔑 Log in",    callback_data=MainMenuCb(action="login").pack()),
    )
    return builder.as_markup()


def user_main_menu() -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(
        InlineKeyboardButton(text="👤 My profile", callback_data=MainMenuCb(action="profile").pack()),
    )
    builder.row(
        InlineKeyboardButton(text="🚪 Log out",    callback_data=MainMenuCb(action="logout").pack()),
    )
    return builder.as_markup()


def back_to_main() -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(InlineKeyboardButton(text="🔙 Main menu", callback_data=MainMenuCb(action="main").pack()))
    return builder.as_markup()


def login_prompt_kb() -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(InlineKeyboardButton(text="🔑 Log in", callback_data=MainMenuCb(action="login").pack()))
    return builder.as_markup()
