"""Helpers for putting user-supplied text into legacy-Markdown messages."""


def esc(value: object) -> str:
    """Escape legacy-Markdown control characters."""
    text = str(value)
    for ch in ("\\", "_", "*", "`", "["):
        text = text.replace(ch, f"\\{ch}")
    return text
