from __future__ import annotations

from fastapi import Request


def get_current_user(request: Request) -> dict | None:
    """Return the user dict from the session, or ``None``."""
    return request.session.get("user")


def current_user_id(request: Request) -> int | None:
    """Identifier of the signed-in user, used only to attribute logged searches."""
    user = get_current_user(request) or {}
    user_id = user.get("user_id", user.get("id"))
    try:
        return int(user_id) if user_id is not None else None
    except (TypeError, ValueError):
        return None
