"""Kid profiles shown on boards and dashboards."""

from __future__ import annotations

import re
from typing import List, Optional

from sqlmodel import Session, select

from .access import family_kid, require_parent
from .exceptions import ValidationError
from .models import Caller
from .persistence import Kid

DEFAULT_AVATAR_EMOJI = "🙂"
DEFAULT_THEME_COLOR = "#efe8ff"
MAX_AVATAR_LENGTH = 4

_THEME_COLOR = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")


def list_kids(session: Session, caller: Caller) -> List[Kid]:
    query = select(Kid).where(Kid.family_id == caller.family_id)
    if not caller.is_parent:
        query = query.where(Kid.id == caller.kid_id)
    return list(session.exec(query.order_by(Kid.display_name, Kid.id)).all())


def update_kid(
    session: Session,
    caller: Caller,
    kid_id: int,
    *,
    display_name: Optional[str] = None,
    avatar_emoji: Optional[str] = None,
    theme_color: Optional[str] = None,
) -> Kid:
    """Edit a kid's name, avatar and colour; omitted fields stay as they are.

    A blank avatar or colour falls back to the defaults rather than clearing
    the field.
    """

    require_parent(caller)
    kid = family_kid(session, caller, kid_id)
    if display_name is not None:
        name = display_name.strip()
        if not name:
            raise ValidationError("Kid name is required.")
        kid.display_name = name
    if avatar_emoji is not None:
        avatar = avatar_emoji.strip() or DEFAULT_AVATAR_EMOJI
        if len(avatar) > MAX_AVATAR_LENGTH:
            raise ValidationError("Avatar must be a single emoji.")
        kid.avatar_emoji = avatar
    if theme_color is not None:
        color = theme_color.strip() or DEFAULT_THEME_COLOR
        if not _THEME_COLOR.match(color):
            raise ValidationError(f"Theme colour '{color}' is not a hex colour.")
        kid.theme_color = color
    session.add(kid)
    session.flush()
    return kid


__all__ = ["list_kids", "update_kid"]
