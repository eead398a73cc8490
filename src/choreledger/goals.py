"""Kid savings goals measured against cumulative invest totals."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlmodel import Session, select

from .access import family_kid, require_parent
from .exceptions import NotFoundError, UnauthorizedError, ValidationError
from .ledger import Ledger
from .models import Caller, GoalProgress
from .money import require_non_negative
from .persistence import Kid, KidGoal


def create_goal(session: Session, caller: Caller, kid_id: int, title: str, target: int, *, now: datetime) -> KidGoal:
    require_parent(caller)
    family_kid(session, caller, kid_id)
    title = (title or "").strip()
    if not title:
        raise ValidationError("Goal title is required.")
    require_non_negative(target, field="target")
    if target == 0:
        raise ValidationError("Goal target must be greater than zero.")
    goal = KidGoal(family_id=caller.family_id, kid_id=kid_id, title=title, target_cents=target, created_at=now)
    session.add(goal)
    session.flush()
    return goal


def set_goal_active(session: Session, caller: Caller, goal_id: int, active: bool) -> KidGoal:
    """Pause or resume a goal."""

    require_parent(caller)
    goal = session.get(KidGoal, goal_id)
    if goal is None or goal.family_id != caller.family_id:
        raise NotFoundError(f"Goal {goal_id} not found.")
    goal.active = bool(active)
    session.add(goal)
    session.flush()
    return goal


def goal_progress(
    session: Session,
    caller: Caller,
    *,
    kid_id: Optional[int] = None,
    include_paused: bool = False,
) -> List[GoalProgress]:
    """Progress of goals for one kid or, for parents, every kid in the family.

    Kids always see their own active goals only.
    """

    if caller.is_child:
        if kid_id is not None and kid_id != caller.kid_id:
            raise UnauthorizedError("You can only view your own goals.")
        kid_ids = [caller.kid_id]
        include_paused = False
    else:
        require_parent(caller)
        if kid_id is not None:
            kid_ids = [family_kid(session, caller, kid_id).id]
        else:
            kid_ids = list(
                session.exec(select(Kid.id).where(Kid.family_id == caller.family_id).order_by(Kid.id)).all()
            )

    ledger = Ledger(session)
    progress: List[GoalProgress] = []
    for current in kid_ids:
        query = select(KidGoal).where(KidGoal.family_id == caller.family_id).where(KidGoal.kid_id == current)
        if not include_paused:
            query = query.where(KidGoal.active == True)  # noqa: E712
        goals = session.exec(query.order_by(KidGoal.id)).all()
        if not goals:
            continue
        saved = ledger.aggregate(caller.family_id, kid_id=current).invest
        for goal in goals:
            progress.append(
                GoalProgress(
                    goal_id=goal.id,
                    kid_id=goal.kid_id,
                    title=goal.title,
                    target=goal.target_cents,
                    saved=saved,
                    active=goal.active,
                )
            )
    return progress


__all__ = ["create_goal", "goal_progress", "set_goal_active"]
