from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

import pytest
from sqlmodel import Session

from choreledger.models import LedgerPolicy
from choreledger.persistence import Chore, ChoreAssignment, Family, Kid, UserRole, create_db_and_tables, make_engine
from choreledger.service import ChoreLedger

MOM = "mom@sharma"
DAD = "dad@sharma"
ASHA = "asha@sharma"
RAVI = "ravi@sharma"
OTHER_MOM = "mom@patel"


class FixedClock:
    def __init__(self, moment: datetime) -> None:
        self.moment = moment

    def __call__(self) -> datetime:
        return self.moment

    def advance(self, **kwargs: float) -> None:
        self.moment = self.moment + timedelta(**kwargs)


@dataclass
class Household:
    family_id: int
    other_family_id: int
    asha: int
    ravi: int
    make_bed: int
    dishes: int
    retired: int


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 5, 15, 9, 30))


@pytest.fixture
def engine():
    engine = make_engine("sqlite://")
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def household(engine) -> Household:
    with Session(engine) as session:
        sharma = Family(name="Sharma")
        patel = Family(name="Patel")
        session.add(sharma)
        session.add(patel)
        session.flush()

        asha = Kid(family_id=sharma.id, display_name="Asha")
        ravi = Kid(family_id=sharma.id, display_name="Ravi")
        meera = Kid(family_id=patel.id, display_name="Meera")
        session.add_all([asha, ravi, meera])
        session.flush()

        session.add_all(
            [
                UserRole(user_id=MOM, role="parent", family_id=sharma.id, parent_type="mom", pin="1111"),
                UserRole(user_id=DAD, role="parent", family_id=sharma.id, parent_type="dad", pin="2222"),
                UserRole(user_id=ASHA, role="child", family_id=sharma.id, kid_id=asha.id, pin="3333"),
                UserRole(user_id=RAVI, role="child", family_id=sharma.id, kid_id=ravi.id, pin="4444"),
                UserRole(user_id=OTHER_MOM, role="parent", family_id=patel.id, parent_type="mom", pin="5555"),
            ]
        )
        make_bed = Chore(family_id=sharma.id, title="Make bed", price_cents=100)
        dishes = Chore(family_id=sharma.id, title="Dishes", price_cents=40)
        retired = Chore(family_id=sharma.id, title="Feed goldfish", price_cents=10, active=False)
        session.add_all([make_bed, dishes, retired])
        session.flush()
        session.add_all(
            [
                ChoreAssignment(family_id=sharma.id, kid_id=asha.id, chore_id=make_bed.id, is_daily=True),
                ChoreAssignment(family_id=sharma.id, kid_id=asha.id, chore_id=retired.id, is_daily=True),
            ]
        )
        session.commit()
        return Household(
            family_id=sharma.id,
            other_family_id=patel.id,
            asha=asha.id,
            ravi=ravi.id,
            make_bed=make_bed.id,
            dishes=dishes.id,
            retired=retired.id,
        )


@pytest.fixture
def policy() -> LedgerPolicy:
    return LedgerPolicy()


@pytest.fixture
def ledger(engine, household, clock, policy) -> ChoreLedger:
    service = ChoreLedger(engine, policy=policy, clock=clock)
    service.update_settings(MOM, match_cap=100)
    return service
