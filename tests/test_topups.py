from datetime import date

import pytest
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from choreledger.exceptions import ConflictError, InvalidStateError, UnauthorizedError, ValidationError
from choreledger.ledger import Ledger
from choreledger.models import TOPUP_SOURCES, LedgerSource
from choreledger.persistence import LedgerTransaction

from conftest import ASHA, DAD, MOM, RAVI


def topup_rows(engine):
    with Session(engine) as session:
        return list(
            session.exec(
                select(LedgerTransaction)
                .where(LedgerTransaction.source == LedgerSource.PARENT_TOPUP.value)
                .order_by(LedgerTransaction.kid_id)
            ).all()
        )


def approve(ledger, kid, chore):
    completion = ledger.record_chore_completion(kid, chore)
    return ledger.mom_approve_completion(MOM, completion.id)


def test_generate_posts_one_row_per_kid_and_is_idempotent(ledger, household, engine) -> None:
    approve(ledger, ASHA, household.make_bed)
    approve(ledger, RAVI, household.dishes)

    first = ledger.generate_daily_topups(MOM, "2024-05-15")

    assert [(result.kid_id, result.matched, result.posted) for result in first] == [
        (household.asha, 30, True),
        (household.ravi, 12, True),
    ]
    rows = topup_rows(engine)
    assert [(row.kid_id, row.amount_cents, row.parent_match_cents) for row in rows] == [
        (household.asha, 0, 30),
        (household.ravi, 0, 12),
    ]

    second = ledger.generate_daily_topups(DAD, date(2024, 5, 15))

    assert all(result.already_applied and not result.posted for result in second)
    assert [result.txn_id for result in second] == [row.id for row in rows]
    assert [(row.id, row.amount_cents) for row in topup_rows(engine)] == [(row.id, row.amount_cents) for row in rows]


def test_topup_is_capped_per_kid(ledger, household) -> None:
    ledger.update_settings(MOM, match_cap=40)
    approve(ledger, ASHA, household.make_bed)
    approve(ledger, ASHA, household.dishes)

    [result] = ledger.generate_daily_topups(MOM)

    assert result.savings == 42
    assert result.matched == 40


def test_disabled_match_posts_nothing(ledger, household, engine) -> None:
    ledger.update_settings(MOM, match_enabled=False)
    approve(ledger, ASHA, household.make_bed)

    [result] = ledger.generate_daily_topups(MOM)

    assert result.matched == 0
    assert not result.posted
    assert not result.already_applied
    assert topup_rows(engine) == []


def test_revoked_day_posts_nothing(ledger, household, engine) -> None:
    txn = approve(ledger, ASHA, household.make_bed)
    ledger.dad_revoke_completion(DAD, txn.completion_id)

    [result] = ledger.generate_daily_topups(MOM)

    assert result.savings == 0
    assert not result.posted
    assert topup_rows(engine) == []


def test_days_without_earnings_have_no_results(ledger, household) -> None:
    assert ledger.generate_daily_topups(MOM, "2024-05-01") == []


def test_only_parents_generate(ledger, household) -> None:
    with pytest.raises(UnauthorizedError):
        ledger.generate_daily_topups(ASHA)


def test_topups_stay_out_of_earning_totals(ledger, household) -> None:
    approve(ledger, ASHA, household.make_bed)
    before = ledger.dashboard(MOM).totals

    ledger.generate_daily_topups(MOM)

    assert ledger.dashboard(MOM).totals == before


def test_topup_status_reports_every_kid(ledger, household) -> None:
    approve(ledger, ASHA, household.make_bed)

    before = ledger.topup_status(MOM, "2024-05-15")
    assert [(item.kid_id, item.savings, item.matched, item.posted) for item in before] == [
        (household.asha, 30, 30, False),
        (household.ravi, 0, 0, False),
    ]

    ledger.generate_daily_topups(MOM, "2024-05-15")
    after = ledger.topup_status(MOM, "2024-05-15")
    assert [item.posted for item in after] == [True, False]


def test_unique_index_rejects_a_second_topup_row(engine, household) -> None:
    with Session(engine) as session:
        ledger = Ledger(session)
        ledger.post_topup(household.asha, household.family_id, date(2024, 5, 15), 30)
        session.commit()

        with pytest.raises(IntegrityError):
            ledger.post_topup(household.asha, household.family_id, date(2024, 5, 15), 30)
        session.rollback()

        other_day = ledger.post_topup(household.asha, household.family_id, date(2024, 5, 16), 30)
        assert other_day.id is not None


def match_rows(engine, kid_id, txn_date):
    with Session(engine) as session:
        return list(
            session.exec(
                select(LedgerTransaction)
                .where(LedgerTransaction.kid_id == kid_id)
                .where(LedgerTransaction.txn_date == txn_date)
                .where(LedgerTransaction.source.in_(TOPUP_SOURCES))
                .order_by(LedgerTransaction.id)
            ).all()
        )


def test_topup_row_carries_only_the_match(ledger, household, engine) -> None:
    approve(ledger, ASHA, household.make_bed)
    ledger.generate_daily_topups(MOM)

    [row] = topup_rows(engine)

    assert (row.amount_cents, row.spend_cents, row.charity_cents, row.savings_cents) == (0, 0, 0, 0)
    assert (row.invest_cents, row.parent_match_cents, row.parent_payable_cents) == (30, 30, 30)
    assert row.lock_until == date(2024, 9, 15)


def test_revoke_after_topup_posts_a_correction(ledger, household, engine) -> None:
    txn = approve(ledger, ASHA, household.make_bed)
    ledger.generate_daily_topups(MOM, "2024-05-15")

    ledger.dad_revoke_completion(DAD, txn.completion_id)

    rows = match_rows(engine, household.asha, date(2024, 5, 15))
    assert [(row.source, row.parent_match_cents, row.invest_cents) for row in rows] == [
        (LedgerSource.PARENT_TOPUP.value, 30, 30),
        (LedgerSource.TOPUP_CORRECTION.value, -30, -30),
    ]
    [status] = [item for item in ledger.topup_status(MOM, "2024-05-15") if item.kid_id == household.asha]
    assert (status.savings, status.matched, status.posted) == (0, 0, True)
    with Session(engine) as session:
        every_row = session.exec(select(LedgerTransaction).where(LedgerTransaction.kid_id == household.asha)).all()
    assert sum(row.parent_match_cents for row in every_row) == 0

    [rerun] = ledger.generate_daily_topups(MOM, "2024-05-15")
    assert rerun.already_applied and not rerun.corrected
    assert rerun.matched == 0


def test_late_approval_tops_up_the_difference(ledger, household, engine) -> None:
    approve(ledger, ASHA, household.make_bed)
    ledger.generate_daily_topups(MOM, "2024-05-15")

    approve(ledger, ASHA, household.dishes)

    rows = match_rows(engine, household.asha, date(2024, 5, 15))
    assert [(row.source, row.parent_match_cents) for row in rows] == [
        (LedgerSource.PARENT_TOPUP.value, 30),
        (LedgerSource.TOPUP_CORRECTION.value, 12),
    ]
    [rerun] = ledger.generate_daily_topups(MOM, "2024-05-15")
    assert (rerun.savings, rerun.matched, rerun.already_applied, rerun.corrected) == (42, 42, True, False)


def test_late_backfill_tops_up_the_difference(ledger, household, engine) -> None:
    ledger.dad_backfill_commit(DAD, household.dishes, household.ravi, "2024-05-14")
    ledger.generate_daily_topups(MOM, "2024-05-14")

    ledger.dad_backfill_commit(DAD, household.make_bed, household.ravi, "2024-05-14")

    rows = match_rows(engine, household.ravi, date(2024, 5, 14))
    assert [(row.source, row.amount_cents, row.parent_match_cents) for row in rows] == [
        (LedgerSource.PARENT_TOPUP.value, 0, 12),
        (LedgerSource.TOPUP_CORRECTION.value, 0, 30),
    ]


def test_adjustment_after_topup_moves_the_match(ledger, household) -> None:
    txn = approve(ledger, ASHA, household.make_bed)
    ledger.generate_daily_topups(MOM, "2024-05-15")

    ledger.dad_adjust_completion(DAD, txn.completion_id, 200, 50, 20, 30)

    [status] = [item for item in ledger.topup_status(MOM, "2024-05-15") if item.kid_id == household.asha]
    assert (status.savings, status.matched) == (60, 60)


def test_generator_corrects_after_cap_change(ledger, household) -> None:
    approve(ledger, ASHA, household.make_bed)
    ledger.generate_daily_topups(MOM, "2024-05-15")
    ledger.update_settings(MOM, match_cap=20)

    [result] = ledger.generate_daily_topups(MOM, "2024-05-15")

    assert result.already_applied
    assert result.corrected
    assert result.matched == 20


def test_correction_requires_a_posted_topup(engine, household) -> None:
    with Session(engine) as session:
        ledger = Ledger(session)
        with pytest.raises(InvalidStateError):
            ledger.post_topup_correction(household.asha, household.family_id, date(2024, 5, 15), 10)
        ledger.post_topup(household.asha, household.family_id, date(2024, 5, 15), 30)
        with pytest.raises(ValidationError):
            ledger.post_topup_correction(household.asha, household.family_id, date(2024, 5, 15), 0)


def test_generator_reruns_after_losing_the_insert_race(ledger, household, engine, monkeypatch) -> None:
    approve(ledger, ASHA, household.make_bed)
    with Session(engine) as session:
        winner = Ledger(session).post_topup(household.asha, household.family_id, date(2024, 5, 15), 30)
        session.commit()
        winner_id = winner.id

    real_topup_for = Ledger.topup_for
    lookups = []

    def stale_first_lookup(self, family_id, kid_id, txn_date):
        lookups.append(kid_id)
        if len(lookups) == 1:
            return None
        return real_topup_for(self, family_id, kid_id, txn_date)

    monkeypatch.setattr(Ledger, "topup_for", stale_first_lookup)

    [result] = ledger.generate_daily_topups(MOM, "2024-05-15")

    assert result.already_applied and not result.posted
    assert result.txn_id == winner_id
    assert [row.id for row in topup_rows(engine)] == [winner_id]


def test_generator_gives_up_after_repeated_races(ledger, household, engine, monkeypatch) -> None:
    approve(ledger, ASHA, household.make_bed)
    with Session(engine) as session:
        Ledger(session).post_topup(household.asha, household.family_id, date(2024, 5, 15), 30)
        session.commit()
    monkeypatch.setattr(Ledger, "topup_for", lambda self, family_id, kid_id, txn_date: None)

    with pytest.raises(ConflictError):
        ledger.generate_daily_topups(MOM, "2024-05-15")
    assert len(topup_rows(engine)) == 1
