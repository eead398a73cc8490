from datetime import date

import pytest
from sqlmodel import Session, select

from choreledger import completions
from choreledger.exceptions import ConflictError, InvalidStateError, NotFoundError, UnauthorizedError, ValidationError
from choreledger.models import CompletionSource, CompletionStatus, LedgerPolicy, LedgerSource, ParentType
from choreledger.persistence import ChoreCompletion, LedgerTransaction, UserRole
from choreledger.service import ChoreLedger

from conftest import ASHA, DAD, MOM, OTHER_MOM, RAVI


def ledger_rows(engine, completion_id=None):
    with Session(engine) as session:
        query = select(LedgerTransaction).order_by(LedgerTransaction.id)
        if completion_id is not None:
            query = query.where(LedgerTransaction.completion_id == completion_id)
        return list(session.exec(query).all())


def load_completion(engine, completion_id):
    with Session(engine) as session:
        return session.get(ChoreCompletion, completion_id)


def approved(ledger, household, chore=None, kid=ASHA):
    completion = ledger.record_chore_completion(kid, chore or household.make_bed)
    txn = ledger.mom_approve_completion(MOM, completion.id)
    return completion, txn


# ---------------------------------------------------------------------------
# Completion recorder
# ---------------------------------------------------------------------------
def test_record_creates_pending_claim_for_today(ledger, household, clock) -> None:
    completion = ledger.record_chore_completion(ASHA, household.make_bed)

    assert completion.status == CompletionStatus.PENDING_APPROVAL.value
    assert completion.source == CompletionSource.KID_SUBMIT.value
    assert completion.kid_id == household.asha
    assert completion.completed_date == date(2024, 5, 15)
    assert completion.submitted_at == clock.moment
    queue = ledger.pending_approvals(MOM)
    assert [item.completion_id for item in queue.items] == [completion.id]
    assert queue.total == 100


def test_duplicate_claim_conflicts_until_rejected(ledger, household) -> None:
    first = ledger.record_chore_completion(ASHA, household.make_bed)
    with pytest.raises(ConflictError):
        ledger.record_chore_completion(ASHA, household.make_bed)

    ledger.mom_reject_completion(MOM, first.id, "Bed is still messy")
    again = ledger.record_chore_completion(ASHA, household.make_bed)
    assert again.id != first.id


def test_unique_index_rejects_a_claim_that_slips_past_the_check(ledger, household, engine, monkeypatch) -> None:
    first = ledger.record_chore_completion(ASHA, household.make_bed)
    # the competing claim committed after this request looked for duplicates
    monkeypatch.setattr(completions, "active_completion", lambda session, kid_id, chore_id, completed_date: None)

    with pytest.raises(ConflictError):
        ledger.record_chore_completion(ASHA, household.make_bed)

    with Session(engine) as session:
        claims = session.exec(select(ChoreCompletion).where(ChoreCompletion.kid_id == household.asha)).all()
    assert [claim.id for claim in claims] == [first.id]
    ledger.mom_approve_completion(MOM, first.id)


def test_same_chore_for_another_kid_is_not_a_duplicate(ledger, household) -> None:
    ledger.record_chore_completion(ASHA, household.make_bed)
    ravi = ledger.record_chore_completion(RAVI, household.make_bed)

    assert ravi.kid_id == household.ravi


def test_record_rejects_parents_and_unknown_or_inactive_chores(ledger, household) -> None:
    with pytest.raises(UnauthorizedError):
        ledger.record_chore_completion(MOM, household.make_bed)
    with pytest.raises(NotFoundError):
        ledger.record_chore_completion(ASHA, 9999)
    with pytest.raises(InvalidStateError):
        ledger.record_chore_completion(ASHA, household.retired)


def test_unknown_user_is_unauthorized(ledger, household) -> None:
    with pytest.raises(UnauthorizedError):
        ledger.record_chore_completion("stranger", household.make_bed)
    with pytest.raises(UnauthorizedError):
        ledger.record_chore_completion(None, household.make_bed)


def test_kid_reverts_own_pending_claim(ledger, household, engine) -> None:
    completion = ledger.record_chore_completion(ASHA, household.make_bed)

    with pytest.raises(UnauthorizedError):
        ledger.kid_revert_pending_completion(RAVI, completion.id)

    ledger.kid_revert_pending_completion(ASHA, completion.id)
    assert load_completion(engine, completion.id) is None
    assert ledger_rows(engine) == []
    with pytest.raises(NotFoundError):
        ledger.kid_revert_pending_completion(ASHA, completion.id)


def test_revert_after_approval_is_invalid(ledger, household) -> None:
    completion, _ = approved(ledger, household)

    with pytest.raises(InvalidStateError):
        ledger.kid_revert_pending_completion(ASHA, completion.id)


# ---------------------------------------------------------------------------
# Approval
# ---------------------------------------------------------------------------
def test_approve_posts_one_chore_earning(ledger, household, engine, clock) -> None:
    completion, txn = approved(ledger, household)

    assert txn.source == LedgerSource.CHORE_EARNING.value
    assert txn.completion_id == completion.id
    assert txn.txn_date == date(2024, 5, 15)
    assert (txn.amount_cents, txn.spend_cents, txn.charity_cents, txn.savings_cents) == (100, 50, 20, 30)
    assert txn.parent_match_cents == 30
    assert txn.invest_cents == 60
    assert txn.parent_payable_cents == 130
    assert txn.lock_until == date(2024, 9, 15)

    stored = load_completion(engine, completion.id)
    assert stored.status == CompletionStatus.APPROVED.value
    assert stored.amount_cents == 100
    assert stored.reviewed_by == MOM
    assert stored.reviewed_at == clock.moment


def test_second_approval_uses_remaining_daily_cap(ledger, household) -> None:
    ledger.update_settings(MOM, match_cap=40)
    approved(ledger, household)

    _, txn = approved(ledger, household, chore=household.dishes)

    assert (txn.spend_cents, txn.charity_cents, txn.savings_cents) == (20, 8, 12)
    assert txn.parent_match_cents == 10
    assert txn.invest_cents == 22


def test_cap_is_tracked_per_kid(ledger, household) -> None:
    ledger.update_settings(MOM, match_cap=30)
    approved(ledger, household)

    _, txn = approved(ledger, household, kid=RAVI)

    assert txn.parent_match_cents == 30


def test_double_approval_fails_and_posts_once(ledger, household, engine) -> None:
    completion, _ = approved(ledger, household)

    with pytest.raises(InvalidStateError):
        ledger.mom_approve_completion(MOM, completion.id)

    earnings = [row for row in ledger_rows(engine) if row.source == LedgerSource.CHORE_EARNING.value]
    assert len(earnings) == 1


def test_reject_stores_notes_and_blocks_approval(ledger, household, engine) -> None:
    completion = ledger.record_chore_completion(ASHA, household.make_bed)

    rejected = ledger.mom_reject_completion(MOM, completion.id, "  Try again tomorrow ")

    assert rejected.status == CompletionStatus.REJECTED.value
    assert rejected.review_notes == "Try again tomorrow"
    with pytest.raises(InvalidStateError):
        ledger.mom_approve_completion(MOM, completion.id)
    with pytest.raises(InvalidStateError):
        ledger.mom_reject_completion(MOM, completion.id, "again")
    assert ledger_rows(engine) == []


def test_only_primary_approver_reviews(ledger, household) -> None:
    completion = ledger.record_chore_completion(ASHA, household.make_bed)

    with pytest.raises(UnauthorizedError):
        ledger.mom_approve_completion(DAD, completion.id)
    with pytest.raises(UnauthorizedError):
        ledger.mom_approve_completion(ASHA, completion.id)
    with pytest.raises(UnauthorizedError):
        ledger.mom_reject_completion(DAD, completion.id, "no")
    with pytest.raises(NotFoundError):
        ledger.mom_approve_completion(OTHER_MOM, completion.id)


def test_role_changes_apply_to_the_next_call(ledger, household, engine) -> None:
    completion = ledger.record_chore_completion(ASHA, household.make_bed)
    with Session(engine) as session:
        role = session.get(UserRole, MOM)
        role.parent_type = "dad"
        session.add(role)
        session.commit()

    with pytest.raises(UnauthorizedError):
        ledger.mom_approve_completion(MOM, completion.id)


def test_approver_capability_is_configurable(engine, household, clock) -> None:
    swapped = ChoreLedger(
        engine,
        policy=LedgerPolicy(approver_parent_type=ParentType.DAD, override_parent_type=ParentType.MOM),
        clock=clock,
    )
    completion = swapped.record_chore_completion(ASHA, household.make_bed)

    with pytest.raises(UnauthorizedError):
        swapped.mom_approve_completion(MOM, completion.id)
    txn = swapped.mom_approve_completion(DAD, completion.id)
    assert txn.amount_cents == 100


# ---------------------------------------------------------------------------
# Override approver
# ---------------------------------------------------------------------------
def test_adjust_posts_delta_against_current_net(ledger, household, engine) -> None:
    completion, _ = approved(ledger, household)

    delta = ledger.dad_adjust_completion(DAD, completion.id, 200, 50, 20, 30)

    assert delta.source == LedgerSource.ADJUSTMENT.value
    assert (delta.amount_cents, delta.spend_cents, delta.charity_cents, delta.savings_cents) == (100, 50, 20, 30)
    assert delta.parent_match_cents == 30
    assert delta.invest_cents == 60
    assert delta.parent_payable_cents == 130
    assert load_completion(engine, completion.id).amount_cents == 200

    totals = ledger.dashboard(ASHA).totals
    assert (totals.amount, totals.spend, totals.charity, totals.savings) == (200, 100, 40, 60)
    assert totals.match == 60
    assert totals.invest == 120


def test_adjust_can_lower_the_amount(ledger, household) -> None:
    completion, _ = approved(ledger, household)

    delta = ledger.dad_adjust_completion(DAD, completion.id, 50, 100, 0, 0)

    assert (delta.amount_cents, delta.spend_cents, delta.charity_cents, delta.savings_cents) == (-50, 0, -20, -30)
    assert delta.parent_match_cents == -30
    totals = ledger.dashboard(ASHA).totals
    assert (totals.amount, totals.spend, totals.charity, totals.savings, totals.match) == (50, 50, 0, 0, 0)


def test_adjust_without_change_posts_nothing(ledger, household, engine) -> None:
    completion, _ = approved(ledger, household)

    assert ledger.dad_adjust_completion(DAD, completion.id, 100, 50, 20, 30) is None
    assert len(ledger_rows(engine, completion.id)) == 1


def test_adjust_validates_input_atomically(ledger, household, engine) -> None:
    completion, _ = approved(ledger, household)

    with pytest.raises(ValidationError):
        ledger.dad_adjust_completion(DAD, completion.id, 200, 50, 20, 20)
    with pytest.raises(ValidationError):
        ledger.dad_adjust_completion(DAD, completion.id, -5, 50, 20, 30)

    assert load_completion(engine, completion.id).amount_cents == 100
    assert len(ledger_rows(engine, completion.id)) == 1


def test_adjust_requires_override_approver_and_approved_status(ledger, household) -> None:
    pending = ledger.record_chore_completion(ASHA, household.make_bed)
    with pytest.raises(InvalidStateError):
        ledger.dad_adjust_completion(DAD, pending.id, 100, 50, 20, 30)

    ledger.mom_approve_completion(MOM, pending.id)
    with pytest.raises(UnauthorizedError):
        ledger.dad_adjust_completion(MOM, pending.id, 100, 50, 20, 30)


def test_revoke_nets_completion_to_zero(ledger, household, engine) -> None:
    completion, _ = approved(ledger, household)

    reversal = ledger.dad_revoke_completion(DAD, completion.id)

    assert reversal.source == LedgerSource.REVERSAL.value
    assert reversal.amount_cents == -100
    assert reversal.parent_match_cents == -30
    rows = ledger_rows(engine, completion.id)
    for field in (
        "amount_cents",
        "spend_cents",
        "charity_cents",
        "savings_cents",
        "invest_cents",
        "parent_match_cents",
        "parent_payable_cents",
    ):
        assert sum(getattr(row, field) for row in rows) == 0
    assert ledger.dashboard(ASHA).totals.is_zero
    assert load_completion(engine, completion.id).status == CompletionStatus.REVOKED.value


def test_revoke_after_adjust_reverses_everything(ledger, household) -> None:
    completion, _ = approved(ledger, household)
    ledger.dad_adjust_completion(DAD, completion.id, 300, 50, 20, 30)

    reversal = ledger.dad_revoke_completion(DAD, completion.id)

    assert reversal.amount_cents == -300
    assert ledger.dashboard(ASHA).totals.is_zero


def test_revoke_is_terminal(ledger, household) -> None:
    completion, _ = approved(ledger, household)
    with pytest.raises(UnauthorizedError):
        ledger.dad_revoke_completion(MOM, completion.id)

    ledger.dad_revoke_completion(DAD, completion.id)

    with pytest.raises(InvalidStateError):
        ledger.dad_revoke_completion(DAD, completion.id)
    with pytest.raises(InvalidStateError):
        ledger.dad_adjust_completion(DAD, completion.id, 100, 50, 20, 30)


def test_revoked_claim_frees_the_day(ledger, household) -> None:
    completion, _ = approved(ledger, household)
    ledger.dad_revoke_completion(DAD, completion.id)

    again = ledger.record_chore_completion(ASHA, household.make_bed)

    assert again.status == CompletionStatus.PENDING_APPROVAL.value


# ---------------------------------------------------------------------------
# Backfill
# ---------------------------------------------------------------------------
def test_backfill_records_approved_completion_and_posts(ledger, household, engine) -> None:
    txn = ledger.dad_backfill_commit(DAD, household.dishes, household.ravi, "2024-05-14", "Forgot to tap done")

    assert txn.source == LedgerSource.MANUAL_BACKFILL.value
    assert txn.txn_date == date(2024, 5, 14)
    assert txn.kid_id == household.ravi
    assert txn.amount_cents == 40
    completion = load_completion(engine, txn.completion_id)
    assert completion.status == CompletionStatus.APPROVED.value
    assert completion.source == CompletionSource.DAD_BACKFILL.value
    assert completion.review_notes == "Forgot to tap done"

    backfills = ledger.recent_backfills(MOM)
    assert [item.completion_id for item in backfills] == [completion.id]
    assert backfills[0].kid_name == "Ravi"


def test_backfill_rejects_future_duplicate_and_wrong_caller(ledger, household) -> None:
    with pytest.raises(ValidationError):
        ledger.dad_backfill_commit(DAD, household.dishes, household.ravi, "2024-05-16")
    with pytest.raises(ValidationError):
        ledger.dad_backfill_commit(DAD, household.dishes, household.ravi, "15/05/2024")
    with pytest.raises(UnauthorizedError):
        ledger.dad_backfill_commit(MOM, household.dishes, household.ravi, "2024-05-14")

    ledger.dad_backfill_commit(DAD, household.dishes, household.ravi, "2024-05-15")
    with pytest.raises(ConflictError):
        ledger.dad_backfill_commit(DAD, household.dishes, household.ravi, "2024-05-15")
    with pytest.raises(ConflictError):
        ledger.record_chore_completion(RAVI, household.dishes)


def test_backfill_can_be_revoked(ledger, household) -> None:
    txn = ledger.dad_backfill_commit(DAD, household.make_bed, household.asha, date(2024, 5, 1))

    ledger.dad_revoke_completion(DAD, txn.completion_id)

    assert ledger.dashboard(ASHA).totals.is_zero
