from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.sql.dml import Update

from conftest import FakeAsyncSession, FakeResult, entity_handler, make_loan, make_user, sequence_handler, update_handler

from app.core.errors import (
    ConflictError,
    InactiveLoanError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from app.models.audit_log import AuditLog
from app.models.loan import Loan
from app.models.notification import Notification
from app.models.user import User
from app.schemas.loan import LoanApplicationCreate, LoanStatus, PaymentFrequency
from app.services import loan_lifecycle


def _session_with(loan: Loan, updates: list[FakeResult]) -> FakeAsyncSession:
    session = FakeAsyncSession()
    session.on_execute(update_handler(Loan, updates))
    session.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))
    return session


def _updated(loan: Loan, **changes) -> Loan:
    fields = {column.name: getattr(loan, column.name) for column in Loan.__table__.columns}
    fields.update(changes)
    return Loan(**fields)


@pytest.mark.parametrize(
    "current,target,allowed",
    [
        ("pending", "approved", True),
        ("pending", "rejected", True),
        ("pending", "active", False),
        ("pending", "closed", False),
        ("approved", "active", True),
        ("approved", "approved", False),
        ("approved", "rejected", False),
        ("approved", "pending", False),
        ("active", "active", True),
        ("active", "closed", True),
        ("active", "pending", False),
        ("rejected", "approved", False),
        ("rejected", "pending", False),
        ("closed", "active", False),
        ("closed", "pending", False),
    ],
)
def test_transition_table(current, target, allowed):
    assert loan_lifecycle.can_transition(current, target) is allowed


def test_terminal_states_have_no_exits():
    assert loan_lifecycle.LOAN_TRANSITIONS[LoanStatus.REJECTED] == frozenset()
    assert loan_lifecycle.LOAN_TRANSITIONS[LoanStatus.CLOSED] == frozenset()


def test_ensure_transition_reports_both_states():
    with pytest.raises(InvalidTransitionError) as exc:
        loan_lifecycle.ensure_transition("rejected", LoanStatus.APPROVED)
    assert exc.value.details == {"from": "rejected", "to": "approved"}
    assert exc.value.status_code == 409


def test_day_bounds_is_half_open_utc():
    lower, upper = loan_lifecycle.day_bounds(date(2026, 1, 1), date(2026, 1, 31))
    assert lower.isoformat() == "2026-01-01T00:00:00+00:00"
    assert upper.isoformat() == "2026-02-01T00:00:00+00:00"


def _application(user_id: int = 42) -> LoanApplicationCreate:
    return LoanApplicationCreate(
        user_id=user_id,
        amount=Decimal("500.00"),
        purpose="stock for shop",
        term=6,
        payment_frequency=PaymentFrequency.MONTHLY,
        guarantor_name="Jane",
        guarantor_relationship="sister",
        guarantor_id_url="https://x/y.jpg",
    )


@pytest.mark.asyncio
async def test_apply_creates_pending_loan_with_audit_and_notification():
    owner = make_user(id=42)
    session = FakeAsyncSession().on_execute(entity_handler(User, FakeResult(scalar=owner)))

    loan = await loan_lifecycle.apply(session, _application(), actor_id=42)

    assert loan.status == "pending"
    assert loan.id is not None
    assert loan.guarantor_id_url == "https://x/y.jpg"
    assert loan.payment_frequency == "monthly"
    audits = session.added_of(AuditLog)
    assert [entry.action for entry in audits] == ["loan.applied"]
    notifications = session.added_of(Notification)
    assert notifications[0].user_id == 42
    assert session.committed is False


@pytest.mark.asyncio
async def test_apply_rejects_unknown_user():
    session = FakeAsyncSession()
    with pytest.raises(NotFoundError):
        await loan_lifecycle.apply(session, _application(user_id=999))
    assert session.added_of(Loan) == []


@pytest.mark.asyncio
async def test_apply_rejects_inactive_user():
    owner = make_user(id=42, is_active=False)
    session = FakeAsyncSession().on_execute(entity_handler(User, FakeResult(scalar=owner)))
    with pytest.raises(NotFoundError):
        await loan_lifecycle.apply(session, _application())


@pytest.mark.asyncio
async def test_get_loan_missing_raises_not_found():
    with pytest.raises(NotFoundError):
        await loan_lifecycle.get_loan(FakeAsyncSession(), 12345)


@pytest.mark.asyncio
async def test_approve_moves_pending_loan():
    loan = make_loan(status="pending")
    session = _session_with(loan, [FakeResult(scalar=_updated(loan, status="approved"))])

    updated = await loan_lifecycle.approve(session, loan.id, actor_id=1)

    assert updated.status == "approved"
    entry = session.added_of(AuditLog)[0]
    assert entry.action == "loan.status.approved"
    assert entry.changes["status"] == {"from": "pending", "to": "approved"}


@pytest.mark.asyncio
async def test_update_status_sets_comment_only_when_given():
    loan = make_loan(status="pending")
    session = _session_with(loan, [FakeResult(scalar=_updated(loan, status="rejected", admin_comment="low score"))])

    updated = await loan_lifecycle.update_status(session, loan.id, "rejected", "low score", actor_id=1)

    assert updated.admin_comment == "low score"
    update_stmt = session.executed[-1]
    params = update_stmt.compile().params
    assert params["admin_comment"] == "low score"
    assert params["status"] == "rejected"


@pytest.mark.asyncio
async def test_update_status_from_terminal_state_is_invalid_transition():
    loan = make_loan(status="rejected")
    session = _session_with(loan, [])

    with pytest.raises(InvalidTransitionError):
        await loan_lifecycle.update_status(session, loan.id, "approved", actor_id=1)
    assert session.added_of(AuditLog) == []


def _wrote_nothing(session: FakeAsyncSession) -> bool:
    no_update = not any(isinstance(stmt, Update) for stmt in session.executed)
    return no_update and session.added_of(AuditLog) == [] and session.added_of(Notification) == []


@pytest.mark.asyncio
@pytest.mark.parametrize("call", ["update_status", "approve"])
async def test_approving_an_approved_loan_is_invalid_transition(call):
    loan = make_loan(status="approved")
    session = _session_with(loan, [])

    with pytest.raises(InvalidTransitionError) as exc:
        if call == "approve":
            await loan_lifecycle.approve(session, loan.id, actor_id=1)
        else:
            await loan_lifecycle.update_status(session, loan.id, "approved", actor_id=1)

    assert exc.value.details == {"from": "approved", "to": "approved"}
    assert loan.status == "approved"
    assert _wrote_nothing(session)


@pytest.mark.asyncio
async def test_update_status_missing_loan_raises_not_found():
    session = FakeAsyncSession()
    with pytest.raises(NotFoundError):
        await loan_lifecycle.update_status(session, 404, "approved", actor_id=1)
    assert _wrote_nothing(session)


@pytest.mark.asyncio
async def test_top_up_missing_loan_raises_not_found():
    session = FakeAsyncSession()
    with pytest.raises(NotFoundError):
        await loan_lifecycle.top_up(session, 404, Decimal("100"), 12, actor_id=42)
    assert _wrote_nothing(session)


@pytest.mark.asyncio
async def test_liquidate_missing_loan_raises_not_found():
    session = FakeAsyncSession()
    with pytest.raises(NotFoundError):
        await loan_lifecycle.liquidate(session, 404, actor_id=42)
    assert _wrote_nothing(session)


@pytest.mark.asyncio
async def test_activate_requires_approved_loan():
    loan = make_loan(status="pending")
    session = _session_with(loan, [])

    with pytest.raises(InvalidTransitionError):
        await loan_lifecycle.activate(session, loan.id, actor_id=1)


@pytest.mark.asyncio
async def test_activate_sets_activated_at():
    loan = make_loan(status="approved")
    session = _session_with(loan, [FakeResult(scalar=_updated(loan, status="active"))])

    updated = await loan_lifecycle.activate(session, loan.id, actor_id=1)

    assert updated.status == "active"
    params = session.executed[-1].compile().params
    assert params["activated_at"] is not None


@pytest.mark.asyncio
async def test_top_up_requires_active_loan():
    loan = make_loan(status="approved")
    session = _session_with(loan, [])

    with pytest.raises(InactiveLoanError):
        await loan_lifecycle.top_up(session, loan.id, Decimal("100"), 12, actor_id=42)
    assert loan.amount == Decimal("1000.00")
    assert _wrote_nothing(session)


@pytest.mark.asyncio
async def test_top_up_rejects_non_positive_amount_before_any_query():
    session = FakeAsyncSession()
    with pytest.raises(ValidationError) as exc:
        await loan_lifecycle.top_up(session, 1, Decimal("0"), 12)
    assert exc.value.errors[0]["field"] == "additionalAmount"
    assert session.executed == []


@pytest.mark.asyncio
async def test_top_up_rejects_shorter_term():
    loan = make_loan(status="active", term=12)
    session = _session_with(loan, [])

    with pytest.raises(ValidationError) as exc:
        await loan_lifecycle.top_up(session, loan.id, Decimal("50"), 6)
    assert exc.value.errors[0]["field"] == "newTerm"


@pytest.mark.asyncio
async def test_top_up_increments_amount_in_place():
    loan = make_loan(status="active", amount=Decimal("1000.00"), term=6)
    after = _updated(loan, amount=Decimal("1500.00"), term=12)
    session = _session_with(loan, [FakeResult(scalar=after)])

    updated = await loan_lifecycle.top_up(session, loan.id, Decimal("500"), 12, actor_id=42)

    assert updated.amount == Decimal("1500.00")
    assert updated.term == 12
    assert updated.status == "active"
    sql = str(session.executed[-1])
    assert "loans.amount +" in sql
    assert session.added_of(AuditLog)[0].action == "loan.topped_up"


@pytest.mark.asyncio
async def test_liquidate_closes_active_loan():
    loan = make_loan(status="active")
    session = _session_with(loan, [FakeResult(scalar=_updated(loan, status="closed"))])

    updated = await loan_lifecycle.liquidate(session, loan.id, actor_id=42)

    assert updated.status == "closed"
    assert session.executed[-1].compile().params["closed_at"] is not None


@pytest.mark.asyncio
async def test_liquidate_pending_loan_is_inactive():
    loan = make_loan(status="pending")
    session = _session_with(loan, [])

    with pytest.raises(InvalidStateError) as exc:
        await loan_lifecycle.liquidate(session, loan.id)
    assert exc.value.code == "inactive_loan"
    assert loan.status == "pending"
    assert _wrote_nothing(session)


@pytest.mark.asyncio
async def test_lost_race_is_re_evaluated_against_fresh_state():
    stale = make_loan(status="pending")
    fresh = _updated(stale, status="rejected")
    session = FakeAsyncSession()
    session.on_execute(update_handler(Loan, [FakeResult(scalar=None)]))
    session.on_execute(
        sequence_handler([FakeResult(scalar=stale), FakeResult(scalar=fresh)])
    )

    with pytest.raises(InvalidTransitionError):
        await loan_lifecycle.approve(session, stale.id, actor_id=1)


@pytest.mark.asyncio
async def test_repeated_lost_races_raise_conflict():
    loan = make_loan(status="pending")
    misses = [FakeResult(scalar=None)] * loan_lifecycle.MAX_TRANSITION_ATTEMPTS
    session = _session_with(loan, misses)

    with pytest.raises(ConflictError) as exc:
        await loan_lifecycle.approve(session, loan.id, actor_id=1)
    assert exc.value.code == "concurrent_update"
    assert session.added_of(AuditLog) == []


@pytest.mark.asyncio
async def test_update_terms_allowed_while_pending():
    loan = make_loan(status="pending")
    after = _updated(loan, amount=Decimal("800.00"), term=9)
    session = _session_with(loan, [FakeResult(scalar=after)])

    updated = await loan_lifecycle.update_terms(session, loan.id, Decimal("800"), 9, actor_id=1)

    assert updated.amount == Decimal("800.00")
    assert updated.status == "pending"


@pytest.mark.asyncio
async def test_update_terms_rejected_once_active():
    loan = make_loan(status="active")
    session = _session_with(loan, [])

    with pytest.raises(InvalidStateError):
        await loan_lifecycle.update_terms(session, loan.id, Decimal("800"), 9)


@pytest.mark.asyncio
async def test_loan_report_aggregates_by_status():
    session = FakeAsyncSession().on_execute(
        sequence_handler(
            [
                FakeResult(rows=[("active", 2, Decimal("1500.00")), ("pending", 1, Decimal("200.00"))]),
                FakeResult(scalar=Decimal("300.00")),
            ]
        )
    )

    report = await loan_lifecycle.loan_report(session, date(2026, 1, 1), date(2026, 1, 31))

    assert report.total_loans == 3
    assert report.total_amount == Decimal("1700.00")
    assert report.payments_received == Decimal("300.00")
    assert [item.status for item in report.by_status] == ["active", "pending"]


@pytest.mark.asyncio
async def test_loan_report_empty_range():
    session = FakeAsyncSession().on_execute(
        sequence_handler([FakeResult(rows=[]), FakeResult(scalar=0)])
    )

    report = await loan_lifecycle.loan_report(session, date(2026, 3, 1), date(2026, 3, 1))

    assert report.total_loans == 0
    assert report.total_amount == Decimal("0")
    assert report.by_status == []
