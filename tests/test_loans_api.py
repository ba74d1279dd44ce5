from decimal import Decimal

from conftest import FakeResult, entity_handler, make_loan, make_role, make_user, sequence_handler, update_handler

from app.models.loan import Loan
from app.models.user import User


def _application_body(user_id: int, **overrides) -> dict:
    body = {
        "userId": user_id,
        "amount": "750.00",
        "purpose": "stock for shop",
        "term": 6,
        "paymentFrequency": "weekly",
        "guarantorName": "Jane",
        "guarantorRelationship": "sister",
        "guarantorIdUrl": "https://x/y.jpg",
    }
    body.update(overrides)
    return body


def _updated(loan: Loan, **changes) -> Loan:
    fields = {column.name: getattr(loan, column.name) for column in Loan.__table__.columns}
    fields.update(changes)
    return Loan(**fields)


def test_apply_for_loan(client, login_as, fake_db, customer):
    login_as(customer)
    fake_db.on_execute(entity_handler(User, FakeResult(scalar=customer)))

    resp = client.post("/api/v1/loans", json=_application_body(customer.id))

    assert resp.status_code == 201
    body = resp.json()
    assert body["code"] == "created"
    assert body["data"]["message"] == "Loan application submitted successfully"
    assert isinstance(body["data"]["loanId"], int)
    assert fake_db.committed is True


def test_apply_reports_every_invalid_field(client, login_as, customer):
    login_as(customer)

    resp = client.post(
        "/api/v1/loans",
        json=_application_body(customer.id, amount="-1", term=0, guarantorIdUrl="not a url"),
    )

    assert resp.status_code == 400
    body = resp.json()
    assert body["code"] == "validation_error"
    errors = {error["field"]: error["message"] for error in body["details"]["errors"]}
    assert set(errors) == {"amount", "term", "guarantorIdUrl"}
    assert errors["guarantorIdUrl"] == "Invalid URL for guarantor ID"


def test_apply_on_behalf_of_another_user_is_forbidden(client, login_as, fake_db, customer):
    login_as(customer)

    resp = client.post("/api/v1/loans", json=_application_body(customer.id + 1))

    assert resp.status_code == 403
    assert fake_db.executed == []


def test_apply_without_role_is_forbidden(client, login_as):
    user = login_as(make_user(role=None, email="norole@example.com"))

    resp = client.post("/api/v1/loans", json=_application_body(user.id))

    assert resp.status_code == 403
    assert resp.json()["message"] == "Missing permission: loan.apply"


def test_apply_requires_authentication(client):
    resp = client.post("/api/v1/loans", json=_application_body(1))

    assert resp.status_code == 401
    assert resp.json()["code"] == "unauthorized"


def test_get_own_loan(client, login_as, fake_db, customer):
    login_as(customer)
    loan = make_loan(user_id=customer.id)
    fake_db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))

    resp = client.get(f"/api/v1/loans/{loan.id}")

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["id"] == loan.id
    assert data["status"] == "pending"
    assert data["guarantorIdUrl"] == "https://x/y.jpg"


def test_get_other_users_loan_is_forbidden(client, login_as, fake_db, customer):
    login_as(customer)
    loan = make_loan(user_id=customer.id + 1)
    fake_db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))

    resp = client.get(f"/api/v1/loans/{loan.id}")

    assert resp.status_code == 403


def test_get_missing_loan_returns_404(client, login_as, customer):
    login_as(customer)

    resp = client.get("/api/v1/loans/999999")

    assert resp.status_code == 404
    assert resp.json() == {"code": "not_found", "message": "Loan not found", "data": None, "details": {}}


def test_top_up_endpoint(client, login_as, fake_db, customer):
    login_as(customer)
    loan = make_loan(user_id=customer.id, status="active", amount=Decimal("1000.00"), term=6)
    fake_db.on_execute(update_handler(Loan, [FakeResult(scalar=_updated(loan, amount=Decimal("1200.00"), term=8))]))
    fake_db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))

    resp = client.post(
        "/api/v1/loans/topup",
        json={"loanId": loan.id, "additionalAmount": "200", "newTerm": 8},
    )

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert Decimal(data["amount"]) == Decimal("1200.00")
    assert data["term"] == 8


def test_top_up_of_pending_loan_is_inactive(client, login_as, fake_db, customer):
    login_as(customer)
    loan = make_loan(user_id=customer.id, status="pending")
    fake_db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))

    resp = client.post(
        "/api/v1/loans/topup",
        json={"loanId": loan.id, "additionalAmount": "200", "newTerm": 8},
    )

    assert resp.status_code == 400
    assert resp.json()["code"] == "inactive_loan"
    assert fake_db.committed is False


def test_liquidate_endpoint(client, login_as, fake_db, customer):
    login_as(customer)
    loan = make_loan(user_id=customer.id, status="active")
    fake_db.on_execute(update_handler(Loan, [FakeResult(scalar=_updated(loan, status="closed"))]))
    fake_db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))

    resp = client.post(f"/api/v1/loans/{loan.id}/liquidate")

    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "closed"


def test_list_user_loans_requires_view_all_for_others(client, login_as, customer):
    login_as(customer)

    resp = client.get(f"/api/v1/users/{customer.id + 1}/loans")

    assert resp.status_code == 403


def test_list_own_loans(client, login_as, fake_db, customer):
    login_as(customer)
    loans = [make_loan(user_id=customer.id), make_loan(user_id=customer.id, status="active")]
    fake_db.on_execute(entity_handler(Loan, FakeResult(items=loans)))

    resp = client.get(f"/api/v1/users/{customer.id}/loans")

    assert resp.status_code == 200
    assert [item["id"] for item in resp.json()["data"]] == [loan.id for loan in loans]


def test_admin_approve(client, login_as, fake_db, admin_user):
    login_as(admin_user)
    loan = make_loan(status="pending")
    fake_db.on_execute(update_handler(Loan, [FakeResult(scalar=_updated(loan, status="approved"))]))
    fake_db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))

    resp = client.post(f"/api/v1/admin/loans/{loan.id}/approve")

    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "approved"
    assert fake_db.committed is True


def test_admin_approve_requires_permission(client, login_as, customer):
    login_as(customer)

    resp = client.post("/api/v1/admin/loans/1/approve")

    assert resp.status_code == 403


def test_admin_status_change_of_rejected_loan_conflicts(client, login_as, fake_db, admin_user):
    login_as(admin_user)
    loan = make_loan(status="rejected")
    fake_db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))

    resp = client.patch(f"/api/v1/admin/loans/{loan.id}/status", json={"status": "approved"})

    assert resp.status_code == 409
    body = resp.json()
    assert body["code"] == "invalid_transition"
    assert body["details"] == {"from": "rejected", "to": "approved"}


def test_admin_status_rejects_unknown_value(client, login_as, admin_user):
    login_as(admin_user)

    resp = client.patch("/api/v1/admin/loans/1/status", json={"status": "closed"})

    assert resp.status_code == 400
    assert resp.json()["details"]["errors"][0]["field"] == "status"


def test_admin_activate(client, login_as, fake_db, admin_user):
    login_as(admin_user)
    loan = make_loan(status="approved")
    fake_db.on_execute(update_handler(Loan, [FakeResult(scalar=_updated(loan, status="active"))]))
    fake_db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))

    resp = client.post(f"/api/v1/admin/loans/{loan.id}/activate")

    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "active"


def test_admin_terms_on_active_loan_rejected(client, login_as, fake_db, admin_user):
    login_as(admin_user)
    loan = make_loan(status="active")
    fake_db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))

    resp = client.patch(f"/api/v1/admin/loans/{loan.id}/terms", json={"newAmount": "900", "newTerm": 10})

    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_state"


def test_admin_report(client, login_as, fake_db, admin_user):
    login_as(admin_user)
    fake_db.on_execute(
        sequence_handler(
            [
                FakeResult(rows=[("closed", 1, Decimal("400.00"))]),
                FakeResult(scalar=Decimal("400.00")),
            ]
        )
    )

    resp = client.get("/api/v1/admin/loans/reports", params={"startDate": "2026-01-01", "endDate": "2026-12-31"})

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["totalLoans"] == 1
    assert data["byStatus"][0]["status"] == "closed"


def test_admin_report_invalid_range(client, login_as, admin_user):
    login_as(admin_user)

    resp = client.get("/api/v1/admin/loans/reports", params={"startDate": "2026-12-31", "endDate": "2026-01-01"})

    assert resp.status_code == 400
    assert resp.json()["details"]["errors"] == [
        {"field": "endDate", "message": "endDate must not be before startDate"}
    ]


def test_admin_list_users(client, login_as, fake_db, admin_user):
    login_as(admin_user)
    listed = [make_user(email="a@example.com"), make_user(email="b@example.com")]
    fake_db.on_execute(sequence_handler([FakeResult(scalar=12), FakeResult(items=listed)]))

    resp = client.get("/api/v1/admin/users", params={"page": 2, "limit": 2})

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["page"] == 2
    assert data["limit"] == 2
    assert data["total"] == 12
    assert [item["email"] for item in data["items"]] == ["a@example.com", "b@example.com"]
    assert "hashedPassword" not in data["items"][0]


def test_admin_list_users_rejects_bad_limit(client, login_as, admin_user):
    login_as(admin_user)

    resp = client.get("/api/v1/admin/users", params={"limit": 500})

    assert resp.status_code == 400
    assert resp.json()["details"]["errors"][0]["field"] == "limit"


def test_support_cannot_approve(client, login_as):
    login_as(make_user(role=make_role("SUPPORT"), email="agent@example.com"))

    resp = client.post("/api/v1/admin/loans/1/approve")

    assert resp.status_code == 403
