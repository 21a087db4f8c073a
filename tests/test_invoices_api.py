# tests/test_invoices_api.py
from datetime import date

import pytest

pytestmark = pytest.mark.anyio


@pytest.fixture
async def draft(client, admin_headers, family):
    response = await client.post("/api/v1/invoices/", headers=admin_headers, json={
        "family_id": str(family.id),
        "description": "Exam fees",
        "items": [
            {"description": "Grade 2 exam", "unit_price": "85.50"},
            {"description": "Practice books", "quantity": 2, "unit_price": "12.25"},
        ],
    })
    assert response.status_code == 201
    return response.json()


async def test_create_invoice_totals_and_numbering(client, admin_headers, family, draft):
    assert draft["status"] == "DRAFT"
    assert draft["total"] == 110.0
    assert draft["balance"] == 110.0
    assert draft["invoice_number"] == f"INV-{date.today().year}-00001"

    second = await client.post("/api/v1/invoices/", headers=admin_headers, json={
        "family_id": str(family.id), "items": [{"description": "Late pickup", "unit_price": "5"}],
    })
    assert second.json()["invoice_number"] == f"INV-{date.today().year}-00002"

    empty = await client.post("/api/v1/invoices/", headers=admin_headers, json={"family_id": str(family.id)})
    assert empty.status_code == 400


async def test_payments_settle_invoice(client, admin_headers, draft):
    base = f"/api/v1/invoices/{draft['id']}"
    await client.post(f"{base}/send", headers=admin_headers)

    too_much = await client.post(f"{base}/payments", headers=admin_headers, json={"amount": "200", "method": "CASH"})
    assert too_much.status_code == 400

    partial = await client.post(f"{base}/payments", headers=admin_headers, json={"amount": "60", "method": "CASH"})
    assert partial.json()["status"] == "PARTIALLY_PAID"
    assert partial.json()["balance"] == 50.0

    card = await client.post(f"{base}/payments/card", headers=admin_headers, json={
        "amount": "50", "stripe_payment_id": "pi_123",
    })
    assert card.json()["method"] == "STRIPE"
    repeat = await client.post(f"{base}/payments/card", headers=admin_headers, json={
        "amount": "50", "stripe_payment_id": "pi_123",
    })
    assert repeat.json()["id"] == card.json()["id"]

    paid = (await client.get(base, headers=admin_headers)).json()
    assert paid["status"] == "PAID"
    assert paid["amount_paid"] == 110.0
    assert len(paid["payments"]) == 2

    cancel = await client.post(f"{base}/cancel", headers=admin_headers, json={})
    assert cancel.status_code == 400


async def test_only_drafts_are_editable(client, admin_headers, draft):
    base = f"/api/v1/invoices/{draft['id']}"
    edited = await client.put(base, headers=admin_headers, json={
        "items": [{"description": "Grade 2 exam", "unit_price": "90"}],
    })
    assert edited.json()["total"] == 90.0

    await client.post(f"{base}/send", headers=admin_headers)
    assert (await client.put(base, headers=admin_headers, json={"notes": "x"})).status_code == 400
    assert (await client.delete(base, headers=admin_headers)).status_code == 400
    assert (await client.post(f"{base}/send", headers=admin_headers)).status_code == 400

    cancelled = await client.post(f"{base}/cancel", headers=admin_headers, json={"reason": "Duplicate"})
    assert cancelled.json()["status"] == "CANCELLED"
    assert "Cancellation reason: Duplicate" in cancelled.json()["notes"]
    payment = await client.post(f"{base}/payments", headers=admin_headers, json={"amount": "10", "method": "CASH"})
    assert payment.status_code == 400


async def test_card_payments_follow_invoice_rules(client, admin_headers, draft):
    base = f"/api/v1/invoices/{draft['id']}"
    await client.post(f"{base}/send", headers=admin_headers)

    over = await client.post(f"{base}/payments/card", headers=admin_headers, json={
        "amount": "500", "stripe_payment_id": "pi_over",
    })
    assert over.status_code == 400

    await client.post(f"{base}/cancel", headers=admin_headers, json={"reason": "Withdrawn"})
    late = await client.post(f"{base}/payments/card", headers=admin_headers, json={
        "amount": "50", "stripe_payment_id": "pi_late",
    })
    assert late.status_code == 400
    invoice = (await client.get(base, headers=admin_headers)).json()
    assert (invoice["status"], invoice["amount_paid"]) == ("CANCELLED", 0.0)


async def test_parents_see_sent_family_invoices(client, admin_headers, parent_headers, draft):
    base = f"/api/v1/invoices/{draft['id']}"
    assert (await client.get(base, headers=parent_headers)).status_code == 404
    assert (await client.get("/api/v1/invoices/my-family", headers=parent_headers)).json() == []

    await client.post(f"{base}/send", headers=admin_headers)
    assert (await client.get(base, headers=parent_headers)).status_code == 200
    mine = (await client.get("/api/v1/invoices/my-family", headers=parent_headers)).json()
    assert [invoice["id"] for invoice in mine] == [draft["id"]]

    listing = await client.get("/api/v1/invoices/", headers=parent_headers)
    assert listing.status_code == 403


async def test_mark_overdue(client, admin_headers, family):
    invoice = (await client.post("/api/v1/invoices/", headers=admin_headers, json={
        "family_id": str(family.id), "due_date": "2020-01-31",
        "items": [{"description": "Old term", "unit_price": "100"}],
    })).json()
    await client.post(f"/api/v1/invoices/{invoice['id']}/send", headers=admin_headers)

    result = await client.post("/api/v1/invoices/mark-overdue", headers=admin_headers)
    assert result.json() == {"updated": 1}
    stats = (await client.get("/api/v1/invoices/statistics", headers=admin_headers)).json()
    assert stats["invoices_by_status"]["OVERDUE"] == 1
    assert stats["total_overdue"] == 100.0
    assert stats["total_outstanding"] == 100.0


async def test_term_invoice_from_enrollments(client, admin_headers, lesson_payload, setup, family, student):
    group = (await client.post("/api/v1/lessons/", headers=admin_headers, json=lesson_payload())).json()
    hybrid = (await client.post("/api/v1/lessons/", headers=admin_headers, json=lesson_payload(
        name="Piano Plus", lesson_type_id=str(setup["hybrid"].id), day_of_week=3, hybrid_pattern={},
    ))).json()
    for lesson in (group, hybrid):
        await client.post(
            f"/api/v1/lessons/{lesson['id']}/enroll", headers=admin_headers, json={"student_id": str(student.id)}
        )

    billing = (await client.get(f"/api/v1/invoices/hybrid-billing/{hybrid['id']}", headers=admin_headers)).json()
    assert (billing["group_weeks_count"], billing["individual_weeks_count"]) == (5, 5)
    assert billing["total_price"] == 350.0

    request = {"family_id": str(family.id), "term_id": str(setup["term"].id)}
    invoice = await client.post("/api/v1/invoices/generate", headers=admin_headers, json=request)
    assert invoice.status_code == 201
    body = invoice.json()
    assert body["status"] == "DRAFT"
    # Group lesson: 10 weeks at the 60 minute group rate; hybrid: 5 group and 5 individual weeks
    assert body["total"] == 400.0 + 350.0
    assert len(body["items"]) == 3

    duplicate = await client.post("/api/v1/invoices/generate", headers=admin_headers, json=request)
    assert duplicate.status_code == 409

    bulk = (await client.post("/api/v1/invoices/generate/bulk", headers=admin_headers, json={
        "term_id": str(setup["term"].id),
    })).json()
    assert bulk["created"] == []
    assert bulk["errors"][0]["family_id"] == str(family.id)


async def test_term_invoice_requires_enrollments(client, admin_headers, setup, family):
    response = await client.post("/api/v1/invoices/generate", headers=admin_headers, json={
        "family_id": str(family.id), "term_id": str(setup["term"].id),
    })
    assert response.status_code == 400
