import pytest
from farmtrust.db import db
from farmtrust.models import (
    Dispute,
    DisputePriority,
    DisputeReason,
    Escrow,
    EscrowStatus,
    Order,
    OrderStatus,
)
from farmtrust.services.dispute_service import determine_priority


def _open(client, auth, user, order_id, reason="damaged", **extra):
    body = {"order_id": order_id, "reason": reason, "description": "Half the bags were torn", **extra}
    return client.post("/disputes", json=body, headers=auth(user))


@pytest.mark.parametrize("total, reason, requested, expected", [
    (1500, DisputeReason.OTHER, None, DisputePriority.HIGH),
    (200, DisputeReason.OTHER, 600, DisputePriority.HIGH),
    (200, DisputeReason.DAMAGED, None, DisputePriority.MEDIUM),
    (200, DisputeReason.WRONG_ITEM, 100, DisputePriority.MEDIUM),
    (200, DisputeReason.LATE_DELIVERY, None, DisputePriority.LOW),
])
def test_determine_priority(app, total, reason, requested, expected):
    assert determine_priority(total, reason, requested) == expected


def test_buyer_opens_dispute_and_holds_escrow(client, auth, buyer, vendor, delivered_order):
    order_id = delivered_order()
    r = _open(client, auth, buyer, order_id, evidence=["https://img.example/torn.jpg"])
    assert r.status_code == 201
    dispute = r.get_json()["dispute"]
    assert dispute["status"] == "open"
    assert dispute["priority"] == "medium"
    assert dispute["respondent_id"] == vendor.id

    escrow = Escrow.query.filter_by(order_id=order_id).one()
    assert escrow.status == EscrowStatus.DISPUTED
    assert escrow.status_before_dispute == EscrowStatus.PENDING_CONFIRMATION
    assert db.session.get(Order, order_id).status == OrderStatus.DISPUTED

    notes = client.get("/notifications?unread=1", headers=auth(vendor)).get_json()["data"]
    assert notes[0]["title"] == "Dispute Opened"


def test_vendor_may_open_dispute(client, auth, buyer, vendor, funded_order):
    order_id = funded_order()
    r = _open(client, auth, vendor, order_id, reason="other")
    assert r.status_code == 201
    assert r.get_json()["dispute"]["respondent_id"] == buyer.id


def test_dispute_preconditions(client, auth, buyer, make_user, place_order, funded_order):
    unpaid = place_order()
    assert _open(client, auth, buyer, unpaid).status_code == 409

    order_id = funded_order()
    stranger = make_user("stranger")
    assert _open(client, auth, stranger, order_id).status_code == 403
    assert _open(client, auth, buyer, order_id, reason="bad-vibes").status_code == 400
    assert _open(client, auth, buyer, order_id, evidence="not-a-list").status_code == 400
    assert _open(client, auth, buyer, order_id, evidence=["not a url"]).status_code == 400
    assert _open(client, auth, buyer, order_id, evidence=["ftp://img.example/a.jpg"]).status_code == 400
    assert _open(client, auth, buyer, order_id, requested_amount=5000).status_code == 400
    assert _open(client, auth, buyer, 9999).status_code == 404

    assert _open(client, auth, buyer, order_id).status_code == 201
    r = _open(client, auth, buyer, order_id)
    assert r.status_code == 409
    assert Dispute.query.filter_by(order_id=order_id).count() == 1


def test_disputed_escrow_is_frozen(client, auth, buyer, vendor, admin, delivered_order):
    order_id = delivered_order()
    _open(client, auth, buyer, order_id)
    r = client.post(f"/orders/{order_id}/confirm-delivery", headers=auth(buyer))
    assert r.status_code == 409
    r = client.post(f"/payments/refund/{order_id}", json={"refund_reason": "x"}, headers=auth(vendor))
    assert r.status_code == 409
    r = client.post(f"/admin/escrow/{order_id}/release", json={}, headers=auth(admin))
    assert r.status_code == 409
    assert Escrow.query.filter_by(order_id=order_id).one().status == EscrowStatus.DISPUTED


def test_respondent_responds(client, auth, buyer, vendor, funded_order):
    order_id = funded_order()
    dispute_id = _open(client, auth, buyer, order_id).get_json()["dispute"]["id"]

    r = client.post(f"/disputes/{dispute_id}/respond", json={"response": "Sent photos"}, headers=auth(buyer))
    assert r.status_code == 403
    r = client.post(f"/disputes/{dispute_id}/respond", json={}, headers=auth(vendor))
    assert r.status_code == 400
    r = client.post(f"/disputes/{dispute_id}/respond",
                    json={"response": "See photo", "evidence": ["photo of bags"]}, headers=auth(vendor))
    assert r.status_code == 400
    r = client.post(f"/disputes/{dispute_id}/respond",
                    json={"response": "Bags were intact at dispatch", "evidence": ["https://img.example/ok.jpg"]},
                    headers=auth(vendor))
    assert r.status_code == 200
    dispute = r.get_json()["dispute"]
    assert dispute["status"] == "under-review"
    assert dispute["response_evidence"] == ["https://img.example/ok.jpg"]

    r = client.post(f"/disputes/{dispute_id}/respond", json={"response": "again"}, headers=auth(vendor))
    assert r.status_code == 409


def test_dispute_visibility(client, auth, buyer, vendor, admin, make_user, funded_order):
    order_id = funded_order()
    dispute_id = _open(client, auth, buyer, order_id).get_json()["dispute"]["id"]
    assert client.get(f"/disputes/{dispute_id}", headers=auth(vendor)).status_code == 200
    assert client.get(f"/disputes/{dispute_id}", headers=auth(admin)).status_code == 200
    assert client.get(f"/disputes/{dispute_id}", headers=auth(make_user("stranger"))).status_code == 403
    assert client.get("/disputes", headers=auth(vendor)).get_json()["pagination"]["total"] == 1


def test_resolve_for_buyer_full_refund(client, auth, buyer, admin, delivered_order):
    order_id = delivered_order()
    dispute_id = _open(client, auth, buyer, order_id).get_json()["dispute"]["id"]
    r = client.post(f"/admin/disputes/{dispute_id}/resolve",
                    json={"outcome": "buyer", "resolution": "Goods damaged in transit"}, headers=auth(admin))
    assert r.status_code == 200
    dispute = r.get_json()["dispute"]
    assert dispute["status"] == "resolved-buyer"
    assert dispute["refund_amount"] == 200.0

    escrow = Escrow.query.filter_by(order_id=order_id).one()
    assert escrow.status == EscrowStatus.REFUNDED
    assert escrow.vendor_payout_amount == 0
    assert db.session.get(Order, order_id).status == OrderStatus.REFUNDED


def test_resolve_for_buyer_partial_refund(client, auth, buyer, admin, delivered_order):
    order_id = delivered_order()
    dispute_id = _open(client, auth, buyer, order_id, requested_amount=50).get_json()["dispute"]["id"]
    r = client.post(f"/admin/disputes/{dispute_id}/resolve",
                    json={"outcome": "buyer", "resolution": "Partial damage", "refund_amount": 50},
                    headers=auth(admin))
    assert r.status_code == 200
    escrow = Escrow.query.filter_by(order_id=order_id).one()
    assert escrow.refunded_amount == 50
    assert escrow.vendor_payout_amount == 147.75


def test_resolve_for_vendor_releases(client, auth, buyer, admin, delivered_order):
    order_id = delivered_order()
    dispute_id = _open(client, auth, buyer, order_id).get_json()["dispute"]["id"]
    r = client.post(f"/admin/disputes/{dispute_id}/resolve",
                    json={"outcome": "vendor", "resolution": "Delivery photos confirm condition"},
                    headers=auth(admin))
    assert r.status_code == 200
    assert r.get_json()["dispute"]["status"] == "resolved-vendor"
    escrow = Escrow.query.filter_by(order_id=order_id).one()
    assert escrow.status == EscrowStatus.RELEASED
    assert escrow.release_reason.value == "dispute_resolution"
    assert db.session.get(Order, order_id).status == OrderStatus.COMPLETED

    r = client.post(f"/admin/disputes/{dispute_id}/resolve",
                    json={"outcome": "buyer", "resolution": "changed mind"}, headers=auth(admin))
    assert r.status_code == 409


def test_resolve_validation(client, auth, buyer, admin, funded_order):
    dispute_id = _open(client, auth, buyer, funded_order()).get_json()["dispute"]["id"]
    r = client.post(f"/admin/disputes/{dispute_id}/resolve", json={"outcome": "nobody", "resolution": "x"},
                    headers=auth(admin))
    assert r.status_code == 400
    r = client.post(f"/admin/disputes/{dispute_id}/resolve", json={"outcome": "buyer"}, headers=auth(admin))
    assert r.status_code == 400
    r = client.post(f"/admin/disputes/{dispute_id}/resolve",
                    json={"outcome": "buyer", "resolution": "x", "refund_amount": 999}, headers=auth(admin))
    assert r.status_code == 400
    assert Escrow.query.filter_by(order_id=db.session.get(Dispute, dispute_id).order_id).one().status == EscrowStatus.DISPUTED


def test_escalate_bumps_priority(client, auth, buyer, admin, funded_order):
    dispute_id = _open(client, auth, buyer, funded_order(), reason="late-delivery").get_json()["dispute"]["id"]
    r = client.post(f"/admin/disputes/{dispute_id}/escalate", json={}, headers=auth(admin))
    assert r.status_code == 400
    r = client.post(f"/admin/disputes/{dispute_id}/escalate", json={"escalation_reason": "No reply"},
                    headers=auth(admin))
    assert r.status_code == 200
    dispute = r.get_json()["dispute"]
    assert dispute["priority"] == "high"
    assert dispute["status"] == "under-review"
    r = client.post(f"/admin/disputes/{dispute_id}/escalate", json={"escalation_reason": "Still nothing"},
                    headers=auth(admin))
    assert r.get_json()["dispute"]["priority"] == "urgent"


def test_close_unresolved_restores_state(client, auth, buyer, admin, delivered_order):
    order_id = delivered_order()
    before = Escrow.query.filter_by(order_id=order_id).one().auto_release_date
    dispute_id = _open(client, auth, buyer, order_id).get_json()["dispute"]["id"]
    r = client.post(f"/admin/disputes/{dispute_id}/close", json={"closure_reason": "Buyer withdrew"},
                    headers=auth(admin))
    assert r.status_code == 200
    assert r.get_json()["dispute"]["status"] == "closed"

    escrow = Escrow.query.filter_by(order_id=order_id).one()
    assert escrow.status == EscrowStatus.PENDING_CONFIRMATION
    assert escrow.status_before_dispute is None
    assert escrow.auto_release_date == before
    assert db.session.get(Order, order_id).status == OrderStatus.DELIVERED

    # a new dispute may now be opened
    assert _open(client, auth, buyer, order_id).status_code == 201


def test_close_resolved_keeps_settlement(client, auth, buyer, admin, funded_order):
    order_id = funded_order()
    dispute_id = _open(client, auth, buyer, order_id).get_json()["dispute"]["id"]
    client.post(f"/admin/disputes/{dispute_id}/resolve",
                json={"outcome": "vendor", "resolution": "ok"}, headers=auth(admin))
    r = client.post(f"/admin/disputes/{dispute_id}/close", json={"closure_reason": "done"}, headers=auth(admin))
    assert r.status_code == 200
    assert Escrow.query.filter_by(order_id=order_id).one().status == EscrowStatus.RELEASED
    r = client.post(f"/admin/disputes/{dispute_id}/close", json={"closure_reason": "again"}, headers=auth(admin))
    assert r.status_code == 409


def test_admin_listing_stats_and_review(client, auth, buyer, admin, funded_order):
    first = _open(client, auth, buyer, funded_order(), reason="damaged").get_json()["dispute"]["id"]
    _open(client, auth, buyer, funded_order(unit_price=600), reason="other")

    r = client.get("/admin/disputes?priority=high", headers=auth(admin))
    assert r.get_json()["pagination"]["total"] == 1
    assert client.get("/admin/disputes?status=weird", headers=auth(admin)).status_code == 400

    r = client.patch(f"/admin/disputes/{first}", json={"status": "under-review", "admin_notes": "checking"},
                     headers=auth(admin))
    assert r.status_code == 200
    assert r.get_json()["dispute"]["admin_notes"] == "checking"
    r = client.patch(f"/admin/disputes/{first}", json={"status": "resolved-buyer"}, headers=auth(admin))
    assert r.status_code == 400

    stats = client.get("/admin/disputes/stats", headers=auth(admin)).get_json()
    assert stats["total"] == 2
    assert stats["active"] == 2
    assert stats["by_status"]["under-review"] == 1
    assert stats["active_by_priority"]["high"] == 1


def test_admin_dispute_routes_require_admin(client, auth, buyer):
    assert client.get("/admin/disputes", headers=auth(buyer)).status_code == 403
