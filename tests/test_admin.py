from datetime import datetime, timedelta
from farmtrust import manage
from farmtrust.db import db
from farmtrust.models import Escrow, EscrowStatus, Notification, Order, Role, User


def test_admin_orders_search(client, auth, admin, place_order):
    order_id = place_order()
    number = db.session.get(Order, order_id).order_number
    place_order()

    r = client.get(f"/admin/orders?q={number}", headers=auth(admin))
    assert r.status_code == 200
    assert [o["id"] for o in r.get_json()["data"]] == [order_id]
    r = client.get("/admin/orders?status=pending&limit=1", headers=auth(admin))
    body = r.get_json()
    assert body["pagination"] == {"page": 1, "limit": 1, "total": 2, "pages": 2}


def test_notifications_mark_read(client, auth, buyer, vendor, place_order):
    place_order()
    r = client.get("/notifications?unread=1", headers=auth(vendor))
    notes = r.get_json()["data"]
    assert notes and notes[0]["title"] == "New Order Received"

    assert client.post(f"/notifications/{notes[0]['id']}/read", headers=auth(buyer)).status_code == 404
    r = client.post(f"/notifications/{notes[0]['id']}/read", headers=auth(vendor))
    assert r.status_code == 200
    assert r.get_json()["read"] is True
    assert client.get("/notifications?unread=1", headers=auth(vendor)).get_json()["pagination"]["total"] == 0
    assert Notification.query.filter_by(user_id=vendor.id).count() == 1


def test_health(client):
    assert client.get("/health").get_json()["status"] == "ok"


def test_unknown_route_is_json(client):
    r = client.get("/nope")
    assert r.status_code == 404
    assert r.get_json() == {"error": "not_found"}


def test_create_admin_command(app):
    manage.create_admin("root", "root@farmtrust.test", "pw123456")
    u = User.query.filter_by(username="root").one()
    assert u.role == Role.ADMIN

    buyer = User(username="promote", email="promote@farmtrust.test", password="x", role=Role.BUYER)
    db.session.add(buyer)
    db.session.commit()
    manage.create_admin("promote", "promote@farmtrust.test", "ignored")
    assert User.query.filter_by(username="promote").one().role == Role.ADMIN


def test_auto_release_command(app, delivered_order, capsys):
    order_id = delivered_order()
    escrow = Escrow.query.filter_by(order_id=order_id).one()
    escrow.auto_release_date = datetime.utcnow() - timedelta(hours=1)
    db.session.commit()

    results = manage.auto_release()
    assert [r["success"] for r in results] == [True]
    assert "released 1" in capsys.readouterr().out
    assert Escrow.query.filter_by(order_id=order_id).one().status == EscrowStatus.RELEASED
