import pytest
from werkzeug.security import generate_password_hash
from farmtrust.app import create_app
from farmtrust.auth_mw import make_token
from farmtrust.config import TestConfig
from farmtrust.db import db
from farmtrust.models import Escrow, Role, User
from farmtrust.services import escrow_service


@pytest.fixture()
def app():
    app = create_app(TestConfig)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def make_user(app):
    def _make(username, role=Role.BUYER, password="secret123", locked=False):
        u = User(
            username=username,
            email=f"{username}@farmtrust.test",
            password=generate_password_hash(password),
            role=role,
            locked=locked,
        )
        db.session.add(u)
        db.session.commit()
        return u
    return _make


@pytest.fixture()
def buyer(make_user):
    return make_user("buyer1", Role.BUYER)


@pytest.fixture()
def vendor(make_user):
    return make_user("vendor1", Role.VENDOR)


@pytest.fixture()
def admin(make_user):
    return make_user("admin1", Role.ADMIN)


@pytest.fixture()
def auth():
    def _headers(user):
        return {"Authorization": f"Bearer {make_token(user)}"}
    return _headers


def order_payload(vendor_id, unit_price=100.0, quantity=2, **overrides):
    payload = {
        "items": [{
            "product_id": "rice-50kg",
            "product_name": "Local rice 50kg",
            "vendor_id": vendor_id,
            "quantity": quantity,
            "unit_price": unit_price,
        }],
        "shipping_address": {
            "street": "12 Siaka Stevens St",
            "city": "Freetown",
            "district": "Western Area Urban",
            "phone": "+23276123456",
        },
        "payment_method": "orange_money",
    }
    payload.update(overrides)
    return payload


@pytest.fixture()
def place_order(client, auth, buyer, vendor):
    def _place(unit_price=100.0, quantity=2, as_buyer=None):
        r = client.post("/orders", json=order_payload(vendor.id, unit_price, quantity),
                        headers=auth(as_buyer or buyer))
        assert r.status_code == 201, r.get_json()
        return r.get_json()["order"]["id"]
    return _place


@pytest.fixture()
def funded_order(place_order):
    """Place an order and fund its escrow directly."""
    def _funded(**kwargs):
        order_id = place_order(**kwargs)
        escrow = Escrow.query.filter_by(order_id=order_id).one()
        escrow_service.apply_fund(escrow, "TXN-TEST")
        db.session.commit()
        return order_id
    return _funded


@pytest.fixture()
def delivered_order(client, auth, vendor, funded_order):
    def _delivered(**kwargs):
        order_id = funded_order(**kwargs)
        r = client.patch(f"/orders/{order_id}/status", json={"status": "shipped"}, headers=auth(vendor))
        assert r.status_code == 200, r.get_json()
        r = client.patch(f"/orders/{order_id}/status", json={"status": "delivered"}, headers=auth(vendor))
        assert r.status_code == 200, r.get_json()
        return order_id
    return _delivered

