"""Integration tests for the checkout endpoint."""

import json

from bson import ObjectId

from storefront import ids
from storefront.schemas import ORDERS, VARIANT_MAPPINGS

CONTACT = {
    "name": "Ada Lovelace",
    "email": "ada@example.com",
    "phone": "+44 20 7946 0000",
    "address": "12 Analytical Row, London",
    "note": "Leave at the door",
}


def _checkout(client, cart, **overrides):
    data = dict(CONTACT, cartItems=json.dumps(cart), **overrides)
    return client.post("/checkout", data=data, follow_redirects=False)


def _mapping_quantity(db, mapping_id):
    return db[VARIANT_MAPPINGS].find_one({"_id": mapping_id})["quantity"]


class TestSuccessfulCheckout:
    def test_variant_line_end_to_end(self, client, factory, db):
        v1 = factory.variant("Red", price=10, sku="TEE-RED")
        p1 = factory.product("Tee", mappings=[{"variant": v1, "quantity": 5}])
        mapping_id = p1["variant_mappings"][0]

        response = _checkout(client, [{"id": str(p1["id"]), "quantity": 2, "variant": {"id": str(v1["id"]), "name": "Red"}}])

        assert response.status_code == 302
        assert response.headers["location"] == "/checkout/success"

        order = db[ORDERS].find_one()
        assert order["total_amount"] == 20
        assert order["status"] == "pending"
        assert order["items"] == [
            {
                "product": p1["id"],
                "quantity": 2,
                "price_at_purchase": 10.0,
                "mapping_id": str(mapping_id),
                "variant": {"id": str(v1["id"]), "name": "Red", "sku": "TEE-RED"},
            }
        ]
        assert _mapping_quantity(db, mapping_id) == 3

    def test_mapping_id_sent_as_variant_id(self, client, factory, db):
        v1 = factory.variant("Red", price=10)
        p1 = factory.product("Tee", mappings=[{"variant": v1, "quantity": 5, "price_override": 8}])
        mapping_id = p1["variant_mappings"][0]

        response = _checkout(client, [{"id": str(p1["id"]), "quantity": 1, "variant": {"id": str(mapping_id), "name": "Red"}}])

        assert response.status_code == 302
        assert db[ORDERS].find_one()["total_amount"] == 8
        assert _mapping_quantity(db, mapping_id) == 4

    def test_explicit_mapping_id(self, client, factory, db):
        v1 = factory.variant("Red", price=10)
        p1 = factory.product("Tee", mappings=[{"variant": v1, "quantity": 5}])
        mapping_id = p1["variant_mappings"][0]

        cart = [{"id": str(p1["id"]), "quantity": 1, "variant": {"id": "stale-client-id", "mappingId": str(mapping_id), "name": "Red"}}]
        assert _checkout(client, cart).status_code == 302
        assert _mapping_quantity(db, mapping_id) == 4

    def test_product_line_uses_discount_and_default_mapping(self, client, factory, db):
        p1 = factory.product(
            "Mug",
            original_price=15,
            discounted_price=12,
            mappings=[{"variant": factory.variant("Std"), "quantity": 10, "is_default": True}],
        )
        mapping_id = p1["variant_mappings"][0]

        response = _checkout(client, [{"id": str(p1["id"]), "quantity": 3}])

        assert response.status_code == 302
        order = db[ORDERS].find_one()
        assert order["total_amount"] == 36
        assert "variant" not in order["items"][0]
        assert _mapping_quantity(db, mapping_id) == 7

    def test_confirmation_sent_to_customer_and_store(self, client, factory, email_channel):
        v1 = factory.variant("Red", price=10)
        p1 = factory.product("Tee", mappings=[{"variant": v1, "quantity": 5}])

        _checkout(client, [{"id": str(p1["id"]), "quantity": 1, "variant": {"id": str(v1["id"]), "name": "Red"}}])

        recipients = [mail["to"] for mail in email_channel.sent_emails]
        assert recipients[0] == "ada@example.com"
        assert len(recipients) == 2
        assert "1 x Tee - Red @ 10.00 = 10.00" in email_channel.sent_emails[0]["body"]

    def test_notification_failure_keeps_order(self, client, factory, db, email_channel):
        email_channel.configure(should_succeed=False)
        v1 = factory.variant("Red", price=10)
        p1 = factory.product("Tee", mappings=[{"variant": v1, "quantity": 5}])

        response = _checkout(client, [{"id": str(p1["id"]), "quantity": 1, "variant": {"id": str(v1["id"]), "name": "Red"}}])

        assert response.status_code == 302
        assert db[ORDERS].count_documents({}) == 1


class TestPartialFailure:
    def test_failed_order_save_keeps_deduction(self, client, factory, catalog, db, monkeypatch):
        v1 = factory.variant("Red", price=10)
        p1 = factory.product("Tee", mappings=[{"variant": v1, "quantity": 5}])
        mapping_id = p1["variant_mappings"][0]
        original_create = catalog.create

        def failing_create(collection, data, **kwargs):
            if collection == ORDERS:
                raise RuntimeError("write concern timeout")
            return original_create(collection, data, **kwargs)

        monkeypatch.setattr(catalog, "create", failing_create)
        response = _checkout(client, [{"id": str(p1["id"]), "quantity": 2, "variant": {"id": str(v1["id"]), "name": "Red"}}])

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to process checkout"}
        assert _mapping_quantity(db, mapping_id) == 3
        assert db[ORDERS].count_documents({}) == 0

    def test_concurrent_change_on_later_line_keeps_earlier_deduction(self, client, factory, catalog, db, monkeypatch):
        red, blue = factory.variant("Red", price=10), factory.variant("Blue", price=12)
        tee = factory.product("Tee", mappings=[{"variant": red, "quantity": 5}])
        mug = factory.product("Mug", mappings=[{"variant": blue, "quantity": 4}])
        tee_mapping, mug_mapping = tee["variant_mappings"][0], mug["variant_mappings"][0]
        original_update = catalog.update

        def racing_update(collection, id, data, **kwargs):
            if collection == VARIANT_MAPPINGS and ids.ids_equal(id, mug_mapping):
                # Another checkout sells one mug between validation and this write.
                db[VARIANT_MAPPINGS].update_one({"_id": mug_mapping}, {"$inc": {"quantity": -1}})
            return original_update(collection, id, data, **kwargs)

        monkeypatch.setattr(catalog, "update", racing_update)
        response = _checkout(
            client,
            [
                {"id": str(tee["id"]), "quantity": 2, "variant": {"id": str(red["id"]), "name": "Red"}},
                {"id": str(mug["id"]), "quantity": 1, "variant": {"id": str(blue["id"]), "name": "Blue"}},
            ],
        )

        assert response.status_code == 409
        assert _mapping_quantity(db, tee_mapping) == 3
        assert _mapping_quantity(db, mug_mapping) == 3
        assert db[ORDERS].count_documents({}) == 0


class TestRejectedCheckout:
    def test_missing_fields(self, client):
        response = client.post("/checkout", data={"name": "Ada"}, follow_redirects=False)
        assert response.status_code == 400
        assert response.json() == {"error": "Missing required fields"}

    def test_invalid_email(self, client):
        response = _checkout(client, [{"id": "x", "quantity": 1}], email="not-an-email")
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid email address"}

    def test_special_use_email_domain(self, client, factory, db):
        tee = factory.product("Tee", mappings=[{"variant": factory.variant(), "quantity": 4, "is_default": True}])
        mapping_id = tee["variant_mappings"][0]

        response = _checkout(client, [{"id": str(tee["id"]), "quantity": 1}], email="buyer@shop.test")

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid email address"}
        assert _mapping_quantity(db, mapping_id) == 4

    def test_malformed_cart(self, client):
        response = client.post("/checkout", data=dict(CONTACT, cartItems="{not json"), follow_redirects=False)
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid cart data"}

    def test_empty_cart(self, client):
        response = _checkout(client, [])
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid cart data"}

    def test_missing_and_unpublished_products(self, client, factory, db):
        hidden = factory.product("Hidden", published=False)
        unknown = ObjectId()

        response = _checkout(client, [{"id": str(hidden["id"]), "quantity": 1}, {"id": str(unknown), "quantity": 1}])

        assert response.status_code == 404
        assert response.json()["error"] == (
            "Some products in cart are no longer available. "
            f"Missing product IDs: {hidden['id']}, {unknown}"
        )
        assert db[ORDERS].count_documents({}) == 0

    def test_shortfalls_are_aggregated(self, client, factory, db):
        red, blue = factory.variant("Red"), factory.variant("Blue")
        tee = factory.product("Tee", mappings=[{"variant": red, "quantity": 1}])
        mug = factory.product("Mug", mappings=[{"variant": blue, "quantity": 2}])
        mapping_id = tee["variant_mappings"][0]

        response = _checkout(
            client,
            [
                {"id": str(tee["id"]), "quantity": 3, "variant": {"id": str(red["id"]), "name": "Red"}},
                {"id": str(mug["id"]), "quantity": 5},
            ],
        )

        assert response.status_code == 409
        assert response.json()["error"] == (
            "Insufficient stock for the following items: "
            "Tee - Red: requested 3, available 1, "
            "Mug: requested 5, available 2"
        )
        assert _mapping_quantity(db, mapping_id) == 1
        assert db[ORDERS].count_documents({}) == 0

    def test_unknown_variant(self, client, factory):
        tee = factory.product("Tee", mappings=[{"variant": factory.variant("Red"), "quantity": 4}])

        response = _checkout(client, [{"id": str(tee["id"]), "quantity": 1, "variant": {"id": str(ObjectId()), "name": "Green"}}])

        assert response.status_code == 409
        assert "Tee - Green: variant no longer available" in response.json()["error"]

    def test_invalid_price_rejected_before_deduction(self, client, factory, db):
        broken = factory.variant("Red", price=-4)
        tee = factory.product("Tee", mappings=[{"variant": broken, "quantity": 4}])
        mapping_id = tee["variant_mappings"][0]

        response = _checkout(client, [{"id": str(tee["id"]), "quantity": 1, "variant": {"id": str(broken["id"]), "name": "Red"}}])

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid price for Tee"}
        assert _mapping_quantity(db, mapping_id) == 4

    def test_get_not_allowed(self, client):
        response = client.get("/checkout")
        assert response.status_code == 405
        assert response.headers["allow"] == "POST"
