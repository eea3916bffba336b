"""
Cart engine: actions against live stock, total recomputation, price
snapshots and the version guard, plus the /cart routes.
"""

import pytest

from cart import _save_cart, apply_cart_action, cart_total, get_cart
from errors import ConflictError, InsufficientStock, ItemNotInCart, NoCartExists, NotFoundError, ValidationError


def expected_total(cart):
    return round(sum(i["price"] * i["quantity"] for i in cart["items"]), 2)


# ============================================================================
# Engine
# ============================================================================

class TestAdd:

    def test_creates_cart_lazily(self, db, user, make_product):
        product = make_product()
        uid = str(user["_id"])
        assert db["cart"].find_one({"user_id": uid}) is None

        cart = apply_cart_action(db, uid, str(product["_id"]), "add", 2)

        assert cart["items"] == [{"product_id": str(product["_id"]), "price": 10.0, "quantity": 2}]
        assert cart["total_amount"] == 20.0
        assert db["cart"].count_documents({"user_id": uid}) == 1

    def test_add_existing_increments(self, db, user, make_product):
        product = make_product()
        uid, pid = str(user["_id"]), str(product["_id"])
        apply_cart_action(db, uid, pid, "add", 1)
        cart = apply_cart_action(db, uid, pid, "add", 3)
        assert len(cart["items"]) == 1
        assert cart["items"][0]["quantity"] == 4
        assert cart["total_amount"] == 40.0

    def test_over_stock_on_new_line_leaves_no_cart(self, db, user, make_product):
        product = make_product(stock=2)
        uid = str(user["_id"])
        with pytest.raises(InsufficientStock) as exc:
            apply_cart_action(db, uid, str(product["_id"]), "add", 3)
        assert exc.value.available == 2
        assert db["cart"].find_one({"user_id": uid}) is None

    def test_over_stock_on_existing_line_leaves_cart_unchanged(self, db, user, make_product):
        product = make_product(stock=3)
        uid, pid = str(user["_id"]), str(product["_id"])
        before = apply_cart_action(db, uid, pid, "add", 2)

        with pytest.raises(InsufficientStock):
            apply_cart_action(db, uid, pid, "add", 2)

        after = get_cart(db, uid)
        assert after["items"] == before["items"]
        assert after["total_amount"] == before["total_amount"]
        assert after["version"] == before["version"]

    def test_quantity_must_be_positive_integer(self, db, user, make_product):
        product = make_product()
        for bad in (0, -1, 1.5, "2", None, True):
            with pytest.raises(ValidationError):
                apply_cart_action(db, str(user["_id"]), str(product["_id"]), "add", bad)


class TestIncreaseDecreaseRemove:

    def test_increase_stops_at_stock(self, db, user, make_product):
        product = make_product(stock=2)
        uid, pid = str(user["_id"]), str(product["_id"])
        apply_cart_action(db, uid, pid, "add", 1)
        cart = apply_cart_action(db, uid, pid, "increase")
        assert cart["items"][0]["quantity"] == 2

        with pytest.raises(InsufficientStock):
            apply_cart_action(db, uid, pid, "increase")
        assert get_cart(db, uid)["items"][0]["quantity"] == 2

    def test_decrease_at_one_removes_line(self, db, user, make_product):
        p1, p2 = make_product(), make_product(name="Gadget", sale_price=5.0)
        uid = str(user["_id"])
        apply_cart_action(db, uid, str(p1["_id"]), "add", 2)
        apply_cart_action(db, uid, str(p2["_id"]), "add", 1)

        cart = apply_cart_action(db, uid, str(p1["_id"]), "decrease")
        assert [i["quantity"] for i in cart["items"]] == [1, 1]

        cart = apply_cart_action(db, uid, str(p1["_id"]), "decrease")
        assert [i["product_id"] for i in cart["items"]] == [str(p2["_id"])]
        assert all(i["quantity"] >= 1 for i in cart["items"])
        assert cart["total_amount"] == 5.0

    def test_remove_deletes_line(self, db, user, make_product):
        product = make_product()
        uid, pid = str(user["_id"]), str(product["_id"])
        apply_cart_action(db, uid, pid, "add", 3)
        cart = apply_cart_action(db, uid, pid, "remove")
        assert cart["items"] == []
        assert cart["total_amount"] == 0

    def test_remove_twice_is_not_a_noop(self, db, user, make_product):
        product = make_product()
        uid, pid = str(user["_id"]), str(product["_id"])
        apply_cart_action(db, uid, pid, "add", 1)
        apply_cart_action(db, uid, pid, "remove")
        with pytest.raises(ItemNotInCart):
            apply_cart_action(db, uid, pid, "remove")

    @pytest.mark.parametrize("action", ["increase", "decrease", "remove"])
    def test_actions_on_absent_line(self, db, user, make_product, action):
        product = make_product()
        with pytest.raises(ItemNotInCart):
            apply_cart_action(db, str(user["_id"]), str(product["_id"]), action)


class TestPreconditions:

    def test_unknown_action(self, db, user, make_product):
        product = make_product()
        with pytest.raises(ValidationError):
            apply_cart_action(db, str(user["_id"]), str(product["_id"]), "explode")

    def test_malformed_product_id(self, db, user):
        with pytest.raises(ValidationError):
            apply_cart_action(db, str(user["_id"]), "not-an-id", "add")

    def test_missing_product(self, db, user):
        with pytest.raises(NotFoundError):
            apply_cart_action(db, str(user["_id"]), "0123456789abcdef01234567", "add")

    def test_get_cart_without_cart(self, db, user):
        with pytest.raises(NoCartExists):
            get_cart(db, str(user["_id"]))


class TestTotalsAndSnapshots:

    def test_total_tracks_every_mutation(self, db, user, make_product):
        a = make_product(sale_price=19.99, stock=10)
        b = make_product(name="B", sale_price=0.35, cost_price=1.0, stock=10)
        c = make_product(name="C", sale_price=7.5, stock=10)
        uid = str(user["_id"])
        steps = [
            (a, "add", 2), (b, "add", 3), (a, "increase", 1), (c, "add", 1),
            (b, "decrease", 1), (a, "decrease", 1), (c, "remove", 1), (b, "add", 4),
        ]
        for product, action, qty in steps:
            cart = apply_cart_action(db, uid, str(product["_id"]), action, qty)
            assert cart["total_amount"] == expected_total(cart)
            assert cart["total_amount"] == get_cart(db, uid)["total_amount"]

    def test_price_snapshot_survives_catalog_change(self, db, user, make_product):
        product = make_product(sale_price=10.0, stock=10)
        uid, pid = str(user["_id"]), str(product["_id"])
        apply_cart_action(db, uid, pid, "add", 1)
        db["product"].update_one({"_id": product["_id"]}, {"$set": {"sale_price": 15.0}})

        cart = apply_cart_action(db, uid, pid, "increase")
        assert cart["items"][0]["price"] == 10.0
        assert cart["total_amount"] == 20.0

        apply_cart_action(db, uid, pid, "remove")
        cart = apply_cart_action(db, uid, pid, "add", 1)
        assert cart["items"][0]["price"] == 15.0

    def test_cart_total_rounds_to_cents(self):
        assert cart_total([{"price": 0.1, "quantity": 3}]) == 0.3
        assert cart_total([]) == 0


class TestVersionGuard:

    def test_stale_write_is_rejected(self, db, user, make_product):
        product = make_product()
        uid, pid = str(user["_id"]), str(product["_id"])
        apply_cart_action(db, uid, pid, "add", 1)
        stale = get_cart(db, uid)
        apply_cart_action(db, uid, pid, "increase")

        with pytest.raises(ConflictError):
            _save_cart(db, uid, stale, [])
        assert get_cart(db, uid)["items"][0]["quantity"] == 2

    def test_concurrent_creation_is_rejected(self, db, user, make_product):
        product = make_product()
        uid = str(user["_id"])
        apply_cart_action(db, uid, str(product["_id"]), "add", 1)
        with pytest.raises(ConflictError):
            _save_cart(db, uid, None, [])

    def test_every_write_bumps_version(self, db, user, make_product):
        product = make_product()
        uid, pid = str(user["_id"]), str(product["_id"])
        versions = [apply_cart_action(db, uid, pid, a)["version"] for a in ("add", "increase", "decrease")]
        assert versions == [1, 2, 3]


# ============================================================================
# Routes
# ============================================================================

class TestCartRoutes:

    def test_get_cart_404_before_first_add(self, client, user_headers):
        res = client.get("/api/cart", headers=user_headers)
        assert res.status_code == 404
        assert res.json() == {"success": False, "message": "No cart exists"}

    def test_patch_then_get(self, client, user_headers, make_product):
        product = make_product()
        res = client.patch("/api/cart/item", headers=user_headers,
                           json={"productId": str(product["_id"]), "action": "add", "quantity": 2})
        assert res.status_code == 200
        body = res.json()
        assert body["success"] is True
        assert body["cart"]["totalAmount"] == 20.0
        line = body["cart"]["items"][0]
        assert line["productId"] == str(product["_id"])
        assert line["product"]["name"] == "Widget"

        res = client.get("/api/cart", headers=user_headers)
        assert res.json()["cart"]["items"][0]["quantity"] == 2

    def test_insufficient_stock_reports_available(self, client, user_headers, make_product):
        product = make_product(stock=1)
        res = client.patch("/api/cart/item", headers=user_headers,
                           json={"productId": str(product["_id"]), "action": "add", "quantity": 5})
        assert res.status_code == 400
        assert res.json()["available"] == 1
        assert res.json()["message"] == "Only 1 units available"

    def test_missing_product_id(self, client, user_headers):
        res = client.patch("/api/cart/item", headers=user_headers, json={"action": "add"})
        assert res.status_code == 400
        assert res.json()["message"] == "Product ID is required"

    def test_item_not_in_cart_is_404(self, client, user_headers, make_product):
        product = make_product()
        res = client.patch("/api/cart/item", headers=user_headers,
                           json={"productId": str(product["_id"]), "action": "remove"})
        assert res.status_code == 404
        assert res.json()["message"] == "Product not in cart"

    def test_requires_token(self, client):
        assert client.get("/api/cart").status_code == 401

    def test_admin_role_is_gated_out(self, client, admin_headers):
        assert client.get("/api/cart", headers=admin_headers).status_code == 403
