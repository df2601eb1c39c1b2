"""Tests for the cart store."""

import pytest
from bson import ObjectId

import cart
from errors import ConflictError, NotFoundError, ValidationError
from schemas import MAX_CART_QUANTITY


def _stored_cart(db, user_id):
    return db["user"].find_one({"_id": ObjectId(user_id)}).get("cart")


class TestAddItem:
    def test_first_add_creates_cart(self, db, user_id, make_product):
        product_id = make_product()
        assert _stored_cart(db, user_id) is None

        result = cart.add_item(user_id, product_id)

        assert len(result["items"]) == 1
        assert result["items"][0]["product_id"] == product_id
        assert result["items"][0]["quantity"] == 1
        assert len(_stored_cart(db, user_id)) == 1

    def test_adding_same_product_twice_merges_into_one_entry(self, user_id, make_product):
        product_id = make_product()
        cart.add_item(user_id, product_id, 1)
        cart.add_item(user_id, product_id, 1)

        result = cart.get_cart(user_id)
        assert len(result["items"]) == 1
        assert result["items"][0]["quantity"] == 2

    def test_quantity_is_sum_of_increments(self, user_id, make_product):
        product_id = make_product()
        for quantity in (1, 2, 3, 4):
            cart.add_item(user_id, product_id, quantity)

        result = cart.get_cart(user_id)
        assert result["items"][0]["quantity"] == 10

    def test_different_products_get_separate_entries(self, user_id, make_product):
        cart.add_item(user_id, make_product(name="A"))
        cart.add_item(user_id, make_product(name="B"))
        assert len(cart.get_cart(user_id)["items"]) == 2

    def test_no_stock_ceiling_when_adding(self, user_id, make_product):
        product_id = make_product(stock=1)
        result = cart.add_item(user_id, product_id, 5)
        assert result["items"][0]["quantity"] == 5

    def test_malformed_product_id(self, user_id):
        with pytest.raises(ValidationError):
            cart.add_item(user_id, "not-an-id")

    def test_unknown_product(self, user_id):
        with pytest.raises(NotFoundError):
            cart.add_item(user_id, str(ObjectId()))

    @pytest.mark.parametrize("quantity", [0, -1])
    def test_quantity_must_be_positive(self, user_id, make_product, quantity):
        with pytest.raises(ValidationError):
            cart.add_item(user_id, make_product(), quantity)

    @pytest.mark.parametrize("quantity", [MAX_CART_QUANTITY + 1, 10**20])
    def test_quantity_is_capped(self, user_id, make_product, quantity):
        with pytest.raises(ValidationError):
            cart.add_item(user_id, make_product(), quantity)

    def test_merge_beyond_cap_leaves_cart_unchanged(self, db, user_id, make_product):
        product_id = make_product()
        cart.add_item(user_id, product_id, MAX_CART_QUANTITY)
        before = _stored_cart(db, user_id)

        with pytest.raises(ValidationError):
            cart.add_item(user_id, product_id, 1)

        assert _stored_cart(db, user_id) == before

    def test_every_write_bumps_cart_version(self, db, user_id, make_product):
        product_id = make_product()
        cart.add_item(user_id, product_id)
        cart.add_item(user_id, product_id)
        user = db["user"].find_one({"_id": ObjectId(user_id)})
        assert user["cart_version"] == 2


class TestSetQuantity:
    def test_overwrites_quantity(self, user_id, make_product):
        product_id = make_product()
        cart.add_item(user_id, product_id, 2)

        result = cart.set_quantity(user_id, product_id, 7)

        assert result["items"][0]["quantity"] == 7

    def test_does_not_clamp_to_stock(self, user_id, make_product):
        product_id = make_product(stock=2)
        cart.add_item(user_id, product_id)
        result = cart.set_quantity(user_id, product_id, 50)
        assert result["items"][0]["quantity"] == 50

    def test_product_not_in_cart_leaves_cart_unchanged(self, db, user_id, make_product):
        in_cart = make_product(name="A")
        missing = make_product(name="B")
        cart.add_item(user_id, in_cart, 1)
        before = _stored_cart(db, user_id)

        with pytest.raises(NotFoundError):
            cart.set_quantity(user_id, missing, 3)

        assert _stored_cart(db, user_id) == before

    def test_no_cart(self, user_id, make_product):
        with pytest.raises(NotFoundError):
            cart.set_quantity(user_id, make_product(), 3)

    def test_quantity_must_be_positive(self, user_id, make_product):
        product_id = make_product()
        cart.add_item(user_id, product_id)
        with pytest.raises(ValidationError):
            cart.set_quantity(user_id, product_id, 0)

    def test_quantity_is_capped(self, user_id, make_product):
        product_id = make_product()
        cart.add_item(user_id, product_id)
        with pytest.raises(ValidationError):
            cart.set_quantity(user_id, product_id, MAX_CART_QUANTITY + 1)


class TestRemoveItem:
    def test_remove_item(self, user_id, make_product):
        a = make_product(name="A")
        b = make_product(name="B")
        cart.add_item(user_id, a)
        cart.add_item(user_id, b)

        result = cart.remove_item(user_id, a)

        assert [i["product_id"] for i in result["items"]] == [b]

    def test_remove_is_idempotent(self, db, user_id, make_product):
        a = make_product(name="A")
        b = make_product(name="B")
        cart.add_item(user_id, a)
        cart.add_item(user_id, b)

        cart.remove_item(user_id, a)
        once = _stored_cart(db, user_id)
        cart.remove_item(user_id, a)

        assert _stored_cart(db, user_id) == once

    def test_remove_absent_entry_is_noop(self, user_id, make_product):
        cart.add_item(user_id, make_product(name="A"))
        result = cart.remove_item(user_id, str(ObjectId()))
        assert len(result["items"]) == 1

    def test_cart_never_created(self, user_id, make_product):
        with pytest.raises(NotFoundError):
            cart.remove_item(user_id, make_product())


class TestClearCart:
    def test_clear_cart(self, user_id, make_product):
        cart.add_item(user_id, make_product(name="A"))
        cart.add_item(user_id, make_product(name="B"))

        cart.clear_cart(user_id)

        assert cart.get_cart(user_id)["items"] == []

    def test_clear_is_idempotent(self, user_id, make_product):
        cart.add_item(user_id, make_product())
        cart.clear_cart(user_id)
        result = cart.clear_cart(user_id)
        assert result["items"] == []
        assert result["subtotal"] == 0


class TestGetCart:
    def test_empty_for_new_user(self, user_id):
        result = cart.get_cart(user_id)
        assert result == {"items": [], "item_count": 0, "subtotal": 0.0}

    def test_joins_live_product_data(self, db, user_id, make_product):
        product_id = make_product(price=100.0)
        cart.add_item(user_id, product_id, 2)

        db["product"].update_one({"_id": ObjectId(product_id)}, {"$set": {"price": 120.0}})
        result = cart.get_cart(user_id)

        assert result["items"][0]["unit_price"] == 120.0
        assert result["items"][0]["line_total"] == 240.0
        assert result["items"][0]["product"]["name"] == "Test Product"
        assert result["subtotal"] == 240.0

    def test_discount_applies_to_unit_price(self, user_id, make_product):
        product_id = make_product(price=200.0, discount=10)
        result = cart.add_item(user_id, product_id, 1)
        assert result["items"][0]["unit_price"] == 180.0

    def test_deleted_product_is_kept_but_not_priced(self, db, user_id, make_product):
        gone = make_product(name="Gone", price=50.0)
        kept = make_product(name="Kept", price=10.0)
        cart.add_item(user_id, gone)
        cart.add_item(user_id, kept, 3)
        db["product"].delete_one({"_id": ObjectId(gone)})

        result = cart.get_cart(user_id)

        by_id = {i["product_id"]: i for i in result["items"]}
        assert by_id[gone]["product"] is None
        assert result["subtotal"] == 30.0
        assert result["item_count"] == 4


class TestConcurrentWrites:
    def test_stale_write_is_rejected(self, db, user_id, make_product):
        product_id = make_product()
        cart.add_item(user_id, product_id)
        user_oid = ObjectId(user_id)
        stale = db["user"].find_one({"_id": user_oid}, {"cart": 1, "cart_version": 1})

        # another request lands between our read and our write
        cart.add_item(user_id, product_id)

        with pytest.raises(ConflictError):
            cart._write_cart(user_oid, stale, [])
        assert cart.get_cart(user_id)["items"][0]["quantity"] == 2

    def test_user_without_version_field(self, db, user_id, make_product):
        db["user"].update_one({"_id": ObjectId(user_id)}, {"$unset": {"cart_version": ""}})
        cart.add_item(user_id, make_product())
        user = db["user"].find_one({"_id": ObjectId(user_id)})
        assert user["cart_version"] == 1
