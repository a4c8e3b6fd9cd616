"""Tests for order intake, cancellation and reads."""

import pytest

from orders_delivery import crud, errors
from orders_delivery.store import DELETE, MemoryOrderStore, StoreError


class CountingStore(MemoryOrderStore):
    def __init__(self):
        super().__init__()
        self.commits = 0

    def atomic_write(self, writes, expect=None):
        self.commits += 1
        super().atomic_write(writes, expect=expect)


class FailingStore(MemoryOrderStore):
    def atomic_write(self, writes, expect=None):
        raise StoreError("connection reset by db-7.internal")


def _snapshot(store):
    return {
        "orders": store.read(crud.ORDERS),
        "by_user": store.read(crud.ORDERS_BY_USER),
        "by_local": store.read(crud.ORDERS_BY_LOCAL),
        "by_status": store.read(crud.ORDERS_BY_STATUS),
    }


class TestCreateOrder:
    def test_example_order(self, store, order_request):
        order_id = crud.create_order(store, "u1", order_request)
        order = store.read(crud.order_path(order_id))

        assert order["id"] == order_id
        assert order["status"] == "created"
        assert order["userId"] == "u1"
        assert order["localId"] == "L1"
        assert order["type"] == "pickup"
        assert order["payment"] == {"method": "cash", "status": "pending"}
        assert order["totals"] == {
            "subtotal": 100, "deliveryFee": 0, "discount": 0, "total": 100, "currency": "MXN",
        }
        assert order["items"]["i1"]["totalPrice"] == 100
        assert order["location"] == {"zoneId": "Z1", "zoneName": "Centro", "lat": 19.4, "lng": -99.1}
        assert order["localSnapshot"] == {"name": "Tacos Don Pepe"}
        assert isinstance(order["createdAt"], int)
        assert order["createdAt"] == order["updatedAt"]
        assert "deliveryManId" not in order

    def test_indexes_and_history(self, store, order_request):
        order_id = crud.create_order(store, "u1", order_request)

        assert crud.list_order_ids(store, crud.ORDERS_BY_USER, "u1") == [order_id]
        assert crud.list_order_ids(store, crud.ORDERS_BY_LOCAL, "L1") == [order_id]
        assert crud.list_order_ids(store, crud.ORDERS_BY_STATUS, "created") == [order_id]

        history = crud.get_order_history(store, "u1", order_id)
        assert len(history) == 1
        assert history[0].status == "created"
        assert history[0].by == "user"

    def test_delivery_type(self, store, order_request):
        order_request["deliveryMethod"] = "delivery"
        order_id = crud.create_order(store, "u1", order_request)
        assert store.read(f"{crud.order_path(order_id)}/type") == "delivery"

    def test_one_commit_per_request(self, order_request):
        store = CountingStore()
        crud.create_orders(store, "u1", [order_request, order_request])
        assert store.commits == 1

    def test_batch_creates_every_order(self, store, order_request):
        order_ids = crud.create_orders(store, "u1", [order_request, order_request], batch=True)
        assert len(order_ids) == 2
        assert sorted(crud.list_order_ids(store, crud.ORDERS_BY_USER, "u1")) == sorted(order_ids)

    def test_empty_items_writes_nothing(self, order_request):
        store = CountingStore()
        order_request["items"] = []
        with pytest.raises(errors.EmptyItems):
            crud.create_order(store, "u1", order_request)
        assert store.commits == 0

    def test_invalid_item_writes_nothing(self, store, order_request):
        order_request["items"].append({"productId": "p2", "quantity": 0, "unitPrice": 10})
        with pytest.raises(errors.InvalidItem) as exc_info:
            crud.create_order(store, "u1", order_request)
        assert exc_info.value.index == 1
        assert _snapshot(store) == {"orders": None, "by_user": None, "by_local": None, "by_status": None}

    def test_invalid_second_order_rejects_whole_batch(self, store, order_request):
        bad = dict(order_request, location={"lat": None, "lng": 1})
        with pytest.raises(errors.InvalidLocation, match="index 1"):
            crud.create_orders(store, "u1", [order_request, bad], batch=True)
        assert store.read(crud.ORDERS) is None

    def test_missing_user(self, store, order_request):
        with pytest.raises(errors.MissingField):
            crud.create_order(store, None, order_request)

    def test_store_failure_is_internal_error(self, order_request):
        with pytest.raises(errors.InternalError) as exc_info:
            crud.create_order(FailingStore(), "u1", order_request)
        assert "db-7" not in exc_info.value.message


class TestCancelOrder:
    def test_cancel_created_order(self, store, order_request):
        order_id = crud.create_order(store, "u1", order_request)
        crud.cancel_order(store, "u1", order_id, "changed mind")

        order = store.read(crud.order_path(order_id))
        assert order["status"] == "cancelled"
        assert order["cancelReason"] == "changed mind"
        assert order["cancelledAt"] == order["updatedAt"]
        assert order["updatedAt"] >= order["createdAt"]

        assert crud.list_order_ids(store, crud.ORDERS_BY_STATUS, "created") == []
        assert crud.list_order_ids(store, crud.ORDERS_BY_STATUS, "cancelled") == [order_id]
        assert crud.list_order_ids(store, crud.ORDERS_BY_USER, "u1") == [order_id]

        history = crud.get_order_history(store, "u1", order_id)
        assert [entry.status for entry in history] == ["created", "cancelled"]
        assert history[-1].reason == "changed mind"

    def test_cancel_confirmed_order(self, store, order_request):
        order_id = crud.create_order(store, "u1", order_request)
        store.atomic_write([
            (f"{crud.order_path(order_id)}/status", "confirmed"),
            (crud.index_path(crud.ORDERS_BY_STATUS, "created", order_id), DELETE),
            (crud.index_path(crud.ORDERS_BY_STATUS, "confirmed", order_id), True),
        ])

        crud.cancel_order(store, "u1", order_id)

        assert store.read(f"{crud.order_path(order_id)}/status") == "cancelled"
        assert crud.list_order_ids(store, crud.ORDERS_BY_STATUS, "confirmed") == []
        assert store.read(f"{crud.order_path(order_id)}/cancelReason") == ""

    def test_numeric_user_id_matches(self, store, order_request):
        order_id = crud.create_order(store, 7, order_request)
        crud.cancel_order(store, "7", order_id)
        assert store.read(f"{crud.order_path(order_id)}/status") == "cancelled"

    def test_other_user_is_forbidden_and_nothing_changes(self, store, order_request):
        order_id = crud.create_order(store, "u1", order_request)
        before = _snapshot(store)

        with pytest.raises(errors.Forbidden) as exc_info:
            crud.cancel_order(store, "u2", order_id, "not mine")

        assert exc_info.value.message == "Forbidden"
        assert _snapshot(store) == before

    def test_already_cancelled_performs_no_write(self, order_request):
        store = CountingStore()
        order_id = crud.create_order(store, "u1", order_request)
        crud.cancel_order(store, "u1", order_id)
        commits = store.commits

        with pytest.raises(errors.InvalidStateTransition) as exc_info:
            crud.cancel_order(store, "u1", order_id)

        assert exc_info.value.current_status == "cancelled"
        assert "cancelled" in exc_info.value.message
        assert store.commits == commits

    def test_delivered_order_cannot_be_cancelled(self, store, order_request):
        order_id = crud.create_order(store, "u1", order_request)
        store.atomic_write([(f"{crud.order_path(order_id)}/status", "delivered")])
        with pytest.raises(errors.InvalidStateTransition, match="delivered"):
            crud.cancel_order(store, "u1", order_id)

    def test_unknown_order(self, store):
        with pytest.raises(errors.NotFound):
            crud.cancel_order(store, "u1", "does-not-exist")

    @pytest.mark.parametrize("user_id, order_id", [("", "o1"), ("u1", ""), (None, None)])
    def test_missing_fields(self, store, user_id, order_id):
        with pytest.raises(errors.MissingField):
            crud.cancel_order(store, user_id, order_id)

    def test_status_changed_before_commit(self, order_request):
        store = MemoryOrderStore()
        order_id = crud.create_order(store, "u1", order_request)
        status_path = f"{crud.order_path(order_id)}/status"

        class RacingStore(MemoryOrderStore):
            """Delegates to ``store`` but confirms the order between read and commit."""

            def read(self, path):
                return store.read(path)

            def atomic_write(self, writes, expect=None):
                store.atomic_write([(status_path, "confirmed")])
                store.atomic_write(writes, expect=expect)

        with pytest.raises(errors.ConcurrentModification):
            crud.cancel_order(RacingStore(), "u1", order_id)

        assert store.read(status_path) == "confirmed"
        assert crud.list_order_ids(store, crud.ORDERS_BY_STATUS, "cancelled") == []
        assert len(crud.get_order_history(store, "u1", order_id)) == 1

    def test_store_failure_is_internal_error(self, order_request):
        store = MemoryOrderStore()
        order_id = crud.create_order(store, "u1", order_request)

        class BrokenStore(FailingStore):
            def read(self, path):
                return store.read(path)

        with pytest.raises(errors.InternalError):
            crud.cancel_order(BrokenStore(), "u1", order_id)
        assert store.read(f"{crud.order_path(order_id)}/status") == "created"


class TestReads:
    def test_get_order(self, store, order_request):
        order_id = crud.create_order(store, "u1", order_request)
        order = crud.get_order(store, "u1", order_id)
        assert order.id == order_id
        assert order.totals.total == 100
        assert order.items[0].productId == "p1"
        assert order.deliveryManId is None

    def test_get_order_keeps_item_order(self, store, order_request):
        order_request["items"] = [
            {"productId": f"p{n}", "quantity": 1, "unitPrice": n} for n in range(1, 13)
        ]
        order_id = crud.create_order(store, "u1", order_request)
        order = crud.get_order(store, "u1", order_id)
        assert [item.productId for item in order.items] == [f"p{n}" for n in range(1, 13)]

    def test_get_order_of_other_user(self, store, order_request):
        order_id = crud.create_order(store, "u1", order_request)
        with pytest.raises(errors.Forbidden):
            crud.get_order(store, "u2", order_id)

    def test_list_user_orders_newest_first(self, store, order_request):
        first = crud.create_order(store, "u1", order_request)
        second = crud.create_order(store, "u1", order_request)
        crud.create_order(store, "u2", order_request)

        orders = crud.list_user_orders(store, "u1")
        assert [order.id for order in orders] == [second, first]

    def test_list_user_orders_by_status(self, store, order_request):
        first = crud.create_order(store, "u1", order_request)
        second = crud.create_order(store, "u1", order_request)
        crud.cancel_order(store, "u1", first)

        assert [o.id for o in crud.list_user_orders(store, "u1", status="cancelled")] == [first]
        assert [o.id for o in crud.list_user_orders(store, "u1", status="created")] == [second]

    def test_list_for_unknown_user(self, store):
        assert crud.list_user_orders(store, "nobody") == []
