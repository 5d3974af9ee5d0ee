import logging
from datetime import date

from backoffice.broadcast import (
    MATERIAL_STOCK_CHANGED,
    PRODUCT_STOCK_CHANGED,
    StockEventBroadcaster,
    WebSocketHub,
)
from conftest import RecordingSink, local


class FailingSink:
    def publish(self, room: str, event: str, payload: dict) -> None:
        raise ConnectionError("socket server unavailable")


def test_order_broadcasts_products_then_materials(seed, db) -> None:
    outlet = seed.outlet()
    employee = seed.employee()
    latte = seed.product()
    tea = seed.product(name="Teh Tarik", price=18000)
    beans = seed.material()
    milk = seed.material(name="Fresh Milk", uom="ml")
    seed.bom(latte, beans, 18)
    seed.bom(latte, milk, 150)
    seed.product_request(outlet, latte, 30, local(2026, 10, 14, 7, 0))
    order = seed.order(outlet, employee, local(2026, 10, 14, 10, 0), items=[(latte, 2), (tea, 1)])
    sink = RecordingSink()

    StockEventBroadcaster(sink).broadcast_order(db, order)

    assert [(room, event) for room, event, _ in sink.messages] == [
        (f"outlet:{outlet.id}", PRODUCT_STOCK_CHANGED),
        ("product:stocks", PRODUCT_STOCK_CHANGED),
        (f"outlet:{outlet.id}", MATERIAL_STOCK_CHANGED),
        ("material:stocks", MATERIAL_STOCK_CHANGED),
    ]
    products = sink.messages[0][2]
    assert products["outlet_id"] == outlet.id
    assert [stock["product_id"] for stock in products["stocks"]] == [latte.id, tea.id]
    materials = sink.messages[2][2]["stocks"]
    assert {stock["material_name"] for stock in materials} == {"Espresso Beans", "Fresh Milk"}


def test_product_broadcast_carries_availability(seed, db) -> None:
    outlet = seed.outlet()
    product = seed.product()
    seed.product_request(outlet, product, 12, local(2026, 10, 13, 7, 0))
    sink = RecordingSink()

    StockEventBroadcaster(sink).broadcast_products(db, outlet.id, [product.id], on=date(2026, 10, 14))

    stock = sink.messages[0][2]["stocks"][0]
    assert stock["first_stock"] == 12
    assert stock["remaining_stock"] == 12
    assert sink.messages[0][2]["date"] == "2026-10-14"


def test_broadcast_failure_is_logged_not_raised(seed, db, caplog) -> None:
    outlet = seed.outlet()
    product = seed.product()

    with caplog.at_level(logging.WARNING, logger="backoffice.broadcast"):
        StockEventBroadcaster(FailingSink()).broadcast_products(db, outlet.id, [product.id])

    assert "product stock broadcast failed" in caplog.text


def test_disabled_broadcaster_publishes_nothing(seed, db) -> None:
    outlet = seed.outlet()
    product = seed.product()
    sink = RecordingSink()

    StockEventBroadcaster(sink, enabled=False).broadcast_products(db, outlet.id, [product.id])

    assert sink.messages == []


def test_unknown_items_are_not_published(seed, db) -> None:
    outlet = seed.outlet()
    sink = RecordingSink()

    StockEventBroadcaster(sink).broadcast_materials(db, outlet.id, [404])

    assert sink.messages == []


def test_hub_publish_without_subscribers_is_a_noop() -> None:
    hub = WebSocketHub()

    hub.publish("outlet:1", PRODUCT_STOCK_CHANGED, {"stocks": []})

    assert hub.rooms() == {}
