from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date
from typing import Iterable, Optional, Protocol

import anyio.from_thread
from fastapi import WebSocket, WebSocketDisconnect
from sqlalchemy.orm import Session

from backoffice.models import Order, OrderItem, ProductMaterial
from backoffice.stock import material_availability, product_availability

logger = logging.getLogger(__name__)

PRODUCT_STOCK_CHANGED = "outlet:product:stock:changed"
MATERIAL_STOCK_CHANGED = "outlet:material:stock:changed"
PRODUCT_STOCKS_ROOM = "product:stocks"
MATERIAL_STOCKS_ROOM = "material:stocks"


def outlet_room(outlet_id: int) -> str:
    return f"outlet:{outlet_id}"


class StockEventSink(Protocol):
    def publish(self, room: str, event: str, payload: dict) -> None:
        ...


class WebSocketHub:
    def __init__(self) -> None:
        self._rooms: dict[str, set[WebSocket]] = defaultdict(set)

    async def connect(self, websocket: WebSocket, room: str) -> None:
        self._rooms[room].add(websocket)
        await websocket.accept()
        logger.info("[stock] socket joined room %s", room)

    def disconnect(self, websocket: WebSocket, room: Optional[str] = None) -> None:
        rooms = [room] if room else list(self._rooms)
        for name in rooms:
            members = self._rooms.get(name)
            if members is None:
                continue
            members.discard(websocket)
            if not members:
                del self._rooms[name]

    def rooms(self) -> dict[str, int]:
        return {name: len(members) for name, members in self._rooms.items()}

    async def send(self, room: str, message: dict) -> int:
        delivered = 0
        for websocket in list(self._rooms.get(room, ())):
            try:
                await websocket.send_json(message)
                delivered += 1
            except (WebSocketDisconnect, RuntimeError, OSError) as exc:
                logger.warning("[stock] dropping socket from room %s: %s", room, exc)
                self.disconnect(websocket, room)
        return delivered

    def publish(self, room: str, event: str, payload: dict) -> None:
        if not self._rooms.get(room):
            return
        anyio.from_thread.run(self.send, room, {"event": event, **payload})


class StockEventBroadcaster:
    def __init__(self, sink: StockEventSink, enabled: bool = True) -> None:
        self.sink = sink
        self.enabled = enabled

    def _publish(self, outlet_id: int, on: date, event: str, monitor_room: str, stocks: list[dict]) -> None:
        if not stocks:
            return
        payload = {"outlet_id": outlet_id, "date": on.isoformat(), "stocks": stocks}
        for room in (outlet_room(outlet_id), monitor_room):
            self.sink.publish(room, event, payload)

    def broadcast_products(
        self, db: Session, outlet_id: int, product_ids: Iterable[int], on: Optional[date] = None
    ) -> None:
        if not self.enabled:
            return
        try:
            snapshots = [
                snapshot
                for snapshot in (
                    product_availability(db, outlet_id, product_id, on)
                    for product_id in sorted(set(product_ids))
                )
                if snapshot is not None
            ]
            if snapshots:
                self._publish(
                    outlet_id,
                    snapshots[0].date,
                    PRODUCT_STOCK_CHANGED,
                    PRODUCT_STOCKS_ROOM,
                    [snapshot.to_payload() for snapshot in snapshots],
                )
        except Exception:
            logger.warning("[stock] product stock broadcast failed for outlet %s", outlet_id, exc_info=True)

    def broadcast_materials(
        self, db: Session, outlet_id: int, material_ids: Iterable[int], on: Optional[date] = None
    ) -> None:
        if not self.enabled:
            return
        try:
            snapshots = [
                snapshot
                for snapshot in (
                    material_availability(db, outlet_id, material_id, on)
                    for material_id in sorted(set(material_ids))
                )
                if snapshot is not None
            ]
            if snapshots:
                self._publish(
                    outlet_id,
                    snapshots[0].date,
                    MATERIAL_STOCK_CHANGED,
                    MATERIAL_STOCKS_ROOM,
                    [snapshot.to_payload() for snapshot in snapshots],
                )
        except Exception:
            logger.warning("[stock] material stock broadcast failed for outlet %s", outlet_id, exc_info=True)

    def broadcast_order(self, db: Session, order: Order) -> None:
        """Products of the order first, then the materials they consume."""
        if not self.enabled:
            return
        try:
            product_ids = [
                row.product_id
                for row in db.query(OrderItem.product_id).filter(
                    OrderItem.order_id == order.id,
                    OrderItem.is_active.is_(True),
                )
            ]
            material_ids = [
                row.material_id
                for row in db.query(ProductMaterial.material_id).filter(
                    ProductMaterial.product_id.in_(product_ids),
                    ProductMaterial.is_active.is_(True),
                )
            ] if product_ids else []
        except Exception:
            logger.warning("[stock] could not resolve stock items for order %s", order.id, exc_info=True)
            return
        self.broadcast_products(db, order.outlet_id, product_ids)
        self.broadcast_materials(db, order.outlet_id, material_ids)
