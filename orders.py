"""
Orders: repository and checkout service.

OrderRepository persists Order documents and owns the status state machine.
OrderService turns a cart into an order plus a ledger debit. The writes run as
a saga: debit, stock decrement, order insert. When a later step fails the
earlier ones are compensated in reverse so a failed checkout leaves neither a
debited balance nor an order behind.
"""

import logging
import uuid
from functools import partial
from typing import Callable, List, Optional

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from cart import Cart
from catalog import CatalogSelector
from database import now, parse_id, store_errors, with_id
from errors import (
    CatalogMismatch,
    ConcurrentModification,
    Conflict,
    EmptyCart,
    IncompleteAddress,
    InsufficientFunds,
    InvalidTransition,
    NotFound,
    StoreUnavailable,
)
from ledger import PointsLedger
from schemas import Employee, Order, OrderItem, ShippingAddress

logger = logging.getLogger(__name__)

# Forward-only, one step at a time
TRANSITIONS = {
    "pending": "processing",
    "processing": "shipped",
    "shipped": "delivered",
}

REQUIRED_ADDRESS_FIELDS = ("full_name", "address_line1", "city")

CHECKOUT_ATTEMPTS = 2


class OrderRepository:
    def __init__(self, db: Database):
        self.collection = db["order"]

    def create(self, order: Order) -> Order:
        data = order.model_dump(exclude={"id"})
        data["created_at"] = data["updated_at"] = now()
        with store_errors("order insert"):
            try:
                inserted = self.collection.insert_one(data).inserted_id
            except DuplicateKeyError:
                raise Conflict(f"Order for request {order.request_id} already exists")
        logger.info("order %s created for employee %s (%s points)", inserted, order.employee_id, order.total_points)
        return order.model_copy(update={"id": str(inserted), "created_at": data["created_at"], "updated_at": data["updated_at"]})

    def get(self, order_id: str) -> Order:
        _id = parse_id(order_id)
        doc = None
        if _id is not None:
            with store_errors("order read"):
                doc = self.collection.find_one({"_id": _id})
        if not doc:
            raise NotFound("Order not found")
        return Order.model_validate(with_id(doc))

    def find_by_request(self, employee_id: str, request_id: str) -> Optional[Order]:
        with store_errors("order read"):
            doc = self.collection.find_one({"employee_id": employee_id, "request_id": request_id})
        return Order.model_validate(with_id(doc)) if doc else None

    def list_by_employee(self, employee_id: str) -> List[Order]:
        return self._list({"employee_id": employee_id})

    def list_by_tenant(self, tenant_id: str, status: Optional[str] = None) -> List[Order]:
        query = {"tenant_id": tenant_id}
        if status:
            query["status"] = status
        return self._list(query)

    def list_by_status(self, status: Optional[str] = None) -> List[Order]:
        return self._list({"status": status} if status else {})

    def update_status(self, order_id: str, new_status: str) -> Order:
        order = self.get(order_id)
        if TRANSITIONS.get(order.status) != new_status:
            raise InvalidTransition(f"Cannot move order from {order.status} to {new_status}")
        at = now()
        with store_errors("order status update"):
            res = self.collection.update_one(
                {"_id": parse_id(order_id), "status": order.status},
                {
                    "$set": {"status": new_status, "updated_at": at},
                    "$push": {"status_history": {"status": new_status, "at": at}},
                },
            )
        if res.modified_count != 1:
            raise ConcurrentModification("Order status changed concurrently")
        logger.info("order %s moved %s -> %s", order_id, order.status, new_status)
        return self.get(order_id)

    def _list(self, query: dict) -> List[Order]:
        with store_errors("order list"):
            docs = list(self.collection.find(query).sort("created_at", -1))
        return [Order.model_validate(with_id(d)) for d in docs]


class OrderService:
    def __init__(self, db: Database, catalog: CatalogSelector, ledger: PointsLedger, orders: OrderRepository):
        self.db = db
        self.catalog = catalog
        self.ledger = ledger
        self.orders = orders

    def checkout(
        self,
        employee_id: str,
        cart: Cart,
        shipping_address: Optional[ShippingAddress],
        request_id: Optional[str] = None,
    ) -> Order:
        """Place an order for the cart. Replaying a request_id returns the original order."""
        request_id = request_id or uuid.uuid4().hex
        for attempt in range(CHECKOUT_ATTEMPTS):
            try:
                return self._checkout(employee_id, cart, shipping_address, request_id)
            except ConcurrentModification:
                logger.warning("checkout %s for employee %s lost a race (attempt %s)", request_id, employee_id, attempt + 1)
        raise StoreUnavailable("Could not place the order right now, please try again")

    def _checkout(self, employee_id, cart, shipping_address, request_id) -> Order:
        employee = self._employee(employee_id)
        existing = self.orders.find_by_request(employee.id, request_id)
        if existing:
            logger.info("checkout %s already committed as order %s", request_id, existing.id)
            return existing
        if cart.is_empty:
            raise EmptyCart()
        address = shipping_address or ShippingAddress()
        missing = [f for f in REQUIRED_ADDRESS_FIELDS if not (getattr(address, f) or "").strip()]
        if missing:
            raise IncompleteAddress(missing)

        items = self._price(employee.tenant_id, cart)
        at = now()
        order = Order(
            employee_id=employee.id,
            tenant_id=employee.tenant_id,
            request_id=request_id,
            items=items,
            total_points=sum(i.point_cost * i.quantity for i in items),
            shipping_address=address,
            status="pending",
            status_history=[{"status": "pending", "at": at}],
        )
        return self._commit(order, items)

    def _employee(self, employee_id: str) -> Employee:
        _id = parse_id(employee_id)
        doc = None
        if _id is not None:
            with store_errors("employee read"):
                doc = self.db["employee"].find_one({"_id": _id})
        if not doc:
            raise NotFound("Employee not found")
        return Employee.model_validate(with_id(doc))

    def _price(self, tenant_id: str, cart: Cart) -> List[OrderItem]:
        """Line items priced from the live catalog, never from the cart's copies."""
        visible = {p.id: p for p in self.catalog.list_visible_products(tenant_id)}
        items = []
        for line in cart.lines:
            product = visible.get(line.product.id)
            if product is None:
                raise CatalogMismatch(line.product.id, "is no longer available")
            if product.stock is not None and product.stock < line.quantity:
                raise CatalogMismatch(product.id, f"has only {product.stock} left in stock")
            items.append(OrderItem(product_id=product.id, name=product.name, point_cost=product.point_cost, quantity=line.quantity))
        return items

    def _commit(self, order: Order, items: List[OrderItem]) -> Order:
        undo: List[Callable[[], object]] = []
        if order.total_points > 0:
            try:
                self.ledger.debit(order.employee_id, order.total_points)
            except InsufficientFunds:
                # a duplicate submit with the same request id may have spent the points on this very order
                winner = self.orders.find_by_request(order.employee_id, order.request_id)
                if winner is None:
                    raise
                logger.info("checkout %s committed concurrently as order %s", order.request_id, winner.id)
                return winner
            undo.append(partial(self.ledger.refund, order.employee_id, order.total_points))
        try:
            for item in items:
                if self._take_stock(item):
                    undo.append(partial(self._return_stock, item))
            return self.orders.create(order)
        except Conflict:
            # a duplicate submit with the same request id committed first
            self._rollback(order, undo)
            winner = self.orders.find_by_request(order.employee_id, order.request_id)
            if winner is None:
                raise
            return winner
        except Exception:
            self._rollback(order, undo)
            raise

    def _take_stock(self, item: OrderItem) -> bool:
        """Decrement tracked stock. False when the product has unlimited stock."""
        _id = parse_id(item.product_id)
        with store_errors("stock update"):
            doc = self.db["product"].find_one({"_id": _id}, {"stock": 1})
            if doc is None:
                raise CatalogMismatch(item.product_id, "is no longer available")
            if doc.get("stock") is None:
                return False
            res = self.db["product"].update_one(
                {"_id": _id, "stock": {"$gte": item.quantity}},
                {"$inc": {"stock": -item.quantity}, "$set": {"updated_at": now()}},
            )
        if res.modified_count != 1:
            raise CatalogMismatch(item.product_id, "is out of stock")
        return True

    def _return_stock(self, item: OrderItem) -> None:
        with store_errors("stock restore"):
            self.db["product"].update_one(
                {"_id": parse_id(item.product_id)},
                {"$inc": {"stock": item.quantity}, "$set": {"updated_at": now()}},
            )

    def _rollback(self, order: Order, undo: List[Callable[[], object]]) -> None:
        for step in reversed(undo):
            try:
                step()
            except Exception:
                logger.exception("compensation failed for checkout %s of employee %s", order.request_id, order.employee_id)
        if undo:
            logger.info("rolled back checkout %s of employee %s", order.request_id, order.employee_id)
