"""
Order lifecycle and checkout.

Statuses only move forward: pending -> confirmed -> preparing -> ready ->
out_for_delivery -> delivered. An order can be cancelled from any state before
delivered. Delivered and cancelled orders never change again.
"""
import logging
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from catalog import CatalogService, is_visible
from database import MalformedDocument, MongoStore, parse_document, parse_documents
from schemas import DeliveryAddress, Order, OrderItem, Vendor
from settings import Settings

logger = logging.getLogger(__name__)

ORDER_STATUS_SEQUENCE = ["pending", "confirmed", "preparing", "ready", "out_for_delivery", "delivered"]
TERMINAL_STATUSES = {"delivered", "cancelled"}


class InvalidTransition(ValueError):
    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move order from {current} to {target}")
        self.current = current
        self.target = target


class CheckoutError(ValueError):
    pass


class CartLine(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)


def next_status(status: str) -> Optional[str]:
    if status in TERMINAL_STATUSES or status not in ORDER_STATUS_SEQUENCE:
        return None
    return ORDER_STATUS_SEQUENCE[ORDER_STATUS_SEQUENCE.index(status) + 1]


def check_transition(current: str, target: str) -> None:
    if current in TERMINAL_STATUSES:
        raise InvalidTransition(current, target)
    if target == "cancelled":
        return
    if next_status(current) != target:
        raise InvalidTransition(current, target)


def order_number(order_id: str) -> str:
    return order_id[:8].upper()


def delivery_fee(option: str, settings: Settings) -> float:
    return settings.express_delivery_fee if option == "express" else settings.standard_delivery_fee


def quote(items: List[OrderItem], option: str, settings: Settings) -> Dict[str, float]:
    subtotal = round(sum(i.price * i.quantity for i in items), 2)
    fee = delivery_fee(option, settings) if subtotal > 0 else 0.0
    return {"subtotal": subtotal, "delivery_fee": fee, "total": round(subtotal + fee, 2)}


class OrderService:
    def __init__(self, store: MongoStore, catalog: CatalogService, settings: Settings):
        self.store = store
        self.catalog = catalog
        self.settings = settings

    def get(self, order_id: str) -> Optional[Order]:
        doc = self.store.find_by_id("order", order_id)
        if not doc:
            return None
        try:
            return parse_document(Order, doc, "order")
        except MalformedDocument:
            logger.warning("Order %s is malformed, treating as not found", order_id)
            return None

    def _vendor(self, vendor_id: str, cache: Dict[str, Optional[Vendor]]) -> Optional[Vendor]:
        if vendor_id not in cache:
            doc = self.store.find_by_id("vendor", vendor_id)
            try:
                cache[vendor_id] = parse_document(Vendor, doc, "vendor") if doc else None
            except MalformedDocument:
                logger.warning("Vendor %s is malformed, treating as unavailable", vendor_id)
                cache[vendor_id] = None
        return cache[vendor_id]

    def build_items(self, lines: List[CartLine], pincode: str) -> List[OrderItem]:
        if not lines:
            raise CheckoutError("Order must contain at least one item")
        vendors: Dict[str, Optional[Vendor]] = {}
        items = []
        for line in lines:
            product = self.catalog.get_product(line.product_id)
            if product is None:
                raise CheckoutError(f"Product {line.product_id} not found")
            if not is_visible(product, pincode):
                raise CheckoutError(f"{product.name} is not deliverable to {pincode}")
            vendor = self._vendor(product.vendor_id, vendors)
            if vendor is None or vendor.status != "active":
                raise CheckoutError(f"{product.name} is no longer available")
            if not vendor.is_open:
                raise CheckoutError(f"{vendor.name} is closed right now")
            if product.stock < line.quantity:
                raise CheckoutError(f"Only {product.stock} of {product.name} left")
            items.append(OrderItem(
                product_id=product.id,
                vendor_id=product.vendor_id,
                name=product.name,
                price=product.price,
                quantity=line.quantity,
            ))
        return items

    def place_order(self, user_id: str, lines: List[CartLine], address: DeliveryAddress,
                    delivery_option: str = "standard", payment_method: str = "cod") -> Order:
        items = self.build_items(lines, address.pincode)
        totals = quote(items, delivery_option, self.settings)
        order = Order(
            user_id=user_id,
            items=items,
            address=address,
            delivery_option=delivery_option,
            payment_method=payment_method,
            payment_status="pending",
            order_status="pending",
            **totals,
        )
        order.id = self.store.create_document("order", order)
        logger.info("Order %s placed by %s (%d items)", order.id, user_id, len(items))
        return order

    def transition(self, order: Order, target: str, **changes) -> Order:
        check_transition(order.order_status, target)
        # the status filter makes a racing transition fail instead of overwrite
        self.store.update_document(
            "order", order.id, {"order_status": target, **changes}, expected={"order_status": order.order_status}
        )
        logger.info("Order %s: %s -> %s", order.id, order.order_status, target)
        return order.model_copy(update={"order_status": target, **changes})

    def advance(self, order: Order) -> Order:
        target = next_status(order.order_status)
        if target is None:
            raise InvalidTransition(order.order_status, "next")
        return self.transition(order, target)

    def cancel(self, order: Order) -> Order:
        return self.transition(order, "cancelled")

    def for_user(self, user_id: str) -> List[Order]:
        docs = self.store.get_documents("order", {"user_id": user_id}, sort=[("created_at", -1)])
        return parse_documents(Order, docs, "order")

    def for_vendor(self, vendor_id: str) -> List[Order]:
        docs = self.store.get_documents("order", {"items.vendor_id": vendor_id}, sort=[("created_at", -1)])
        return parse_documents(Order, docs, "order")
