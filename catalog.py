"""
Pincode-scoped catalog queries.

A product is visible to a customer only while it is active and the customer's
pincode is one of its delivery areas. Categories are derived from the visible
products, never looked up on their own.
"""
import logging
from typing import List, Optional

from database import MalformedDocument, MongoStore, parse_document, parse_documents
from schemas import Product, Vendor

logger = logging.getLogger(__name__)


def is_visible(product: Product, pincode: str) -> bool:
    return bool(pincode) and product.status == "active" and pincode in product.pincodes


class CatalogService:
    def __init__(self, store: MongoStore):
        self.store = store

    def _parse_all(self, model, collection: str, docs) -> list:
        parsed = parse_documents(model, docs, collection)
        parsed.sort(key=lambda item: item.id or "")
        return parsed

    def products_for_pincode(self, pincode: Optional[str]) -> List[Product]:
        if not pincode:
            return []
        docs = self.store.get_documents("product", {"pincodes": pincode, "status": "active"})
        products = [p for p in self._parse_all(Product, "product", docs) if is_visible(p, pincode)]
        logger.info("Found %d products for pincode %s", len(products), pincode)
        return products

    def categories_for_pincode(self, pincode: Optional[str]) -> List[str]:
        return sorted({p.category for p in self.products_for_pincode(pincode)})

    def products_for_category(self, category: str, pincode: Optional[str]) -> List[Product]:
        if not pincode or not category:
            return []
        docs = self.store.get_documents(
            "product", {"category": category, "pincodes": pincode, "status": "active"}
        )
        return [p for p in self._parse_all(Product, "product", docs) if is_visible(p, pincode)]

    def get_product(self, product_id: str) -> Optional[Product]:
        doc = self.store.find_by_id("product", product_id)
        if not doc:
            return None
        try:
            return parse_document(Product, doc, "product")
        except MalformedDocument as e:
            logger.warning("Product %s is malformed, treating as not found", e.doc_id)
            return None

    def vendors_for_pincode(self, pincode: Optional[str]) -> List[Vendor]:
        if not pincode:
            return []
        docs = self.store.get_documents("vendor", {"pincodes": pincode, "status": "active"})
        return self._parse_all(Vendor, "vendor", docs)
