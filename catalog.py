"""
Catalog Selector

Resolves the slice of the global product catalog that a tenant exposes on its
branded sub-page. Read-only: nothing in here writes to the store.
"""

import logging
from typing import List, Optional

from pymongo.database import Database

from database import parse_id, store_errors, with_id
from errors import NotFound
from schemas import Product, Tenant

logger = logging.getLogger(__name__)


class CatalogSelector:
    def __init__(self, db: Database):
        self.db = db

    def get_tenant(self, tenant_id: str) -> Tenant:
        _id = parse_id(tenant_id)
        doc = None
        if _id is not None:
            with store_errors("tenant lookup"):
                doc = self.db["tenant"].find_one({"_id": _id})
        if not doc:
            raise NotFound("Tenant not found")
        return Tenant.model_validate(with_id(doc))

    def get_tenant_by_slug(self, slug: str) -> Tenant:
        """Approved tenant behind a sub-page slug. Pending and rejected tenants are hidden."""
        with store_errors("tenant lookup"):
            doc = self.db["tenant"].find_one({"slug": slug, "status": "approved"})
        if not doc:
            raise NotFound("Company not found")
        return Tenant.model_validate(with_id(doc))

    def list_visible_products(self, tenant_id: str) -> List[Product]:
        tenant = self.get_tenant(tenant_id)
        return self._visible(tenant.selected_product_ids)

    def resolve(self, tenant_id: str, product_id: str) -> Optional[Product]:
        """The product if the tenant currently exposes it as purchasable, else None."""
        tenant = self.get_tenant(tenant_id)
        if product_id not in tenant.selected_product_ids:
            return None
        found = self._visible([product_id])
        return found[0] if found else None

    def _visible(self, product_ids: List[str]) -> List[Product]:
        ids = [i for i in (parse_id(p) for p in product_ids) if i is not None]
        if not ids:
            return []
        with store_errors("catalog read"):
            docs = list(self.db["product"].find({"_id": {"$in": ids}, "active": True}))
        by_id = {str(d["_id"]): Product.model_validate(with_id(d)) for d in docs}
        # keep the tenant's selection order
        products = [by_id[p] for p in product_ids if p in by_id]
        return [p for p in products if p.in_stock]
