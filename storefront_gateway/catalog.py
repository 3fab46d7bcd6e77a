"""
catalog.py — Product Catalog Queries

Read-only pass-through to the commerce platform's product projections. Listing and
search results get a fresh random id on each master variant, which the storefront
uses as a rendering key.
"""

import uuid
from typing import Any, Dict, List

from .clients import CommerceClient
from .errors import ValidationError


def _with_variant_key(product: Dict[str, Any]) -> Dict[str, Any]:
    master_variant = dict(product.get("masterVariant") or {})
    master_variant["id"] = str(uuid.uuid4())
    return {**product, "masterVariant": master_variant}


class CatalogService:
    def __init__(self, commerce: CommerceClient, search_limit: int = 20):
        self.commerce = commerce
        self.search_limit = search_limit

    async def fetch_products(self) -> List[Dict[str, Any]]:
        products = await self.commerce.list_products()
        return [_with_variant_key(product) for product in products]

    async def fetch_product_by_id(self, product_id: str) -> Dict[str, Any]:
        if not product_id:
            raise ValidationError("Product id is required")
        return await self.commerce.get_product(product_id)

    async def search_products(self, text: str) -> List[Dict[str, Any]]:
        """Fuzzy full-text search (English locale), capped at `search_limit` results."""
        products = await self.commerce.search_products(text or "", limit=self.search_limit, fuzzy=True)
        return [_with_variant_key(product) for product in products]

    async def fetch_suggestions(self, prefix: str) -> List[str]:
        if not prefix:
            raise ValidationError("A keyword is required for suggestions")
        return await self.commerce.suggest(prefix)
