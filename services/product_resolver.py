"""
Product Resolver
Batch-resolves product handles/titles from an import to canonical Shopify product ids.

The importer issues exactly one resolve() per import. Any lookup failure degrades to
"unresolved" for the affected identifiers; nothing here raises into the import.
"""
from __future__ import annotations

from typing import Dict, List, Optional, Sequence
import logging

import httpx

from services.review_normalizer import ProductReference, ProductRefKind
from settings import (
    HANDLE_LOOKUP_LIMIT,
    TITLE_LOOKUP_LIMIT,
    SHOPIFY_API_VERSION,
    SHOPIFY_HTTP_TIMEOUT,
)
from utils import retry_async

logger = logging.getLogger(__name__)

PRODUCTS_BY_HANDLE_QUERY = """
query getProductsByHandle($query: String!) {
  products(first: 250, query: $query) {
    nodes { id handle }
  }
}
"""

PRODUCTS_BY_TITLE_QUERY = """
query getProductsByTitle($query: String!) {
  products(first: 250, query: $query) {
    nodes { id title }
  }
}
"""


class ProductLookupError(Exception):
    """Catalog answered, but not with usable data."""


def _unique(values: Sequence[str]) -> List[str]:
    seen = set()
    out = []
    for v in values:
        if v and v not in seen:
            seen.add(v)
            out.append(v)
    return out


def _quote_search_term(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def build_search_query(field: str, values: Sequence[str]) -> str:
    """handle:a OR handle:b ... (titles are quoted since they contain spaces)."""
    terms = []
    for v in values:
        term = _quote_search_term(v) if field == "title" else v
        terms.append(f"{field}:{term}")
    return " OR ".join(terms)


class ProductResolver:
    """Resolver contract: identifiers in, {handle-or-title: product id} out."""

    async def resolve(self, identifiers: Sequence[ProductReference]) -> Dict[str, str]:
        raise NotImplementedError


class NullProductResolver(ProductResolver):
    """Used when no Admin API credentials are available; every reference stays unresolved."""

    async def resolve(self, identifiers: Sequence[ProductReference]) -> Dict[str, str]:
        if identifiers:
            logger.info("Product resolver disabled; %d identifiers left unresolved", len(identifiers))
        return {}


class ShopifyProductResolver(ProductResolver):
    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        api_version: str = SHOPIFY_API_VERSION,
        timeout: float = SHOPIFY_HTTP_TIMEOUT,
        handle_limit: int = HANDLE_LOOKUP_LIMIT,
        title_limit: int = TITLE_LOOKUP_LIMIT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.shop_domain = shop_domain
        self.access_token = access_token
        self.api_version = api_version
        self.timeout = timeout
        self.handle_limit = handle_limit
        self.title_limit = title_limit
        self._client = client

    @property
    def endpoint(self) -> str:
        return f"https://{self.shop_domain}/admin/api/{self.api_version}/graphql.json"

    async def resolve(self, identifiers: Sequence[ProductReference]) -> Dict[str, str]:
        handles = _unique([r.value for r in identifiers if r.kind == ProductRefKind.HANDLE])
        titles = _unique([r.value for r in identifiers if r.kind == ProductRefKind.TITLE])
        if len(handles) > self.handle_limit or len(titles) > self.title_limit:
            logger.warning(
                "Product lookup capped shop=%s handles=%d/%d titles=%d/%d",
                self.shop_domain, min(len(handles), self.handle_limit), len(handles),
                min(len(titles), self.title_limit), len(titles),
            )
        handles = handles[: self.handle_limit]
        titles = titles[: self.title_limit]

        product_map: Dict[str, str] = {}
        if not handles and not titles:
            return product_map

        if self._client is not None:
            await self._resolve_into(self._client, handles, titles, product_map)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                await self._resolve_into(client, handles, titles, product_map)

        logger.info(
            "Product lookup shop=%s handles=%d titles=%d resolved=%d",
            self.shop_domain, len(handles), len(titles), len(product_map),
        )
        return product_map

    async def _resolve_into(
        self,
        client: httpx.AsyncClient,
        handles: List[str],
        titles: List[str],
        product_map: Dict[str, str],
    ) -> None:
        if handles:
            nodes = await self._safe_lookup(client, PRODUCTS_BY_HANDLE_QUERY, build_search_query("handle", handles))
            for node in nodes:
                if node.get("handle") and node.get("id"):
                    product_map[node["handle"]] = node["id"]
        if titles:
            nodes = await self._safe_lookup(client, PRODUCTS_BY_TITLE_QUERY, build_search_query("title", titles))
            for node in nodes:
                if node.get("title") and node.get("id"):
                    product_map[node["title"]] = node["id"]

    async def _safe_lookup(self, client: httpx.AsyncClient, query: str, search: str) -> List[dict]:
        try:
            return await self._lookup(client, query, search)
        except Exception as e:
            logger.error(
                "Product lookup failed shop=%s search=%r: %s: %s",
                self.shop_domain, search[:200], type(e).__name__, e,
            )
            return []

    @retry_async(max_retries=2, base_delay=0.5)
    async def _lookup(self, client: httpx.AsyncClient, query: str, search: str) -> List[dict]:
        response = await client.post(
            self.endpoint,
            json={"query": query, "variables": {"query": search}},
            headers={
                "X-Shopify-Access-Token": self.access_token,
                "Content-Type": "application/json",
            },
        )
        response.raise_for_status()
        payload = response.json()
        if payload.get("errors"):
            raise ProductLookupError(str(payload["errors"])[:300])
        products = (payload.get("data") or {}).get("products") or {}
        return list(products.get("nodes") or [])


def build_product_resolver(shop_domain: str, access_token: Optional[str]) -> ProductResolver:
    if access_token and access_token.strip():
        return ShopifyProductResolver(shop_domain, access_token.strip())
    return NullProductResolver()
