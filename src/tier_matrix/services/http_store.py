"""
HTTP Tier Store - TierStore adapter for the Tier Matrix REST API.
"""
import logging
from typing import Any, Optional

import httpx

from ..engine.models import Tier, Variant
from .tier_store import NotFoundError, TierStore, TierStoreError

LOGGER = logging.getLogger(__name__)


class HttpTierStore(TierStore):
    """
    Talks to ``/services/{id}/...`` over an httpx AsyncClient.

    Transport and HTTP errors surface as TierStoreError (NotFoundError on 404);
    retries are left to the caller.
    """

    def __init__(self, base_url: str, client: Optional[httpx.AsyncClient] = None, timeout: float = 20.0):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def aclose(self):
        await self._client.aclose()

    async def __aenter__(self) -> 'HttpTierStore':
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            try:
                detail = e.response.json().get("detail", e.response.text)
            except ValueError:
                detail = e.response.text
            LOGGER.warning(f"{method} {path} failed with status {e.response.status_code}: {detail}")
            if e.response.status_code == 404:
                raise NotFoundError(str(detail)) from e
            raise TierStoreError(f"{method} {path} failed ({e.response.status_code}): {detail}") from e
        except httpx.RequestError as e:
            LOGGER.warning(f"Network error on {method} {path}: {e}")
            raise TierStoreError(f"{method} {path} failed: {e}") from e
        return response.json() if response.content else None

    # ---- reads ---------------------------------------------------------

    async def list_variants(self, service_id: int) -> list[Variant]:
        data = await self._request("GET", f"/services/{service_id}/variants")
        return [Variant.from_payload(v) for v in data]

    async def list_tiers_for_variant(self, service_id: int, variant_id: int) -> list[Tier]:
        data = await self._request("GET", f"/services/{service_id}/variants/{variant_id}/tiers")
        return [Tier.from_payload(t) for t in data]

    async def list_all_tiers(self, service_id: int) -> dict[int, list[Tier]]:
        data = await self._request("GET", f"/services/{service_id}/variants/tiers/all")
        return {int(vid): [Tier.from_payload(t) for t in tiers] for vid, tiers in data.items()}

    # ---- variant writes ------------------------------------------------

    async def create_variant(self, service_id, display_name, parameters=None, sort_order=0, is_active=True) -> Variant:
        payload = Variant(
            id=0, display_name=display_name, parameters=parameters, sort_order=sort_order, is_active=is_active
        ).to_payload()
        data = await self._request("POST", f"/services/{service_id}/variants", json=payload)
        return Variant.from_payload(data)

    async def update_variant(self, service_id, variant_id, display_name=None, parameters=None) -> Variant:
        payload = {}
        if display_name is not None:
            payload["displayName"] = display_name
        if parameters is not None:
            payload["parameters"] = dict(parameters)
        data = await self._request("PUT", f"/services/{service_id}/variants/{variant_id}", json=payload)
        return Variant.from_payload(data)

    async def delete_variant(self, service_id, variant_id) -> None:
        await self._request("DELETE", f"/services/{service_id}/variants/{variant_id}")

    # ---- tier writes ---------------------------------------------------

    async def create_tier(self, service_id, variant_id, min_quantity, price, is_active=True) -> Tier:
        payload = Tier(min_quantity=min_quantity, price=price, is_active=is_active).to_payload()
        data = await self._request("POST", f"/services/{service_id}/variants/{variant_id}/tiers", json=payload)
        return Tier.from_payload(data)

    async def update_tier(self, service_id, variant_id, tier_id, min_quantity=None, price=None, is_active=None) -> Tier:
        payload: dict[str, Any] = {}
        if min_quantity is not None:
            payload["minQuantity"] = int(min_quantity)
        if price is not None:
            payload["price"] = str(price)
        if is_active is not None:
            payload["isActive"] = is_active
        data = await self._request(
            "PUT", f"/services/{service_id}/variants/{variant_id}/tiers/{tier_id}", json=payload
        )
        return Tier.from_payload(data)

    async def delete_tier(self, service_id, tier_id) -> None:
        await self._request("DELETE", f"/services/{service_id}/tiers/{tier_id}")
