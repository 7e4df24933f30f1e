"""
Variants API - FastAPI router exposing the tier store and the rendered matrix.
"""
from decimal import Decimal
from typing import Any, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from ..config.settings import get_settings
from ..engine.edit_session import LocalEditSession
from ..engine.models import Tier, Variant
from ..services.tier_store import NotFoundError, TierStoreError
from .state import get_store

router = APIRouter(prefix="/services/{service_id}", tags=["variants"])


# Pydantic models for API (camelCase on the wire)
class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class VariantCreate(_WireModel):
    """Request model for creating a variant."""
    display_name: str = Field(alias="displayName")
    parameters: dict[str, Any] = Field(default_factory=dict)
    sort_order: int = Field(0, alias="sortOrder")
    is_active: bool = Field(True, alias="isActive")


class VariantUpdate(_WireModel):
    """Request model for updating a variant."""
    display_name: Optional[str] = Field(None, alias="displayName")
    parameters: Optional[dict[str, Any]] = None


class VariantResponse(_WireModel):
    """Response model for a variant."""
    id: int
    display_name: str = Field(alias="displayName")
    parameters: dict[str, Any]
    sort_order: int = Field(alias="sortOrder")
    is_active: bool = Field(alias="isActive")


class TierCreate(_WireModel):
    """Request model for creating a tier."""
    min_quantity: int = Field(alias="minQuantity", ge=1)
    price: Decimal = Field(ge=0)
    is_active: bool = Field(True, alias="isActive")


class TierUpdate(_WireModel):
    """Request model for updating a tier."""
    min_quantity: Optional[int] = Field(None, alias="minQuantity", ge=1)
    price: Optional[Decimal] = Field(None, ge=0)
    is_active: Optional[bool] = Field(None, alias="isActive")


class TierResponse(_WireModel):
    """Response model for a tier; price travels as a decimal string."""
    id: int
    min_quantity: int = Field(alias="minQuantity")
    price: str
    is_active: bool = Field(alias="isActive")


class ColumnResponse(_WireModel):
    min_quantity: int = Field(alias="minQuantity")
    max_quantity: Optional[int] = Field(alias="maxQuantity")
    label: str


class MatrixRow(_WireModel):
    id: int
    display_name: str = Field(alias="displayName")
    level: int
    group: str
    prices: dict[str, Optional[str]]


class MatrixResponse(_WireModel):
    """The rendered matrix: shared columns and hierarchy-ordered rows."""
    service_id: int = Field(alias="serviceId")
    columns: list[ColumnResponse]
    rows: list[MatrixRow]
    orphans: list[int]


def _variant_response(variant: Variant) -> VariantResponse:
    return VariantResponse(
        id=variant.id,
        display_name=variant.display_name,
        parameters=variant.wire_parameters(),
        sort_order=variant.sort_order,
        is_active=variant.is_active,
    )


def _tier_response(tier: Tier) -> TierResponse:
    return TierResponse(
        id=tier.id,
        min_quantity=tier.min_quantity,
        price=str(tier.price),
        is_active=tier.is_active,
    )


def _raise_http(e: Exception):
    if isinstance(e, NotFoundError):
        raise HTTPException(status_code=404, detail=str(e))
    raise HTTPException(status_code=400, detail=str(e))


# Endpoints

@router.get("/variants", response_model=list[VariantResponse])
async def list_variants(service_id: int):
    """List the variants of a service ordered by sort order."""
    variants = await get_store().list_variants(service_id)
    return [_variant_response(v) for v in variants]


@router.post("/variants", response_model=VariantResponse)
async def create_variant(service_id: int, data: VariantCreate):
    """Create a variant."""
    try:
        variant = await get_store().create_variant(
            service_id,
            display_name=data.display_name,
            parameters=data.parameters,
            sort_order=data.sort_order,
            is_active=data.is_active,
        )
    except (TierStoreError, ValueError) as e:
        _raise_http(e)
    return _variant_response(variant)


@router.put("/variants/{variant_id}", response_model=VariantResponse)
async def update_variant(service_id: int, variant_id: int, data: VariantUpdate):
    """Rename a variant and/or replace its parameters."""
    try:
        variant = await get_store().update_variant(
            service_id, variant_id, display_name=data.display_name, parameters=data.parameters
        )
    except (TierStoreError, ValueError) as e:
        _raise_http(e)
    return _variant_response(variant)


@router.delete("/variants/{variant_id}")
async def delete_variant(service_id: int, variant_id: int):
    """Delete a variant together with its tiers; child variants are kept."""
    try:
        await get_store().delete_variant(service_id, variant_id)
    except TierStoreError as e:
        _raise_http(e)
    return {"success": True, "message": f"Variant {variant_id} deleted"}


@router.get("/variants/tiers/all", response_model=dict[int, list[TierResponse]])
async def list_all_tiers(service_id: int):
    """Tiers of every variant of the service, keyed by variant id."""
    all_tiers = await get_store().list_all_tiers(service_id)
    return {vid: [_tier_response(t) for t in tiers] for vid, tiers in all_tiers.items()}


@router.get("/variants/{variant_id}/tiers", response_model=list[TierResponse])
async def list_tiers(service_id: int, variant_id: int):
    """Tiers of one variant ordered by minimum quantity."""
    try:
        tiers = await get_store().list_tiers_for_variant(service_id, variant_id)
    except TierStoreError as e:
        _raise_http(e)
    return [_tier_response(t) for t in tiers]


@router.post("/variants/{variant_id}/tiers", response_model=TierResponse)
async def create_tier(service_id: int, variant_id: int, data: TierCreate):
    """Create a tier for a variant."""
    try:
        tier = await get_store().create_tier(
            service_id, variant_id, data.min_quantity, data.price, is_active=data.is_active
        )
    except (TierStoreError, ValueError) as e:
        _raise_http(e)
    return _tier_response(tier)


@router.put("/variants/{variant_id}/tiers/{tier_id}", response_model=TierResponse)
async def update_tier(service_id: int, variant_id: int, tier_id: int, data: TierUpdate):
    """Update a tier's boundary, price or active flag."""
    try:
        tier = await get_store().update_tier(
            service_id,
            variant_id,
            tier_id,
            min_quantity=data.min_quantity,
            price=data.price,
            is_active=data.is_active,
        )
    except (TierStoreError, ValueError) as e:
        _raise_http(e)
    return _tier_response(tier)


@router.delete("/tiers/{tier_id}")
async def delete_tier(service_id: int, tier_id: int):
    """Delete a tier."""
    try:
        await get_store().delete_tier(service_id, tier_id)
    except TierStoreError as e:
        _raise_http(e)
    return {"success": True, "message": f"Tier {tier_id} deleted"}


@router.get("/matrix", response_model=MatrixResponse)
async def get_matrix(service_id: int):
    """
    Render the service's matrix: shared columns plus one row per variant in
    hierarchy order. A cell is null where the variant has no tier of its own.
    """
    settings = get_settings()
    session = await LocalEditSession.open(
        get_store(), service_id, discriminating_keys=settings.discriminating_keys
    )
    columns = session.common_ranges

    rows = []
    for key, group in session.hierarchy.items():
        for level, variant in group.rows():
            prices = {}
            for col in columns:
                tier = variant.tier_at(col.min_qty)
                prices[str(col.min_qty)] = str(tier.price) if tier else None
            rows.append(MatrixRow(
                id=variant.id,
                display_name=variant.display_name,
                level=int(level),
                group=key,
                prices=prices,
            ))

    return MatrixResponse(
        service_id=service_id,
        columns=[
            ColumnResponse(min_quantity=c.min_qty, max_quantity=c.max_qty, label=c.label)
            for c in columns
        ],
        rows=rows,
        orphans=[v.id for v in session.orphans()],
    )
