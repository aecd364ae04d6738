"""Pydantic v2 response schemas for the public plan catalog."""

import uuid

from vistream.schemas.base import CamelModel


class PlanOut(CamelModel):
    """Plan details for display."""

    id: uuid.UUID
    name: str
    slug: str
    description: str
    price: str
    price_cents: int
    currency: str
    period: str
    features: list[str]
    highlight: bool
    order: int


class PlansListResponse(CamelModel):
    success: bool = True
    plans: list[PlanOut]
