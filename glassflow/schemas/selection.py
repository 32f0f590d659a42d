from __future__ import annotations
from decimal import Decimal
from pydantic import BaseModel, Field


class ShopPickIn(BaseModel):
    shop_id: str
    estimated_price: Decimal = Field(ge=0, max_digits=8, decimal_places=2)
    distance_km: float | None = Field(default=None, ge=0)


class ShopSelectionCreate(BaseModel):
    shops: list[ShopPickIn]


class ShopSelectionRead(BaseModel):
    """One shortlisted shop, flattened with the shop details a customer needs to choose."""
    shop_id: str
    priority_order: int
    estimated_price: Decimal
    distance_km: float | None = None
    shop_name: str = ""
    address: str = ""
    city: str = ""
    rating: float | None = None
    mobile_service: bool = False
    adas_calibration_capability: bool = False

    @classmethod
    def from_row(cls, row) -> "ShopSelectionRead":
        shop = row.shop
        return cls(
            shop_id=row.shop_id,
            priority_order=row.priority_order,
            estimated_price=row.estimated_price,
            distance_km=row.distance_km,
            shop_name=shop.name,
            address=shop.address,
            city=shop.city,
            rating=shop.rating,
            mobile_service=shop.mobile_service,
            adas_calibration_capability=shop.adas_calibration_capability,
        )


class SelectionRequest(BaseModel):
    """Customer action on a tracking token. Field formats are checked by the workflow engine."""
    tracking_token: str | None = None
    action: str
    shop_id: str | None = None
    appointment_date: str | None = None
    appointment_time: str | None = None
    reason: str = ""
