"""
Order modification Pydantic schemas for API request/response validation.

This module defines request schemas for price locks, amendments, approvals,
shipments and backorders, and response schemas mirroring the dicts returned
by the order modification service. Money is always integer cents.
"""

from datetime import date, datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from pos_backoffice.services.order_modifications.enums import AmendmentType, ChangeType
from pos_backoffice.services.order_modifications.fulfillment import (
    BackorderLine,
    ShipmentLine,
)
from pos_backoffice.services.order_modifications.impact import ItemChange


# ============================================================================
# Request Schemas
# ============================================================================


class PriceLockRequest(BaseModel):
    """Lock or unlock quote-time pricing for an order."""

    enabled: bool = Field(..., description="Whether quote prices are honored")
    until: Optional[datetime] = Field(
        None,
        description="Optional lock expiry; ignored when disabling",
    )


class AddItemChange(BaseModel):
    """Add a product that is not yet on the order."""

    model_config = ConfigDict(str_strip_whitespace=True)

    kind: Literal["add"]
    product_id: int = Field(..., gt=0, description="Catalog product")
    quantity: int = Field(..., gt=0, description="Units to add")
    override_price_cents: Optional[int] = Field(
        None, ge=0, description="Explicit unit price"
    )
    notes: Optional[str] = Field(None, max_length=500)

    def to_change(self) -> ItemChange:
        return ItemChange(
            kind=ChangeType.ADD,
            product_id=self.product_id,
            quantity=self.quantity,
            override_price_cents=self.override_price_cents,
            notes=self.notes,
        )


class RemoveItemChange(BaseModel):
    """Remove the unshipped remainder of an order line."""

    model_config = ConfigDict(str_strip_whitespace=True)

    kind: Literal["remove"]
    product_id: int = Field(..., gt=0)
    reason: Optional[str] = Field(None, max_length=500)

    def to_change(self) -> ItemChange:
        return ItemChange(
            kind=ChangeType.REMOVE,
            product_id=self.product_id,
            notes=self.reason,
        )


class ModifyItemChange(BaseModel):
    """Set a new quantity (and optionally price) on an existing line."""

    model_config = ConfigDict(str_strip_whitespace=True)

    kind: Literal["modify"]
    product_id: int = Field(..., gt=0)
    quantity: int = Field(..., gt=0, description="New ordered quantity")
    override_price_cents: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = Field(None, max_length=500)

    def to_change(self) -> ItemChange:
        return ItemChange(
            kind=ChangeType.MODIFY,
            product_id=self.product_id,
            quantity=self.quantity,
            override_price_cents=self.override_price_cents,
            notes=self.notes,
        )


ItemChangeRequest = Annotated[
    Union[AddItemChange, RemoveItemChange, ModifyItemChange],
    Field(discriminator="kind"),
]


class AmendmentCreateRequest(BaseModel):
    """Request to propose a change to an order."""

    model_config = ConfigDict(str_strip_whitespace=True)

    amendment_type: AmendmentType = Field(
        AmendmentType.ITEM_MODIFIED,
        description="Kind of amendment being recorded",
    )
    changes: list[ItemChangeRequest] = Field(
        default_factory=list,
        max_length=200,
        description="Line changes, at most one per product",
    )
    reason: Optional[str] = Field(None, max_length=1000)
    use_quote_prices: bool = Field(
        False,
        description="Price lines at quote prices even without a price lock",
    )

    @field_validator("changes")
    @classmethod
    def validate_unique_products(
        cls, v: list[ItemChangeRequest]
    ) -> list[ItemChangeRequest]:
        """Ensure each product appears once."""
        product_ids = [change.product_id for change in v]
        if len(product_ids) != len(set(product_ids)):
            raise ValueError("Each product may appear only once in a change set")
        return v

    def to_changes(self) -> list[ItemChange]:
        return [change.to_change() for change in self.changes]


class AmendmentApproveRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=1000)


class AmendmentRejectRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Rejection reason cannot be blank")
        return v.strip()


class ShipmentItemRequest(BaseModel):
    order_item_id: int = Field(..., gt=0)
    quantity_shipped: int = Field(..., gt=0)
    serial_numbers: Optional[list[str]] = Field(None, max_length=1000)

    @model_validator(mode="after")
    def validate_serial_numbers(self) -> "ShipmentItemRequest":
        """Serial numbers cannot outnumber shipped units."""
        if self.serial_numbers and len(self.serial_numbers) > self.quantity_shipped:
            raise ValueError("More serial numbers than shipped units")
        return self

    def to_line(self) -> ShipmentLine:
        return ShipmentLine(
            order_item_id=self.order_item_id,
            quantity_shipped=self.quantity_shipped,
            serial_numbers=self.serial_numbers,
        )


class ShipmentCreateRequest(BaseModel):
    """Record a shipment of one or more order lines."""

    model_config = ConfigDict(str_strip_whitespace=True)

    items: list[ShipmentItemRequest] = Field(..., min_length=1)
    carrier: Optional[str] = Field(None, max_length=100)
    tracking_number: Optional[str] = Field(None, max_length=100)
    tracking_url: Optional[str] = Field(None, max_length=500)
    estimated_delivery: Optional[date] = None
    shipping_cost_cents: int = Field(0, ge=0)
    notes: Optional[str] = Field(None, max_length=1000)


class BackorderItemRequest(BaseModel):
    order_item_id: int = Field(..., gt=0)
    quantity: int = Field(..., gt=0)

    def to_line(self) -> BackorderLine:
        return BackorderLine(order_item_id=self.order_item_id, quantity=self.quantity)


class BackorderRequest(BaseModel):
    items: list[BackorderItemRequest] = Field(..., min_length=1)


# ============================================================================
# Response Schemas
# ============================================================================


class PriceLockResponse(BaseModel):
    order_id: int
    price_locked: bool = Field(..., description="Effective lock state")
    price_lock_flag: bool = Field(..., description="Stored lock flag")
    price_lock_until: Optional[datetime] = None


class OrderItemResponse(BaseModel):
    id: int
    product_id: int
    product_name: str
    product_sku: Optional[str] = None
    quantity: int
    unit_price_cents: int
    line_total_cents: int
    fulfillment_status: str
    quantity_fulfilled: int
    quantity_backordered: int
    quantity_cancelled: int


class OrderDetailItemResponse(OrderItemResponse):
    current_price_cents: Optional[int] = None
    quote_price_cents: Optional[int] = None
    has_price_change: bool = False


class QuoteSummaryResponse(BaseModel):
    id: int
    quote_number: str
    total_cents: int
    created_at: Optional[datetime] = None


class OrderDetailResponse(PriceLockResponse):
    """Order with lines, totals and quote comparison."""

    id: int
    order_number: str
    status: str
    subtotal_cents: int
    discount_cents: int
    tax_cents: int
    total_cents: int
    tax_province: Optional[str] = None
    version_number: int
    original_quote_id: Optional[int] = None
    quote_prices_honored: bool
    quote: Optional[QuoteSummaryResponse] = None
    items: list[OrderDetailItemResponse] = Field(default_factory=list)


class PriceOptionsResponse(BaseModel):
    order_id: int
    product_id: int
    product_name: str
    current_price_cents: Optional[int] = None
    quote_price_cents: Optional[int] = None
    order_price_cents: Optional[int] = None
    price_difference_cents: Optional[int] = None
    price_locked: bool
    recommended_price_cents: Optional[int] = None


class AmendmentCreatedResponse(BaseModel):
    amendment_id: int
    amendment_number: str
    order_id: int
    status: str
    requires_approval: bool
    previous_total_cents: int
    new_total_cents: int
    difference_cents: int
    item_changes: int


class AmendmentItemResponse(BaseModel):
    id: Optional[int] = None
    order_item_id: Optional[int] = None
    product_id: int
    product_name: str
    product_sku: Optional[str] = None
    change_type: str
    previous_quantity: int
    new_quantity: int
    quantity_change: int
    quote_price_cents: Optional[int] = None
    current_price_cents: Optional[int] = None
    applied_price_cents: int
    price_source: str
    line_difference_cents: int
    notes: Optional[str] = None


class AmendmentResponse(BaseModel):
    """Amendment with approval and application audit fields."""

    id: int
    amendment_number: str
    order_id: int
    amendment_type: str
    status: str
    reason: Optional[str] = None
    previous_total_cents: int
    new_total_cents: int
    difference_cents: int
    use_quote_prices: bool
    requires_approval: bool
    approval_threshold_cents: Optional[int] = None
    approval_notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    created_by: Optional[int] = None
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    applied_by: Optional[int] = None
    applied_at: Optional[datetime] = None
    resulting_version_id: Optional[int] = None
    created_at: Optional[datetime] = None
    item_count: int
    items: Optional[list[AmendmentItemResponse]] = None


class AmendmentAppliedResponse(BaseModel):
    success: bool
    amendment_id: int
    amendment_number: str
    order_id: int
    status: str
    previous_version: int
    new_version: int
    subtotal_cents: int
    tax_cents: int
    total_cents: int


class VersionResponse(BaseModel):
    id: int
    order_id: int
    version_number: int
    subtotal_cents: int
    discount_cents: int
    tax_cents: int
    total_cents: int
    item_count: int
    change_summary: Optional[str] = None
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    items: Optional[list[dict[str, Any]]] = None


class VersionComparisonResponse(BaseModel):
    order_id: int
    version_a: VersionResponse
    version_b: VersionResponse
    added: list[dict[str, Any]]
    removed: list[dict[str, Any]]
    modified: list[dict[str, Any]]
    total_difference_cents: int


class ShipmentItemResponse(BaseModel):
    order_item_id: int
    quantity_shipped: int
    serial_numbers: list[str] = Field(default_factory=list)


class ShipmentResponse(BaseModel):
    id: int
    shipment_number: str
    order_id: int
    carrier: Optional[str] = None
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    status: str
    shipped_at: Optional[datetime] = None
    estimated_delivery: Optional[date] = None
    shipping_cost_cents: int
    notes: Optional[str] = None
    created_by: Optional[int] = None
    items: list[ShipmentItemResponse] = Field(default_factory=list)


class ShipmentCreatedResponse(BaseModel):
    success: bool
    order_id: int
    shipment_id: int
    shipment_number: str
    units_shipped: int


class BackorderResponse(BaseModel):
    success: bool
    order_id: int
    lines_updated: int
    version_number: int


class FulfillmentSummaryResponse(BaseModel):
    order_id: int
    order_number: str
    total_items: int
    total_quantity: int
    fulfilled: int
    backordered: int
    cancelled: int
    pending: int
    fulfillment_percent: int
    status: Literal["pending", "partial", "complete"]
    items: list[OrderItemResponse] = Field(default_factory=list)
