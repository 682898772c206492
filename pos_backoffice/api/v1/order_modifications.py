"""
Order modification API endpoints.

This module implements the FastAPI router for post-sale order changes:
order detail with quote comparison, price locks, amendments and their
approval workflow, version history, shipments, backorders and fulfillment
summaries. Service errors map to HTTP statuses in one place so every route
answers the same way for the same failure.
"""

from typing import Any, NoReturn, Optional

from fastapi import APIRouter, HTTPException, Query, status

from pos_backoffice.api.deps import CurrentActiveUser, ManagerUser, ModificationService
from pos_backoffice.core.logging import get_logger
from pos_backoffice.schemas.order_modifications import (
    AmendmentAppliedResponse,
    AmendmentApproveRequest,
    AmendmentCreatedResponse,
    AmendmentCreateRequest,
    AmendmentRejectRequest,
    AmendmentResponse,
    BackorderRequest,
    BackorderResponse,
    FulfillmentSummaryResponse,
    OrderDetailResponse,
    PriceLockRequest,
    PriceLockResponse,
    PriceOptionsResponse,
    ShipmentCreatedResponse,
    ShipmentCreateRequest,
    ShipmentResponse,
    VersionComparisonResponse,
    VersionResponse,
)
from pos_backoffice.services.order_modifications.exceptions import (
    ChangeValidationError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    OrderModificationError,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/order-modifications", tags=["order-modifications"])


def _raise_http_error(error: Exception, operation: str, **context: Any) -> NoReturn:
    """
    Translate a service error into an HTTPException.

    NotFound → 404, InvalidState and ChangeValidation → 400 (invalid state
    names the offending status), Conflict → 409, anything else → 500.
    """
    detail: dict[str, Any]

    if isinstance(error, NotFoundError):
        logger.info(f"{operation}: not found", error=error.message, **context)
        code = status.HTTP_404_NOT_FOUND
        detail = {"error": type(error).__name__, "message": error.message}
    elif isinstance(error, InvalidStateError):
        logger.warning(
            f"{operation}: invalid state",
            error=error.message,
            current_status=error.status,
            **context,
        )
        code = status.HTTP_400_BAD_REQUEST
        detail = {
            "error": type(error).__name__,
            "message": error.message,
            "status": error.status,
        }
    elif isinstance(error, ChangeValidationError):
        logger.warning(f"{operation}: validation failed", error=error.message, **context)
        code = status.HTTP_400_BAD_REQUEST
        detail = {"error": type(error).__name__, "message": error.message}
    elif isinstance(error, ConflictError):
        logger.warning(f"{operation}: conflict", error=error.message, **context)
        code = status.HTTP_409_CONFLICT
        detail = {
            "error": type(error).__name__,
            "message": error.message,
            "retryable": True,
        }
    elif isinstance(error, OrderModificationError):
        logger.error(
            f"{operation}: failed",
            error=error.message,
            error_context=error.context,
            **context,
        )
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
        detail = {"error": type(error).__name__, "message": "Failed to process request"}
    else:
        logger.error(
            f"Unexpected error in {operation}",
            error=str(error),
            error_type=type(error).__name__,
            **context,
        )
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
        detail = {"error": "InternalError", "message": "An unexpected error occurred"}

    raise HTTPException(status_code=code, detail=detail) from error


# ============================================================================
# Orders and price locks
# ============================================================================


@router.get(
    "/orders/{order_id}",
    response_model=OrderDetailResponse,
    summary="Get order detail",
    description="Order lines with current and quote-time prices side by side",
)
async def get_order_detail(
    order_id: int,
    current_user: CurrentActiveUser,
    service: ModificationService,
) -> OrderDetailResponse:
    try:
        order = await service.get_order_detail(order_id)
        return OrderDetailResponse(**order)
    except Exception as e:
        _raise_http_error(e, "get_order_detail", order_id=order_id)


@router.put(
    "/orders/{order_id}/price-lock",
    response_model=PriceLockResponse,
    summary="Set price lock",
    description="Lock or unlock quote-time pricing, optionally until a given time",
)
async def set_price_lock(
    order_id: int,
    request: PriceLockRequest,
    current_user: CurrentActiveUser,
    service: ModificationService,
) -> PriceLockResponse:
    logger.info(
        "Setting price lock",
        order_id=order_id,
        enabled=request.enabled,
        user_id=current_user.id,
    )

    try:
        result = await service.set_price_lock(
            order_id,
            enabled=request.enabled,
            until=request.until,
            actor_id=current_user.id,
        )
        return PriceLockResponse(**result)
    except Exception as e:
        _raise_http_error(e, "set_price_lock", order_id=order_id)


@router.get(
    "/orders/{order_id}/price-lock",
    response_model=PriceLockResponse,
    summary="Get price lock state",
)
async def get_price_lock(
    order_id: int,
    current_user: CurrentActiveUser,
    service: ModificationService,
) -> PriceLockResponse:
    try:
        return PriceLockResponse(**await service.get_price_lock(order_id))
    except Exception as e:
        _raise_http_error(e, "get_price_lock", order_id=order_id)


@router.get(
    "/orders/{order_id}/products/{product_id}/price-options",
    response_model=PriceOptionsResponse,
    summary="Get price options",
    description="Current, quote and order prices for a product with a recommendation",
)
async def get_item_price_options(
    order_id: int,
    product_id: int,
    current_user: CurrentActiveUser,
    service: ModificationService,
) -> PriceOptionsResponse:
    try:
        options = await service.get_item_price_options(order_id, product_id)
        return PriceOptionsResponse(**options)
    except Exception as e:
        _raise_http_error(
            e, "get_item_price_options", order_id=order_id, product_id=product_id
        )


# ============================================================================
# Amendments
# ============================================================================


@router.post(
    "/orders/{order_id}/amendments",
    response_model=AmendmentCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create amendment",
    description="Propose line changes; large changes wait for manager approval",
)
async def create_amendment(
    order_id: int,
    request: AmendmentCreateRequest,
    current_user: CurrentActiveUser,
    service: ModificationService,
) -> AmendmentCreatedResponse:
    """
    Create an amendment for an order.

    Raises:
        HTTPException: 404 if order not found, 400 if the order is closed or
            the change set is invalid, 409 on concurrent modification
    """
    logger.info(
        "Creating amendment",
        order_id=order_id,
        user_id=current_user.id,
        item_changes=len(request.changes),
    )

    try:
        result = await service.create_amendment(
            order_id,
            amendment_type=request.amendment_type,
            changes=request.to_changes(),
            actor_id=current_user.id,
            reason=request.reason,
            use_quote_prices=request.use_quote_prices,
        )
        return AmendmentCreatedResponse(**result)
    except Exception as e:
        _raise_http_error(e, "create_amendment", order_id=order_id, user_id=current_user.id)


@router.get(
    "/orders/{order_id}/amendments",
    response_model=list[AmendmentResponse],
    summary="List order amendments",
)
async def list_order_amendments(
    order_id: int,
    current_user: CurrentActiveUser,
    service: ModificationService,
) -> list[AmendmentResponse]:
    try:
        amendments = await service.list_order_amendments(order_id)
        return [AmendmentResponse(**a) for a in amendments]
    except Exception as e:
        _raise_http_error(e, "list_order_amendments", order_id=order_id)


@router.get(
    "/amendments/pending",
    response_model=list[AmendmentResponse],
    summary="List pending amendments",
    description="Amendments waiting for approval across all orders, oldest first",
)
async def list_pending_amendments(
    current_user: ManagerUser,
    service: ModificationService,
    limit: Optional[int] = Query(None, ge=1, le=500, description="Maximum number of amendments"),
) -> list[AmendmentResponse]:
    try:
        amendments = await service.list_pending_amendments(limit)
        return [AmendmentResponse(**a) for a in amendments]
    except Exception as e:
        _raise_http_error(e, "list_pending_amendments", limit=limit)


@router.get(
    "/amendments/{amendment_id}",
    response_model=AmendmentResponse,
    summary="Get amendment",
)
async def get_amendment(
    amendment_id: int,
    current_user: CurrentActiveUser,
    service: ModificationService,
) -> AmendmentResponse:
    try:
        return AmendmentResponse(**await service.get_amendment(amendment_id))
    except Exception as e:
        _raise_http_error(e, "get_amendment", amendment_id=amendment_id)


@router.post(
    "/amendments/{amendment_id}/approve",
    response_model=AmendmentResponse,
    summary="Approve amendment",
)
async def approve_amendment(
    amendment_id: int,
    request: AmendmentApproveRequest,
    current_user: ManagerUser,
    service: ModificationService,
) -> AmendmentResponse:
    logger.info("Approving amendment", amendment_id=amendment_id, user_id=current_user.id)

    try:
        result = await service.approve_amendment(
            amendment_id, approver_id=current_user.id, notes=request.notes
        )
        return AmendmentResponse(**result)
    except Exception as e:
        _raise_http_error(e, "approve_amendment", amendment_id=amendment_id)


@router.post(
    "/amendments/{amendment_id}/reject",
    response_model=AmendmentResponse,
    summary="Reject amendment",
)
async def reject_amendment(
    amendment_id: int,
    request: AmendmentRejectRequest,
    current_user: ManagerUser,
    service: ModificationService,
) -> AmendmentResponse:
    logger.info("Rejecting amendment", amendment_id=amendment_id, user_id=current_user.id)

    try:
        result = await service.reject_amendment(
            amendment_id, approver_id=current_user.id, reason=request.reason
        )
        return AmendmentResponse(**result)
    except Exception as e:
        _raise_http_error(e, "reject_amendment", amendment_id=amendment_id)


@router.post(
    "/amendments/{amendment_id}/apply",
    response_model=AmendmentAppliedResponse,
    summary="Apply amendment",
    description="Apply an approved amendment, recalculate totals and snapshot the order",
)
async def apply_amendment(
    amendment_id: int,
    current_user: CurrentActiveUser,
    service: ModificationService,
) -> AmendmentAppliedResponse:
    """
    Apply an approved amendment.

    Raises:
        HTTPException: 404 if amendment not found, 400 naming the status if
            the amendment is not approved, 409 if the order changed underneath
    """
    logger.info("Applying amendment", amendment_id=amendment_id, user_id=current_user.id)

    try:
        result = await service.apply_amendment(amendment_id, actor_id=current_user.id)
        return AmendmentAppliedResponse(**result)
    except Exception as e:
        _raise_http_error(e, "apply_amendment", amendment_id=amendment_id)


# ============================================================================
# Versions
# ============================================================================


@router.get(
    "/orders/{order_id}/versions",
    response_model=list[VersionResponse],
    summary="List order versions",
)
async def get_order_versions(
    order_id: int,
    current_user: CurrentActiveUser,
    service: ModificationService,
) -> list[VersionResponse]:
    try:
        versions = await service.get_order_versions(order_id)
        return [VersionResponse(**v) for v in versions]
    except Exception as e:
        _raise_http_error(e, "get_order_versions", order_id=order_id)


@router.get(
    "/orders/{order_id}/versions/compare",
    response_model=VersionComparisonResponse,
    summary="Compare order versions",
    description="Lines added, removed and modified going from version_a to version_b",
)
async def compare_versions(
    order_id: int,
    current_user: CurrentActiveUser,
    service: ModificationService,
    version_a: int = Query(..., ge=1, description="Base version"),
    version_b: int = Query(..., ge=1, description="Target version"),
) -> VersionComparisonResponse:
    try:
        diff = await service.compare_versions(order_id, version_a, version_b)
        return VersionComparisonResponse(**diff)
    except Exception as e:
        _raise_http_error(
            e, "compare_versions", order_id=order_id, version_a=version_a, version_b=version_b
        )


# ============================================================================
# Fulfillment
# ============================================================================


@router.post(
    "/orders/{order_id}/shipments",
    response_model=ShipmentCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create shipment",
)
async def create_shipment(
    order_id: int,
    request: ShipmentCreateRequest,
    current_user: CurrentActiveUser,
    service: ModificationService,
) -> ShipmentCreatedResponse:
    logger.info(
        "Creating shipment",
        order_id=order_id,
        user_id=current_user.id,
        line_count=len(request.items),
    )

    try:
        result = await service.create_shipment(
            order_id,
            items=[item.to_line() for item in request.items],
            actor_id=current_user.id,
            carrier=request.carrier,
            tracking_number=request.tracking_number,
            tracking_url=request.tracking_url,
            estimated_delivery=request.estimated_delivery,
            shipping_cost_cents=request.shipping_cost_cents,
            notes=request.notes,
        )
        return ShipmentCreatedResponse(**result)
    except Exception as e:
        _raise_http_error(e, "create_shipment", order_id=order_id)


@router.get(
    "/orders/{order_id}/shipments",
    response_model=list[ShipmentResponse],
    summary="List shipments",
)
async def get_order_shipments(
    order_id: int,
    current_user: CurrentActiveUser,
    service: ModificationService,
) -> list[ShipmentResponse]:
    try:
        shipments = await service.get_order_shipments(order_id)
        return [ShipmentResponse(**s) for s in shipments]
    except Exception as e:
        _raise_http_error(e, "get_order_shipments", order_id=order_id)


@router.post(
    "/orders/{order_id}/backorders",
    response_model=BackorderResponse,
    summary="Mark lines backordered",
)
async def mark_backordered(
    order_id: int,
    request: BackorderRequest,
    current_user: CurrentActiveUser,
    service: ModificationService,
) -> BackorderResponse:
    logger.info(
        "Marking lines backordered",
        order_id=order_id,
        user_id=current_user.id,
        line_count=len(request.items),
    )

    try:
        result = await service.mark_backordered(
            order_id,
            items=[item.to_line() for item in request.items],
            actor_id=current_user.id,
        )
        return BackorderResponse(**result)
    except Exception as e:
        _raise_http_error(e, "mark_backordered", order_id=order_id)


@router.get(
    "/orders/{order_id}/fulfillment",
    response_model=FulfillmentSummaryResponse,
    summary="Get fulfillment summary",
)
async def get_fulfillment_summary(
    order_id: int,
    current_user: CurrentActiveUser,
    service: ModificationService,
) -> FulfillmentSummaryResponse:
    try:
        return FulfillmentSummaryResponse(**await service.get_fulfillment_summary(order_id))
    except Exception as e:
        _raise_http_error(e, "get_fulfillment_summary", order_id=order_id)
