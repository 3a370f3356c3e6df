"""Billing endpoints: Stripe webhook receiver and checkout session creation."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from portal_api.dependencies import (
    BillingDep,
    DispatcherDep,
    PrincipalDep,
    ScopeFactoryDep,
    SettingsDep,
    TenantDep,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])


# ---------------------------------------------------------------------------
# Request / response schemas
# ---------------------------------------------------------------------------


class CheckoutRequest(BaseModel):
    """Request body for ``POST /billing/checkout``."""

    model_config = ConfigDict(populate_by_name=True)

    price_id: str | None = Field(
        default=None,
        alias="priceId",
        description="Stripe price id; defaults to the configured basic plan.",
    )


class CheckoutResponse(BaseModel):
    url: str = Field(..., description="Stripe-hosted checkout page to redirect the user to.")


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("/webhooks")
async def stripe_webhook(request: Request, dispatcher: DispatcherDep) -> JSONResponse:
    """Receive a Stripe webhook delivery.

    The raw body is needed for signature verification.  Answers 200 once
    the event is applied (or recognised as a duplicate), 400 for bad
    signatures, and 500/503 when Stripe should retry.
    """
    body = await request.body()
    result = await dispatcher.process(body, request.headers.get("stripe-signature"))
    return JSONResponse(status_code=result.status_code, content=result.body)


@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout(
    principal: PrincipalDep,
    tenant_id: TenantDep,
    settings: SettingsDep,
    billing: BillingDep,
    scope_factory: ScopeFactoryDep,
    body: CheckoutRequest | None = None,
) -> CheckoutResponse:
    """Start a subscription checkout for the caller's tenant."""
    requested = body.price_id if body is not None else None
    if requested:
        if requested not in settings.price_ids:
            raise HTTPException(status_code=400, detail="Unknown price id")
        price_id = requested
    else:
        price_id = settings.stripe_price_id_basic
    if not price_id:
        raise HTTPException(status_code=503, detail="Billing is not configured")

    async with scope_factory() as scope:
        record = await scope.store.get(tenant_id)

    url = await billing.create_checkout_session(
        tenant_id=tenant_id,
        price_id=price_id,
        success_url=settings.checkout_success_url,
        cancel_url=settings.checkout_cancel_url,
        customer_id=record.billing_customer_id if record is not None else None,
        customer_email=principal.email,
    )
    return CheckoutResponse(url=url)
