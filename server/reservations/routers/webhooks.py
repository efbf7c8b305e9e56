"""Payment provider webhook router."""

import logging
from typing import Optional

from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse

from ..core.dependencies import Webhooks
from ..services.webhook_service import WebhookService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/webhooks", tags=["webhooks"])

SIGNATURE_DEPENDENCY = Header(None, alias="Stripe-Signature")


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    signature: Optional[str] = SIGNATURE_DEPENDENCY,
    service: WebhookService = Webhooks,
) -> JSONResponse:
    """
    Receive a Stripe event.

    The raw body is passed through untouched because the signature covers
    the exact bytes sent.
    """
    payload = await request.body()
    result = await service.handle(payload, signature)
    return JSONResponse(status_code=200, content=result)
