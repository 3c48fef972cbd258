"""
Irshad Backend: Stripe Webhook Route
=====================================

What:  POST /api/webhooks/stripe/{source}, where source is "mahad" or "dugsi".
How:   Hands the raw body and the `stripe-signature` header to the
       WebhookProcessor and returns whatever status it decides. The body
       must be read raw: signature verification is an HMAC over the exact
       bytes Stripe sent.

Stripe retries any non-2xx response, so the processor answers 500 only
when a retry could succeed.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db_session
from app.services.webhook_service import webhook_processor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["Webhooks"])


@router.post(
    "/stripe/{source}",
    summary="Receive a Stripe webhook event",
    responses={
        200: {"description": "Event processed or skipped as a duplicate"},
        400: {"description": "Malformed event or permanent processing error"},
        401: {"description": "Signature verification failed"},
        500: {"description": "Temporary failure; Stripe will redeliver"},
    },
)
async def stripe_webhook(
    source: str,
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="stripe-signature"),
    db: AsyncSession = Depends(get_db_session),
) -> JSONResponse:
    body = await request.body()
    status_code, content = await webhook_processor.process(db, source, body, stripe_signature)
    return JSONResponse(status_code=status_code, content=content)
