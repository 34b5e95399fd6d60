from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from app.container import Container
from app.domain.dtos import WebhookAckResponse

from .deps import get_container

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)


@router.post("/{provider_type}", response_model=WebhookAckResponse)
async def receive_webhook(
    provider_type: str,
    request: Request,
    container: Container = Depends(get_container),
) -> WebhookAckResponse:
    """Gateway callbacks; authenticated by each provider's signature check."""
    body = await request.body()
    logger.info(
        "webhook request",
        extra={"endpoint": "/webhooks/{provider_type}", "method": "POST", "provider": provider_type},
    )
    ack = await container.webhooks.ingest(
        provider_type,
        body,
        headers=dict(request.headers),
        query=dict(request.query_params),
    )
    return WebhookAckResponse(received=ack.received, success=ack.success)
