"""
Telnyx webhook endpoint.

Telnyx retries anything that is not a 2xx, so the handler answers
`{ok: true}` for every event it can survive. Only a failed speak action
is reported back as an error.
"""
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from lifesignal.core.container import ServiceContainer, get_services
from lifesignal.services.telephony_webhook import handle_telnyx_event


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/telnyx", tags=["Telnyx"])


@router.post(
    "/webhook",
    summary="Telnyx Call Control Webhook",
    description="Speaks the alert on answered calls and records DTMF acknowledgements"
)
async def telnyx_webhook(
    request: Request,
    services: ServiceContainer = Depends(get_services)
):
    try:
        body = await request.json()
    except ValueError:
        logger.warning("Telnyx webhook with unreadable body")
        body = {}

    try:
        await handle_telnyx_event(body, services.repository, services.dispatcher)
    except Exception as e:
        logger.error(f"Telnyx webhook handling failed: {e}")
        return JSONResponse(status_code=500, content={"ok": False})

    return {"ok": True}
