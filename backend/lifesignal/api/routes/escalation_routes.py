"""
Escalation API Routes for Life Signal.

Manual trigger for the escalation scan. The same pass runs on the
scheduler timer; this endpoint exists for cron-style callers and ops.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from lifesignal.core.container import ServiceContainer, get_services
from lifesignal.core.exceptions import LifeSignalException
from lifesignal.models.schemas import ScanResponse


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/escalation", tags=["Escalation"])


@router.api_route(
    "/scan",
    methods=["GET", "POST"],
    response_model=ScanResponse,
    summary="Run Escalation Scan",
    description="Run one escalation pass over every user with check-ins enabled"
)
async def run_escalation_scan(
    cooldown_min: Optional[int] = Query(
        None,
        alias="cooldownMin",
        description="Accepted for compatibility; pacing comes from per-user settings"
    ),
    services: ServiceContainer = Depends(get_services)
):
    """
    Run the scan and report what it did.

    Returns 500 `{ok: false, error}` when the scan cannot run at all
    (missing telephony credentials, store unavailable).
    """
    try:
        summary = await services.scanner.run(cooldown_min=cooldown_min)
    except LifeSignalException as e:
        logger.error(f"Escalation scan aborted: {e.message}")
        return JSONResponse(status_code=500, content={"ok": False, "error": e.message})
    except Exception as e:
        logger.exception(f"Escalation scan crashed: {e}")
        return JSONResponse(status_code=500, content={"ok": False, "error": str(e)})

    return ScanResponse(
        ok=True,
        processed=summary.processed,
        telnyx_calls_queued=summary.telnyx_calls_queued,
        escalations_queued=summary.escalations_queued,
        due_esc_processed=summary.due_esc_processed,
    )
