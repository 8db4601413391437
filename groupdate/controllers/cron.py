import hmac
import logging

from fastapi import APIRouter, Request

from groupdate.dependencies import Service
from groupdate.errors import UnauthorizedError

logger = logging.getLogger("groupdate.cron")
router = APIRouter(prefix="/cron", tags=["cron"])


def _check_cron_secret(request: Request, secret: str) -> None:
    if not secret:
        return
    header = request.headers.get("Authorization", "")
    if not hmac.compare_digest(header, f"Bearer {secret}"):
        raise UnauthorizedError(detail="Invalid cron credentials", error_code="cron_unauthorized")


@router.get("/phase-sweeper")
async def phase_sweeper(request: Request, service: Service):
    _check_cron_secret(request, service.settings.auth.cron_secret)
    result = await service.sweep_due_transitions()
    logger.info("On-demand phase sweep: %s", result)
    return {"ok": True, **result}
