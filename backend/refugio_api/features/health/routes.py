from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from refugio_api.platform.services.mailer import MailRelay

router = APIRouter()


def get_mail_relay(request: Request) -> MailRelay:
    return request.app.state.mail_relay


@router.get("/health")
async def health(relay: MailRelay = Depends(get_mail_relay)) -> JSONResponse:
    status = await relay.verify()
    now = datetime.now(timezone.utc).isoformat()
    if status.healthy:
        return JSONResponse({"ok": True, "smtp": "ok", "time": now})
    return JSONResponse(
        {"ok": False, "smtp": "fail", "time": now, "error": status.error or "SMTP verify failed"},
        status_code=500,
    )
