"""
Inbound provider webhooks.

Keep this thin: the dispatcher owns verification, routing and aggregation;
the route only maps its acknowledgment to an HTTP status. Any non-2xx makes
the provider redeliver the event.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette import status as http_status

from api.dependencies import get_dispatcher
from application.webhooks import WebhookDispatcher
from core.response import failure_response, success_response
from domain.webhook.result import AckStatus
from shared.codes.webhook_codes import WebhookCode


router = APIRouter(prefix="/webhooks", tags=["Webhooks"])

_FAILURE_STATUS = {
    AckStatus.REJECTED: (http_status.HTTP_401_UNAUTHORIZED, WebhookCode.SIGNATURE_REJECTED),
    AckStatus.MALFORMED: (http_status.HTTP_400_BAD_REQUEST, WebhookCode.MALFORMED_ENVELOPE),
    AckStatus.FAILED: (http_status.HTTP_500_INTERNAL_SERVER_ERROR, WebhookCode.HANDLER_FAILED),
}


@router.post("/paypal")
async def paypal_webhook(request: Request, dispatcher: WebhookDispatcher = Depends(get_dispatcher)):
    raw_body = await request.body()
    ack = await dispatcher.dispatch(raw_body, dict(request.headers))

    if ack.success:
        return success_response(data=ack.to_data(), message=ack.message)

    status_code, code = _FAILURE_STATUS.get(
        ack.status, (http_status.HTTP_500_INTERNAL_SERVER_ERROR, WebhookCode.HANDLER_FAILED)
    )
    # rejected deliveries get no details back
    data = None if ack.status == AckStatus.REJECTED else ack.to_data()
    body = failure_response(code=code, message=ack.message, data=data)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))
