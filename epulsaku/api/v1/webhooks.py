"""Provider status callbacks.

Pushed updates go through the same compare-and-set ledger path as the
reconciliation ticks, so a webhook and a poll racing on one transaction apply
at most once.
"""

import hmac
import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from epulsaku.api.dependencies import get_client_ip, get_gateway, get_supervisor
from epulsaku.config import settings
from epulsaku.domain.exceptions import PersistenceError, UpstreamApiError
from epulsaku.infrastructure.clients.digiflazz import parse_transaction_data
from epulsaku.infrastructure.clients.tokovoucher import parse_status_body
from epulsaku.services.providers import ProviderGateway
from epulsaku.services.reconciliation import WEBHOOK_UPDATE, ReconciliationSupervisor
from epulsaku.utils.security import hmac_sha1_hex, md5_hex

logger = logging.getLogger(__name__)

router = APIRouter()


def _digiflazz_signature_ok(raw_body: bytes, header: str | None, secret: str) -> bool:
    if not secret:
        return True
    if not header:
        return False
    received = header.split("=", 1)[1] if header.startswith("sha1=") else header
    return hmac.compare_digest(received.encode(), hmac_sha1_hex(secret, raw_body).encode())


@router.post("/webhooks/digiflazz")
async def digiflazz_webhook(
    request: Request,
    supervisor: ReconciliationSupervisor = Depends(get_supervisor),
):
    raw_body = await request.body()
    if not raw_body.strip():
        logger.warning("Received empty body in Digiflazz webhook. Ignoring.")
        return {"data": {"status": "success", "message": "Webhook with empty body received and ignored."}}

    if not _digiflazz_signature_ok(raw_body, request.headers.get("x-hub-signature"), settings.digiflazz_webhook_secret):
        logger.warning("Digiflazz webhook signature mismatch")
        return JSONResponse(status_code=403, content={"error": "Invalid signature"})

    try:
        payload = json.loads(raw_body)
    except ValueError:
        return JSONResponse(status_code=400, content={"error": "Webhook processing error: Invalid JSON body."})

    data = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(data, dict) or not isinstance(data.get("ref_id"), str) or not isinstance(data.get("status"), str):
        return JSONResponse(status_code=400, content={"error": "Invalid payload structure."})

    ref_id = data["ref_id"]
    try:
        outcome = await supervisor.apply_pushed_result(ref_id, parse_transaction_data(data), WEBHOOK_UPDATE)
    except PersistenceError as e:
        logger.error(f"Digiflazz webhook for {ref_id} could not reach the store: {e}", extra={"ref_id": ref_id})
        return JSONResponse(status_code=500, content={"error": "Webhook processing error"})

    if outcome is None:
        logger.warning(f"Webhook received for unknown ref_id: {ref_id}. Ignoring.", extra={"ref_id": ref_id})
        return {"data": {"status": "success", "message": "Webhook for unknown ref_id ignored."}}
    if not outcome.success:
        logger.error(f"Failed to update transaction {ref_id}: {outcome.message}", extra={"ref_id": ref_id})
        return JSONResponse(
            status_code=500,
            content={"data": {"status": "failed_internal", "message": "Webhook received, internal processing error."}},
        )
    return {"data": {"status": "success", "message": outcome.message or "Webhook processed"}}


@router.post("/webhooks/tokovoucher")
async def tokovoucher_webhook(
    request: Request,
    gateway: ProviderGateway = Depends(get_gateway),
    supervisor: ReconciliationSupervisor = Depends(get_supervisor),
):
    client = gateway.tokovoucher
    if not client.member_code or not client.secret:
        logger.error("TokoVoucher member code or secret not configured")
        return JSONResponse(status_code=500, content={"error": "TokoVoucher integration not configured"})

    sender_ip = get_client_ip(request)
    allowed_ips = [ip.strip() for ip in settings.allowed_tokovoucher_ips.split(",") if ip.strip()]
    if allowed_ips and sender_ip not in allowed_ips:
        logger.warning(f"TokoVoucher webhook: denied IP {sender_ip}")
        return JSONResponse(status_code=403, content={"error": "IP not allowed"})

    try:
        payload = json.loads(await request.body())
    except ValueError:
        return JSONResponse(status_code=400, content={"error": "Webhook processing error: Invalid JSON body."})
    if not isinstance(payload, dict):
        return JSONResponse(status_code=400, content={"error": "Invalid payload"})

    if not payload.get("ref_id"):
        return JSONResponse(status_code=400, content={"error": "Invalid payload, missing ref_id"})
    ref_id = str(payload["ref_id"])

    expected_auth = md5_hex(f"{client.member_code}:{client.secret}:{ref_id}")
    received_auth = request.headers.get("x-tokovoucher-authorization") or ""
    if not hmac.compare_digest(received_auth.encode(), expected_auth.encode()):
        logger.warning(f"TokoVoucher webhook auth mismatch for ref_id {ref_id}", extra={"ref_id": ref_id})
        return JSONResponse(status_code=403, content={"error": "Invalid authorization header"})

    if not payload.get("status"):
        return JSONResponse(status_code=400, content={"error": "Invalid payload, missing status"})

    try:
        result = parse_status_body(payload, strict=False)
    except UpstreamApiError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})

    try:
        outcome = await supervisor.apply_pushed_result(ref_id, result, WEBHOOK_UPDATE)
    except PersistenceError as e:
        logger.error(f"TokoVoucher webhook for {ref_id} could not reach the store: {e}", extra={"ref_id": ref_id})
        return JSONResponse(status_code=500, content={"error": "Webhook processing error"})

    if outcome is None:
        logger.warning(f"TokoVoucher webhook for unknown ref_id: {ref_id}. Ignoring.", extra={"ref_id": ref_id})
        return {"message": "Webhook for unknown ref_id ignored."}
    if not outcome.success:
        logger.error(f"Failed to update transaction {ref_id} from TokoVoucher webhook: {outcome.message}")
        return {"message": "Webhook received, internal processing error."}
    return {"message": outcome.message or "Webhook processed"}
