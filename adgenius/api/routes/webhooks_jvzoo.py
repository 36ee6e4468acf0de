"""
JVZoo IPN webhook.

SECURITY:
- Every notification is digest-verified before anything is applied
- No user authentication (notifications come from JVZoo, not users)
- Always answers 200: JVZoo retries anything else, and a forged or
  malformed notification will not get better on retry
"""

import json
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from adgenius.database.session import get_db_session
from adgenius.services.purchase_processor import ProcessOutcome, PurchaseEventProcessor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks/jvzoo", tags=["webhooks"])

RESPONSE_STATUS = {
    ProcessOutcome.APPLIED: "processed",
    ProcessOutcome.DUPLICATE: "already_processed",
    ProcessOutcome.VERIFICATION_FAILED: "verification_failed",
    ProcessOutcome.FAILED: "error",
}


async def read_ipn_body(request: Request) -> Dict[str, Any]:
    """JSON bodies as-is; anything else is read as a form post, as JVZoo sends."""
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            payload = json.loads(await request.body() or b"{}")
        except json.JSONDecodeError:
            logger.warning("Invalid IPN JSON payload")
            return {}
        return payload if isinstance(payload, dict) else {}

    form = await request.form()
    return {key: value for key, value in form.items() if isinstance(value, str)}


@router.post("/ipn")
async def handle_ipn(request: Request, db_session: Session = Depends(get_db_session)):
    """Receive a sale, refund, chargeback, rebill or cancellation notification."""
    payload = await read_ipn_body(request)
    logger.info("Received JVZoo IPN", extra={
        "transaction_type": payload.get("ctransaction") or payload.get("transactionType"),
        "product_item": payload.get("cproditem") or payload.get("productId"),
    })

    try:
        result = PurchaseEventProcessor(db_session).apply_transaction(payload)
    except Exception as e:
        logger.exception("Failed to process JVZoo IPN", extra={"error": str(e)})
        # Received and logged; a 5xx would only trigger blind retries
        return {"status": "error", "message": "processing error"}

    response = {"status": RESPONSE_STATUS[result.outcome]}
    if result.transaction_id:
        response["transaction_id"] = result.transaction_id
    return response
