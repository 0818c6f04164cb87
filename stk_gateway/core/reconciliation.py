"""
STK callback reconciliation.

Maps the gateway's at-least-once callback deliveries onto ledger records:
- ResultCode 0      -> Completed record with the callback Amount
- any other code    -> Pending record with amount 0

Re-delivery of a callback whose CheckoutRequestID is still in the ledger
returns the existing record and writes nothing.
"""
import math
from typing import Any, Dict, Optional

import structlog

from stk_gateway.core.exceptions import CallbackParseError
from stk_gateway.core.ledger import TransactionLedger
from stk_gateway.core.models import (
    CallbackOutcome,
    TransactionDraft,
    TransactionRecord,
    TransactionStatus,
)
from stk_gateway.core.phone import mask_phone_number
from stk_gateway.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


def parse_callback(body: Any) -> CallbackOutcome:
    """
    Extract the stkCallback envelope.

    Expected shape:
        {"Body": {"stkCallback": {"ResultCode", "ResultDesc", "CheckoutRequestID",
                                  "CallbackMetadata": {"Item": [{"Name", "Value"}]}}}}

    Raises:
        CallbackParseError: If the envelope or ResultCode is missing or malformed
    """
    if not isinstance(body, dict):
        raise CallbackParseError("Callback body must be a JSON object")

    envelope = body.get("Body")
    callback = envelope.get("stkCallback") if isinstance(envelope, dict) else None
    if not isinstance(callback, dict):
        raise CallbackParseError("Callback is missing Body.stkCallback")

    if "ResultCode" not in callback:
        raise CallbackParseError("Callback is missing ResultCode")
    try:
        result_code = int(callback["ResultCode"])
    except (TypeError, ValueError):
        raise CallbackParseError(f"Invalid ResultCode: {callback['ResultCode']!r}")

    metadata: Dict[str, Any] = {}
    callback_metadata = callback.get("CallbackMetadata")
    if callback_metadata is not None:
        items = callback_metadata.get("Item") if isinstance(callback_metadata, dict) else None
        if not isinstance(items, list):
            raise CallbackParseError("CallbackMetadata.Item must be a list")
        for item in items:
            if not isinstance(item, dict) or "Name" not in item:
                raise CallbackParseError("CallbackMetadata item is missing Name")
            # items without a Value (e.g. Balance) are skipped
            if item.get("Value") is not None:
                metadata[str(item["Name"])] = item["Value"]

    checkout_request_id = callback.get("CheckoutRequestID")
    merchant_request_id = callback.get("MerchantRequestID")
    return CallbackOutcome(
        checkout_request_id=str(checkout_request_id) if checkout_request_id else None,
        merchant_request_id=str(merchant_request_id) if merchant_request_id else None,
        result_code=result_code,
        result_description=str(callback.get("ResultDesc") or ""),
        metadata=metadata,
    )


def _optional_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


class CallbackReconciler:
    """Turns inbound callbacks into ledger records."""

    def __init__(self, ledger: TransactionLedger):
        self.ledger = ledger

    def to_draft(self, outcome: CallbackOutcome) -> TransactionDraft:
        """
        Map a parsed outcome to a ledger draft.

        Raises:
            CallbackParseError: If a completed payment has no usable Amount
        """
        phone_number = _optional_str(outcome.metadata.get("PhoneNumber"))
        receipt_number = _optional_str(outcome.metadata.get("MpesaReceiptNumber"))

        if not outcome.completed:
            return TransactionDraft(
                phone_number=phone_number,
                amount=0,
                status=TransactionStatus.PENDING,
                checkout_request_id=outcome.checkout_request_id,
                receipt_number=receipt_number,
            )

        if "Amount" not in outcome.metadata:
            raise CallbackParseError("Completed callback is missing Amount")
        try:
            amount = float(outcome.metadata["Amount"])
        except (TypeError, ValueError):
            raise CallbackParseError(f"Invalid Amount: {outcome.metadata['Amount']!r}")
        if not math.isfinite(amount) or amount < 0:
            raise CallbackParseError(f"Invalid Amount: {outcome.metadata['Amount']!r}")

        return TransactionDraft(
            phone_number=phone_number,
            amount=amount,
            status=TransactionStatus.COMPLETED,
            checkout_request_id=outcome.checkout_request_id,
            receipt_number=receipt_number,
        )

    async def reconcile(self, body: Any) -> TransactionRecord:
        """
        Parse a raw callback body and record its outcome.

        Args:
            body: Decoded JSON callback

        Returns:
            TransactionRecord: New record, or the retained one for a re-delivery

        Raises:
            CallbackParseError: Malformed body (ledger untouched)
            PersistenceError: Ledger write failed
        """
        try:
            outcome = parse_callback(body)
            draft = self.to_draft(outcome)
        except CallbackParseError as e:
            metrics.record_callback("malformed")
            logger.warning("callback_malformed", error=e.message)
            raise

        logger.info(
            "callback_received",
            checkout_request_id=outcome.checkout_request_id,
            result_code=outcome.result_code,
        )

        record, created = await self.ledger.append_once(draft)

        if not created:
            metrics.record_callback("duplicate")
            logger.info(
                "callback_duplicate_ignored",
                checkout_request_id=outcome.checkout_request_id,
                record_id=record.id,
            )
            return record

        if outcome.completed:
            metrics.record_callback("completed")
            logger.info(
                "payment_completed",
                checkout_request_id=outcome.checkout_request_id,
                amount=record.amount,
                phone_number=mask_phone_number(record.phone_number or ""),
                receipt_number=record.receipt_number,
            )
            if record.phone_number is None:
                logger.warning(
                    "callback_phone_number_missing",
                    checkout_request_id=outcome.checkout_request_id,
                )
        else:
            metrics.record_callback("pending")
            # user cancelled, timed out, insufficient funds... not a system fault
            logger.warning(
                "payment_not_completed",
                checkout_request_id=outcome.checkout_request_id,
                result_code=outcome.result_code,
                result_description=outcome.result_description,
            )
        return record
