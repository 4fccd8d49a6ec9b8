"""
Tests for transfer request, record and report models.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from bridgeflow.core.execution.models import StepOutcome, StepStatus
from bridgeflow.core.transfer import DeliveryStatus, TransferRecord, TransferReport, TransferRequest

from conftest import RECEIVER, SMART_ACCOUNT


def test_request_normalizes_amounts():
    request = TransferRequest(RECEIVER, "10", 9.5)

    assert request.amount_from_source == Decimal("10")
    assert request.amount_from_destination == Decimal("9.5")
    assert request.transfer_id.startswith("xfer_")


def test_requests_get_distinct_ids():
    assert TransferRequest(RECEIVER, 1, 1).transfer_id != TransferRequest(RECEIVER, 1, 1).transfer_id


@pytest.mark.parametrize(
    "kwargs",
    [
        {"receiver_address": RECEIVER, "amount_from_source": 0, "amount_from_destination": 1},
        {"receiver_address": RECEIVER, "amount_from_source": 1, "amount_from_destination": -1},
        {"receiver_address": "", "amount_from_source": 1, "amount_from_destination": 1},
        {"receiver_address": RECEIVER, "amount_from_source": 1, "amount_from_destination": 1, "transfer_id": ""},
    ],
)
def test_invalid_requests_rejected(kwargs):
    with pytest.raises(ValueError):
        TransferRequest(**kwargs)


def test_record_payload_matches_service_contract():
    record = TransferRecord(wallet_address=SMART_ACCOUNT, receiver_address=RECEIVER, amount_sent=Decimal("10"))

    assert record.to_api_payload() == {
        "walletAddress": SMART_ACCOUNT,
        "receiverAddress": RECEIVER,
        "amountSend": 10,
    }
    assert record.to_api_payload(include_delivery_status=True)["deliveryStatus"] == "delivered"


def test_fractional_amount_payload():
    record = TransferRecord(SMART_ACCOUNT, RECEIVER, Decimal("2.5"))

    assert record.to_api_payload()["amountSend"] == 2.5


def test_record_from_api_tolerates_missing_fields():
    record = TransferRecord.from_api(
        {"walletAddress": SMART_ACCOUNT, "amountSend": "3", "_creationTime": 1, "createdAt": 1700000000000}
    )

    assert record.amount_sent == Decimal("3")
    assert record.receiver_address == ""
    assert record.timestamp == datetime.fromtimestamp(1700000000, tz=timezone.utc)
    assert record.delivery_status == DeliveryStatus.DELIVERED

    intent = TransferRecord.from_api({"amountSend": "x", "deliveryStatus": "intent", "id": 5})
    assert intent.amount_sent == Decimal("0")
    assert intent.delivery_status == DeliveryStatus.INTENT
    assert intent.record_id == "5"


def test_report_summary():
    outcomes = [
        StepOutcome(order=0, label="approve", chain_id=1, status=StepStatus.CONFIRMED),
        StepOutcome(order=1, label="send-to-bridge", chain_id=1, status=StepStatus.FAILED, reason="boom"),
        StepOutcome(order=2, label="transfer", chain_id=2, status=StepStatus.SKIPPED),
    ]
    report = TransferReport(transfer_id="xfer_1", wallet_address=SMART_ACCOUNT, outcomes=outcomes)

    assert report.confirmed == ["approve"]
    assert report.failed == ["send-to-bridge"]
    assert report.skipped == ["transfer"]
    assert not report.fully_confirmed
    assert report.summary == "1/3 confirmed, 1 failed, 1 skipped"
    assert report.to_dict()["steps"][1]["status"] == "failed"
