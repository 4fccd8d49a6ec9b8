"""
Transfer request, record and report models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from ..execution.models import StepOutcome, StepStatus


class DeliveryStatus(str, Enum):
    """What a persisted record attests to."""
    DELIVERED = "delivered"  # destination transfer confirmed
    INTENT = "intent"        # destination transfer attempted but did not confirm


@dataclass
class TransferRequest:
    """A single user-initiated cross-chain send."""
    receiver_address: str
    amount_from_source: Decimal
    amount_from_destination: Decimal
    transfer_id: str = field(default_factory=lambda: f"xfer_{uuid4().hex[:24]}")

    def __post_init__(self) -> None:
        self.amount_from_source = Decimal(str(self.amount_from_source))
        self.amount_from_destination = Decimal(str(self.amount_from_destination))
        if self.amount_from_source <= 0 or self.amount_from_destination <= 0:
            raise ValueError("Transfer amounts must be positive")
        if not self.receiver_address:
            raise ValueError("Receiver address is required")
        if not self.transfer_id:
            raise ValueError("Transfer id must not be empty")


@dataclass
class TransferRecord:
    """History entry kept by the record-keeping service."""
    wallet_address: str
    receiver_address: str
    amount_sent: Decimal
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    delivery_status: DeliveryStatus = DeliveryStatus.DELIVERED
    record_id: Optional[str] = None

    def to_api_payload(self, include_delivery_status: bool = False) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "walletAddress": self.wallet_address,
            "receiverAddress": self.receiver_address,
            "amountSend": _amount_to_json(self.amount_sent),
        }
        if include_delivery_status:
            payload["deliveryStatus"] = self.delivery_status.value
        return payload

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "TransferRecord":
        raw_amount = data.get("amountSend", data.get("amount_sent", 0))
        try:
            amount = Decimal(str(raw_amount))
        except InvalidOperation:
            amount = Decimal("0")

        raw_ts = data.get("createdAt") or data.get("timestamp")
        timestamp = _parse_timestamp(raw_ts)

        status = data.get("deliveryStatus") or DeliveryStatus.DELIVERED.value
        try:
            delivery_status = DeliveryStatus(status)
        except ValueError:
            delivery_status = DeliveryStatus.DELIVERED

        return cls(
            wallet_address=data.get("walletAddress", ""),
            receiver_address=data.get("receiverAddress", ""),
            amount_sent=amount,
            timestamp=timestamp,
            delivery_status=delivery_status,
            record_id=str(data["id"]) if data.get("id") is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.to_api_payload(include_delivery_status=True),
            "timestamp": self.timestamp.isoformat(),
            "id": self.record_id,
        }


@dataclass
class TransferReport:
    """Partial-success summary of one transfer invocation."""
    transfer_id: str
    wallet_address: str
    outcomes: List[StepOutcome]
    record: Optional[TransferRecord] = None
    record_persisted: bool = False
    history: Optional[List[TransferRecord]] = None
    warnings: List[str] = field(default_factory=list)
    replayed: bool = False

    def _labels(self, status: StepStatus) -> List[str]:
        return [o.label for o in self.outcomes if o.status == status]

    @property
    def confirmed(self) -> List[str]:
        return self._labels(StepStatus.CONFIRMED)

    @property
    def failed(self) -> List[str]:
        return self._labels(StepStatus.FAILED)

    @property
    def skipped(self) -> List[str]:
        return self._labels(StepStatus.SKIPPED)

    @property
    def fully_confirmed(self) -> bool:
        return len(self.confirmed) == len(self.outcomes)

    @property
    def summary(self) -> str:
        return (
            f"{len(self.confirmed)}/{len(self.outcomes)} confirmed, "
            f"{len(self.failed)} failed, {len(self.skipped)} skipped"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transferId": self.transfer_id,
            "walletAddress": self.wallet_address,
            "summary": self.summary,
            "steps": [o.to_dict() for o in self.outcomes],
            "record": self.record.to_dict() if self.record else None,
            "recordPersisted": self.record_persisted,
            "history": [r.to_dict() for r in self.history] if self.history is not None else None,
            "warnings": list(self.warnings),
            "replayed": self.replayed,
        }


def _amount_to_json(amount: Decimal) -> Any:
    if amount == amount.to_integral_value():
        return int(amount)
    return float(amount)


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, (int, float)):
        # milliseconds since epoch
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            pass
    return datetime.now(timezone.utc)
