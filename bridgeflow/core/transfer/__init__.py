"""
Cross-chain transfer models and progress events.

The orchestrator itself lives in `bridgeflow.core.transfer.orchestrator`.
"""

from .models import DeliveryStatus, TransferRecord, TransferReport, TransferRequest
from .events import ProgressCallback, ProgressEmitter, ProgressEvent, ProgressStage

__all__ = [
    "DeliveryStatus",
    "TransferRecord",
    "TransferReport",
    "TransferRequest",
    "ProgressCallback",
    "ProgressEmitter",
    "ProgressEvent",
    "ProgressStage",
]
