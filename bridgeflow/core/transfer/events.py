"""
Transfer progress events.

The orchestrator never calls the UI directly: it publishes ProgressEvents to a
ProgressEmitter and any number of observers consume them. Observer failures
are logged and never reach the transfer.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class ProgressStage(str, Enum):
    """Major transfer boundaries."""
    PRE_SIGNING = "pre_signing"
    SIGNED = "signed"
    STEP_UPDATE = "step_update"
    POST_APPROVE = "post_approve"
    POST_SEND = "post_send"
    POST_DELIVERY = "post_delivery"
    RECORDED = "recorded"
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass(frozen=True)
class ProgressEvent:
    stage: ProgressStage
    message: str
    transfer_id: Optional[str] = None
    step_order: Optional[int] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage.value,
            "message": self.message,
            "transferId": self.transfer_id,
            "stepOrder": self.step_order,
            "timestamp": self.timestamp.isoformat(),
        }


ProgressCallback = Callable[[ProgressEvent], Any]


class ProgressEmitter:
    """Fan-out of progress events to sync or async callbacks."""

    def __init__(self) -> None:
        self._callbacks: List[ProgressCallback] = []

    def subscribe(self, callback: ProgressCallback) -> None:
        self._callbacks.append(callback)

    def unsubscribe(self, callback: ProgressCallback) -> None:
        self._callbacks = [cb for cb in self._callbacks if cb != callback]

    async def emit(self, event: ProgressEvent) -> None:
        logger.info(f"[{event.stage.value}] {event.message}")

        pending = []
        for callback in list(self._callbacks):
            try:
                result = callback(event)
            except Exception as exc:
                logger.error(f"Progress callback error: {exc}")
                continue
            if inspect.isawaitable(result):
                pending.append(result)

        if not pending:
            return

        results = await asyncio.gather(*pending, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error(f"Progress callback error: {result}")
