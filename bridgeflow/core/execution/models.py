"""
Execution step and outcome models.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from .userop import SignedOperation, UserOpReceipt


class StepStatus(str, Enum):
    """Step lifecycle status."""
    PENDING = "pending"          # Not yet submitted
    SUBMITTED = "submitted"      # Accepted by the bundler
    CONFIRMED = "confirmed"      # Receipt reports success
    FAILED = "failed"            # Submission, confirmation or execution failed
    SKIPPED = "skipped"          # Never submitted (dependency or cancellation)

    @property
    def is_terminal(self) -> bool:
        return self in {StepStatus.CONFIRMED, StepStatus.FAILED, StepStatus.SKIPPED}


@dataclass(frozen=True)
class ExecutionStep:
    """
    A signed operation scheduled at a fixed position in the sequence.

    `depends_on` lists the orders of steps that must be CONFIRMED before
    this one is submitted.
    """
    signed_operation: SignedOperation
    order: int
    settling_delay: float = 0.0
    label: str = ""
    depends_on: FrozenSet[int] = field(default_factory=frozenset)

    @property
    def chain_id(self) -> int:
        return self.signed_operation.chain_id

    @property
    def name(self) -> str:
        return self.label or f"step-{self.order}"


@dataclass
class StepOutcome:
    """Terminal result for one step."""
    order: int
    label: str
    chain_id: int
    status: StepStatus
    receipt: Optional[UserOpReceipt] = None
    cause: Optional[Exception] = None
    reason: Optional[str] = None
    user_op_hash: Optional[str] = None
    attempts: int = 0
    # None until a settling wait ran; False when the settlement check never passed
    settled: Optional[bool] = None
    completed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def confirmed(
        cls,
        step: ExecutionStep,
        receipt: UserOpReceipt,
        attempts: int = 1,
    ) -> "StepOutcome":
        return cls(
            order=step.order,
            label=step.name,
            chain_id=step.chain_id,
            status=StepStatus.CONFIRMED,
            receipt=receipt,
            user_op_hash=receipt.user_op_hash,
            attempts=attempts,
        )

    @classmethod
    def failed(
        cls,
        step: ExecutionStep,
        cause: Exception,
        user_op_hash: Optional[str] = None,
        attempts: int = 0,
        receipt: Optional[UserOpReceipt] = None,
    ) -> "StepOutcome":
        return cls(
            order=step.order,
            label=step.name,
            chain_id=step.chain_id,
            status=StepStatus.FAILED,
            cause=cause,
            reason=str(cause),
            user_op_hash=user_op_hash,
            attempts=attempts,
            receipt=receipt,
        )

    @classmethod
    def skipped(cls, step: ExecutionStep, reason: str) -> "StepOutcome":
        return cls(
            order=step.order,
            label=step.name,
            chain_id=step.chain_id,
            status=StepStatus.SKIPPED,
            reason=reason,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def is_success(self) -> bool:
        return self.status == StepStatus.CONFIRMED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order": self.order,
            "label": self.label,
            "chainId": self.chain_id,
            "status": self.status.value,
            "userOpHash": self.user_op_hash,
            "transactionHash": self.receipt.transaction_hash if self.receipt else None,
            "reason": self.reason,
            "attempts": self.attempts,
            "settled": self.settled,
            "completedAt": self.completed_at.isoformat(),
        }


@dataclass(frozen=True)
class StepTransition:
    """A single state change of one step, published to observers."""
    order: int
    label: str
    chain_id: int
    from_status: StepStatus
    to_status: StepStatus
    user_op_hash: Optional[str] = None
    detail: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class ExecutionProgress:
    """
    Live record of one sequence, written by the sequencer as it goes.

    `submitted` holds the user-op hash of every step a bundler accepted and
    `outcomes` every terminal outcome. A sequence interrupted mid-way is
    resumed from here: terminal steps are reused and accepted steps are
    only awaited, never resubmitted.
    """
    submitted: Dict[int, str] = field(default_factory=dict)
    attempts: Dict[int, int] = field(default_factory=dict)
    outcomes: Dict[int, StepOutcome] = field(default_factory=dict)

    def awaiting_receipt(self, order: int) -> Optional[str]:
        if order in self.outcomes:
            return None
        return self.submitted.get(order)
