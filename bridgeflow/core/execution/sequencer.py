"""
Execution Sequencer.

Submits signed steps one at a time, in order, waiting for each to reach a
terminal outcome before the next is evaluated. Failures are isolated per
step; steps that declared a dependency on a step that did not confirm (or
did not settle) are skipped without any network call.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx
from eth_utils import encode_hex

from ...config import settings
from ..accounts.models import ChainAccountResolver, SmartAccountHandle
from ..errors import StepExecutionFailure, StepRevertedError
from ..recovery import NetworkError, RetryConfig, RetryStrategy, is_duplicate_submission
from .models import ExecutionProgress, ExecutionStep, StepOutcome, StepStatus, StepTransition
from .settling import FixedDelaySettling, SettlementCheck, SettlingPolicy, Sleep

logger = logging.getLogger(__name__)

TransitionListener = Callable[[StepTransition], Any]


class ExecutionSequencer:
    """
    Runs execution steps strictly by `order`.

    Per step: PENDING -> SUBMITTED -> CONFIRMED | FAILED, or PENDING ->
    SKIPPED when a dependency did not confirm or the caller cancelled.
    Once a step is submitted it runs to a terminal state; cancellation only
    affects steps not yet submitted.
    """

    def __init__(
        self,
        resolver: ChainAccountResolver,
        settling_policy: Optional[SettlingPolicy] = None,
        confirmation_timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
        max_submit_attempts: Optional[int] = None,
        on_transition: Optional[TransitionListener] = None,
        settlement_check: Optional[SettlementCheck] = None,
        sleep: Optional[Sleep] = None,
    ) -> None:
        self.resolver = resolver
        self._sleep = sleep or asyncio.sleep
        self.settling_policy = settling_policy or FixedDelaySettling(sleep=self._sleep)
        self.confirmation_timeout = confirmation_timeout or settings.confirmation_timeout_seconds
        self.poll_interval = poll_interval or settings.receipt_poll_interval_seconds
        self.on_transition = on_transition
        self.settlement_check = settlement_check
        self._retry = RetryStrategy(
            RetryConfig(max_attempts=max_submit_attempts or settings.max_submit_attempts),
            logger=logger,
            sleep=self._sleep,
        )

    async def execute(
        self,
        steps: Sequence[ExecutionStep],
        *,
        prior: Optional[Sequence[StepOutcome]] = None,
        progress: Optional[ExecutionProgress] = None,
        cancel: Optional[asyncio.Event] = None,
        settlement_check: Optional[SettlementCheck] = None,
    ) -> List[StepOutcome]:
        """
        Execute `steps` and return one outcome per step, in input order.

        Args:
            steps: Steps to run; orders must be unique
            prior: Outcomes from an earlier run; terminal ones are reused
                   and their steps are not resubmitted
            progress: Written as steps are accepted and finish; passing the
                      progress of an interrupted run resumes it
            cancel: When set, steps not yet submitted are skipped
            settlement_check: Overrides the sequencer's check for this run

        Raises:
            ValueError: If two steps share an order
        """
        orders = [step.order for step in steps]
        if len(set(orders)) != len(orders):
            raise ValueError(f"Step orders must be unique, got {orders}")

        progress = progress if progress is not None else ExecutionProgress()
        for outcome in prior or []:
            if outcome.is_terminal:
                progress.outcomes.setdefault(outcome.order, outcome)
        check = settlement_check or self.settlement_check

        results: Dict[int, StepOutcome] = {}
        for step in sorted(steps, key=lambda s: s.order):
            outcome = progress.outcomes.get(step.order)
            if outcome is not None:
                logger.info(f"{step.name} already {outcome.status.value}, not resubmitting")
            else:
                outcome = await self._run_step(step, results, cancel, progress)
                progress.outcomes[step.order] = outcome
            results[step.order] = outcome

            if _needs_settling(step, outcome):
                outcome.settled = await self.settling_policy.settle(step, check)

        return [results[order] for order in orders]

    async def _run_step(
        self,
        step: ExecutionStep,
        results: Dict[int, StepOutcome],
        cancel: Optional[asyncio.Event],
        progress: ExecutionProgress,
    ) -> StepOutcome:
        unmet = self._unmet_dependency(step, results)
        if unmet is not None:
            return await self._skip(step, unmet)

        accepted = progress.awaiting_receipt(step.order)
        if accepted is None and cancel is not None and cancel.is_set():
            return await self._skip(step, "cancelled before submission")

        try:
            handle = self.resolver.cached(step.chain_id) or await self.resolver.resolve(step.chain_id)
        except Exception as exc:
            return await self._fail(step, exc, user_op_hash=accepted, attempts=0)

        if accepted is not None:
            logger.info(f"{step.name} was accepted earlier as {accepted}, waiting for its receipt")
            return await self._confirm(step, handle, accepted, progress.attempts.get(step.order, 1))

        attempts = 0
        interrupted = False

        async def submit() -> str:
            nonlocal attempts, interrupted
            attempts += 1
            try:
                return await handle.bundler.send_user_operation(step.signed_operation, handle.entry_point)
            except Exception as exc:
                # A transport failure leaves it open whether the bundler took the operation
                if interrupted and is_duplicate_submission(exc):
                    logger.info(f"{step.name} is already held by the bundler: {exc}")
                    return _local_hash(step, handle)
                if isinstance(exc, (NetworkError, httpx.TransportError)):
                    interrupted = True
                    if await self._known_to_bundler(step, handle):
                        return _local_hash(step, handle)
                raise

        try:
            user_op_hash = await self._retry.execute(submit, {"operation": f"Submit {step.name}"})
        except Exception as exc:
            return await self._fail(step, exc, attempts=attempts)

        progress.submitted[step.order] = user_op_hash
        progress.attempts[step.order] = attempts
        await self._publish(step, StepStatus.PENDING, StepStatus.SUBMITTED, user_op_hash)
        logger.info(f"{step.name} accepted on chain {step.chain_id}: {user_op_hash}")

        return await self._confirm(step, handle, user_op_hash, attempts)

    async def _known_to_bundler(self, step: ExecutionStep, handle: SmartAccountHandle) -> bool:
        user_op_hash = _local_hash(step, handle)
        try:
            receipt = await handle.bundler.get_user_operation_receipt(user_op_hash)
        except Exception as exc:
            logger.warning(f"Could not look up {step.name} ({user_op_hash}): {exc}")
            return False
        if receipt is not None:
            logger.info(f"{step.name} landed despite the failed submission: {user_op_hash}")
        return receipt is not None

    async def _confirm(
        self,
        step: ExecutionStep,
        handle: SmartAccountHandle,
        user_op_hash: str,
        attempts: int,
    ) -> StepOutcome:
        try:
            receipt = await handle.bundler.wait_for_receipt(
                user_op_hash,
                timeout_seconds=self.confirmation_timeout,
                poll_interval_seconds=self.poll_interval,
                sleep=self._sleep,
            )
        except Exception as exc:
            return await self._fail(step, exc, user_op_hash=user_op_hash, attempts=attempts,
                                    from_status=StepStatus.SUBMITTED)

        if not receipt.success:
            cause = StepRevertedError(
                f"{step.name} reverted: {receipt.reason or 'no reason given'}",
                chain_id=step.chain_id,
                user_op_hash=user_op_hash,
                transaction_hash=receipt.transaction_hash,
            )
            return await self._fail(step, cause, user_op_hash=user_op_hash, attempts=attempts,
                                    receipt=receipt, from_status=StepStatus.SUBMITTED)

        await self._publish(step, StepStatus.SUBMITTED, StepStatus.CONFIRMED, user_op_hash,
                            detail=receipt.transaction_hash)
        logger.info(f"{step.name} confirmed in {receipt.transaction_hash}")
        return StepOutcome.confirmed(step, receipt, attempts=attempts)

    @staticmethod
    def _unmet_dependency(step: ExecutionStep, results: Dict[int, StepOutcome]) -> Optional[str]:
        for order in sorted(step.depends_on):
            dependency = results.get(order)
            if dependency is None:
                return f"depends on step {order}, which has not run"
            if dependency.status != StepStatus.CONFIRMED:
                return f"depends on {dependency.label}, which is {dependency.status.value}"
            if dependency.settled is False:
                return f"depends on {dependency.label}, which did not settle"
        return None

    async def _skip(self, step: ExecutionStep, reason: str) -> StepOutcome:
        logger.info(f"Skipping {step.name}: {reason}")
        await self._publish(step, StepStatus.PENDING, StepStatus.SKIPPED, detail=reason)
        return StepOutcome.skipped(step, reason)

    async def _fail(
        self,
        step: ExecutionStep,
        exc: Exception,
        user_op_hash: Optional[str] = None,
        attempts: int = 0,
        receipt=None,
        from_status: StepStatus = StepStatus.PENDING,
    ) -> StepOutcome:
        if isinstance(exc, StepExecutionFailure):
            cause = exc
        else:
            cause = StepExecutionFailure(
                f"{step.name} failed: {exc}",
                chain_id=step.chain_id,
                user_op_hash=user_op_hash,
            )
            cause.__cause__ = exc
        logger.error(f"{step.name} failed on chain {step.chain_id}: {exc}")
        await self._publish(step, from_status, StepStatus.FAILED, user_op_hash, detail=str(exc))
        return StepOutcome.failed(step, cause, user_op_hash=user_op_hash, attempts=attempts, receipt=receipt)

    async def _publish(
        self,
        step: ExecutionStep,
        from_status: StepStatus,
        to_status: StepStatus,
        user_op_hash: Optional[str] = None,
        detail: Optional[str] = None,
    ) -> None:
        if self.on_transition is None:
            return
        transition = StepTransition(
            order=step.order,
            label=step.name,
            chain_id=step.chain_id,
            from_status=from_status,
            to_status=to_status,
            user_op_hash=user_op_hash,
            detail=detail,
        )
        try:
            result = self.on_transition(transition)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            logger.warning(f"Transition listener failed for {step.name}: {exc}")


def _local_hash(step: ExecutionStep, handle: SmartAccountHandle) -> str:
    return encode_hex(step.signed_operation.operation.hash(handle.entry_point))


def _needs_settling(step: ExecutionStep, outcome: StepOutcome) -> bool:
    return (
        step.settling_delay > 0
        and outcome.status == StepStatus.CONFIRMED
        and outcome.settled is None
    )
