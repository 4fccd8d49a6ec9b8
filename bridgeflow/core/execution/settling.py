"""
Settling policies.

A settling policy decides how long the sequencer waits after a step was
accepted before it moves on, giving a bridge or relayer time to carry the
transfer across chains. Every policy waits at least the step's settling
delay; the wait is an asyncio suspension and never blocks other transfers.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

from ...config import Settings, settings
from .models import ExecutionStep

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]
SettlementCheck = Callable[[ExecutionStep], Awaitable[bool]]


class SettlingPolicy(ABC):
    """Base class for settling policies."""

    def __init__(self, sleep: Optional[Sleep] = None) -> None:
        self._sleep = sleep or asyncio.sleep

    @abstractmethod
    async def settle(self, step: ExecutionStep, check: Optional[SettlementCheck] = None) -> bool:
        """
        Wait for `step` to settle.

        Returns True when the step is considered settled, False when a check
        never confirmed it within the policy's limits. Either way the caller
        moves on; dependents decide for themselves.
        """
        pass


class FixedDelaySettling(SettlingPolicy):
    """Waits exactly the step's settling delay and never checks."""

    async def settle(self, step: ExecutionStep, check: Optional[SettlementCheck] = None) -> bool:
        if step.settling_delay > 0:
            logger.info(f"Settling {step.name} for {step.settling_delay:.0f}s")
            await self._sleep(step.settling_delay)
        return True


class BackoffSettling(SettlingPolicy):
    """
    Waits the settling delay, then checks with exponentially growing gaps.

    Without a check this behaves like FixedDelaySettling.
    """

    def __init__(
        self,
        max_checks: int = 5,
        initial_interval: float = 5.0,
        max_interval: float = 60.0,
        exponential_base: float = 2.0,
        sleep: Optional[Sleep] = None,
    ) -> None:
        super().__init__(sleep)
        self.max_checks = max_checks
        self.initial_interval = initial_interval
        self.max_interval = max_interval
        self.exponential_base = exponential_base

    def interval(self, attempt: int) -> float:
        return min(self.initial_interval * (self.exponential_base ** attempt), self.max_interval)

    async def settle(self, step: ExecutionStep, check: Optional[SettlementCheck] = None) -> bool:
        if step.settling_delay > 0:
            await self._sleep(step.settling_delay)
        if check is None:
            return True

        for attempt in range(self.max_checks):
            if await _safe_check(check, step):
                return True
            if attempt < self.max_checks - 1:
                delay = self.interval(attempt)
                logger.debug(f"{step.name} not settled yet, checking again in {delay:.1f}s")
                await self._sleep(delay)

        logger.warning(f"{step.name} not settled after {self.max_checks} checks")
        return False


class PollingSettling(SettlingPolicy):
    """Waits the settling delay, then polls a check at a fixed interval until a timeout."""

    def __init__(
        self,
        poll_interval: float = 10.0,
        timeout: float = 600.0,
        sleep: Optional[Sleep] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(sleep)
        self.poll_interval = poll_interval
        self.timeout = timeout
        self._clock = clock

    async def settle(self, step: ExecutionStep, check: Optional[SettlementCheck] = None) -> bool:
        if step.settling_delay > 0:
            await self._sleep(step.settling_delay)
        if check is None:
            return True

        deadline = self._clock() + self.timeout
        while True:
            if await _safe_check(check, step):
                return True
            if self._clock() >= deadline:
                logger.warning(f"{step.name} not settled within {self.timeout:.0f}s of polling")
                return False
            await self._sleep(self.poll_interval)


class TokenBalanceCheck:
    """
    Treats a bridge transfer as settled once tokens arrived.

    Passes when the smart account on `chain_id` holds at least `minimum`
    base units of `token_address`, i.e. when the destination transfer can
    be funded.
    """

    def __init__(self, resolver, chain_id: int, token_address: str, minimum: int) -> None:
        self.resolver = resolver
        self.chain_id = chain_id
        self.token_address = token_address
        self.minimum = minimum

    async def __call__(self, step: ExecutionStep) -> bool:
        handle = await self.resolver.resolve(self.chain_id)
        balance = await handle.bundler.get_token_balance(self.token_address, handle.address)
        logger.debug(
            f"Balance on chain {self.chain_id} after {step.name}: {balance} (need {self.minimum})"
        )
        return balance >= self.minimum


async def _safe_check(check: SettlementCheck, step: ExecutionStep) -> bool:
    try:
        return bool(await check(step))
    except Exception as exc:
        logger.warning(f"Settlement check for {step.name} failed: {exc}")
        return False


def settling_policy_from_settings(
    config: Optional[Settings] = None,
    sleep: Optional[Sleep] = None,
) -> SettlingPolicy:
    """Build the settling policy named by `settling_strategy`."""
    config = config or settings
    strategy = config.settling_strategy.lower()

    if strategy == "fixed":
        return FixedDelaySettling(sleep=sleep)
    if strategy == "backoff":
        return BackoffSettling(
            max_checks=config.settling_max_checks,
            initial_interval=config.settling_poll_interval_seconds,
            sleep=sleep,
        )
    if strategy == "polling":
        return PollingSettling(
            poll_interval=config.settling_poll_interval_seconds,
            timeout=config.settling_timeout_seconds,
            sleep=sleep,
        )
    raise ValueError(f"Unknown settling strategy: {config.settling_strategy}")
