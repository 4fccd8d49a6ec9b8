"""
Transfer Orchestrator.

Composes one sponsored cross-chain send:

1. approve the bridge on the source chain
2. send the tokens to the bridge on the source chain
3. transfer to the receiver on the destination chain

All three operations are built and sponsored up front, signed with a single
signer interaction, then executed in order with a settling wait after the
bridge send. The outcome is recorded with the record-keeping service and the
wallet's refreshed history is returned with the report.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from decimal import Decimal
from typing import AsyncIterator, Dict, List, Optional, Tuple

import structlog

from ...config import Settings, settings as default_settings
from ...providers.records import RecordKeepingClient
from ..accounts.models import ChainAccountResolver, SignerCapability
from ..accounts.resolver import build_account_resolver
from ..errors import RecordPersistenceFailure, TransferCancelled
from ..execution.models import ExecutionProgress, ExecutionStep, StepOutcome, StepStatus, StepTransition
from ..execution.operation_builder import OperationBuilder
from ..execution.sequencer import ExecutionSequencer
from ..execution.settling import TokenBalanceCheck, settling_policy_from_settings
from ..execution.signer import MultiChainSigner
from ..execution.sponsorship import SponsorshipResolver
from ..execution.userop import SignedOperation, UnsignedOperation
from ..execution.userop_builder import (
    build_bridge_send_call,
    build_erc20_approve_call,
    build_erc20_transfer_call,
)
from ..session.models import SessionState
from ..session.store import SessionStore
from .events import ProgressEmitter, ProgressEvent, ProgressStage
from .models import DeliveryStatus, TransferRecord, TransferReport, TransferRequest

logger = logging.getLogger(__name__)

APPROVE = "approve"
SEND_TO_BRIDGE = "send-to-bridge"
DELIVER = "transfer"

RECORD_WARNING = "Transfer record not saved"
HISTORY_WARNING = "Transaction history not refreshed"


@dataclass(frozen=True)
class TransferRoute:
    """The fixed source -> bridge -> destination route of a deployment."""
    source_chain_id: int
    destination_chain_id: int
    wallet_chain_id: int
    source_token_address: str
    destination_token_address: str
    bridge_contract_address: str
    bridge_destination_chain_name: str
    bridge_token_symbol: str
    token_decimals: int = 6
    settling_delay: float = 120.0
    delivery_requires_bridge: bool = True
    require_amount_conservation: bool = False

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "TransferRoute":
        config = config or default_settings
        return cls(
            source_chain_id=config.source_chain_id,
            destination_chain_id=config.destination_chain_id,
            wallet_chain_id=config.wallet_chain_id,
            source_token_address=config.source_token_address,
            destination_token_address=config.destination_token_address,
            bridge_contract_address=config.bridge_contract_address,
            bridge_destination_chain_name=config.bridge_destination_chain_name,
            bridge_token_symbol=config.bridge_token_symbol,
            token_decimals=config.token_decimals,
            settling_delay=config.settling_delay_seconds,
            delivery_requires_bridge=config.delivery_requires_bridge,
            require_amount_conservation=config.require_amount_conservation,
        )

    def to_base_units(self, amount: Decimal) -> int:
        scaled = Decimal(amount) * (Decimal(10) ** self.token_decimals)
        if scaled != scaled.to_integral_value():
            raise ValueError(f"Amount {amount} has more precision than {self.token_decimals} decimals")
        return int(scaled)


@dataclass(frozen=True)
class _PlannedCall:
    label: str
    chain_id: int
    contract: str
    call_data: str


@dataclass
class _LedgerEntry:
    """Everything needed to finish or replay a signed transfer."""
    request: TransferRequest
    wallet_address: str
    steps: List[ExecutionStep]
    progress: ExecutionProgress = field(default_factory=ExecutionProgress)
    report: Optional[TransferReport] = None


class TransferOrchestrator:
    """
    Runs sponsored cross-chain transfers.

    Errors before signing (AccountResolutionError, SponsorshipDeclined,
    SigningRejected, TransferCancelled) abort the transfer with nothing
    submitted. Once signed, every step gets an outcome and the caller gets
    a TransferReport, however many steps confirmed.

    Signed transfers are kept in a bounded ledger keyed by transfer id. A
    transfer interrupted after signing (task cancelled, caller timed out) is
    resumed from it on the next call with the same id.
    """

    def __init__(
        self,
        resolver: ChainAccountResolver,
        records: Optional[RecordKeepingClient] = None,
        *,
        route: Optional[TransferRoute] = None,
        builder: Optional[OperationBuilder] = None,
        sponsorship: Optional[SponsorshipResolver] = None,
        signer: Optional[MultiChainSigner] = None,
        sequencer: Optional[ExecutionSequencer] = None,
        emitter: Optional[ProgressEmitter] = None,
        session_store: Optional[SessionStore] = None,
        ledger_size: Optional[int] = None,
    ) -> None:
        self.resolver = resolver
        self.records = records or RecordKeepingClient()
        self.route = route or TransferRoute.from_settings()
        self.builder = builder or OperationBuilder(resolver)
        self.sponsorship = sponsorship or SponsorshipResolver(resolver)
        self.signer = signer or MultiChainSigner(resolver)
        self.sequencer = sequencer or ExecutionSequencer(
            resolver,
            settling_policy=settling_policy_from_settings(),
        )
        if self.sequencer.on_transition is None:
            self.sequencer.on_transition = self._on_transition
        self.emitter = emitter or ProgressEmitter()
        self.session_store = session_store
        self.ledger_size = ledger_size or default_settings.transfer_ledger_size

        self._ledger: Dict[str, _LedgerEntry] = {}
        self._transfer_locks: Dict[str, Tuple[asyncio.Lock, int]] = {}

    async def send(
        self,
        request: TransferRequest,
        *,
        cancel: Optional[asyncio.Event] = None,
    ) -> TransferReport:
        """
        Run one transfer and report what happened.

        Calling again with the same transfer id does not resubmit anything.
        A finished transfer returns the earlier report, retrying the record
        write if that is what failed last time; an interrupted one carries on
        where it stopped.

        Raises:
            ValueError: If amount conservation is required and the amounts differ
            AccountResolutionError: If a chain has no smart account
            SponsorshipDeclined: If any operation is not sponsored
            SigningRejected: If the batch signature was declined
            TransferCancelled: If `cancel` was set before signing
        """
        route = self.route
        if route.require_amount_conservation and (
            request.amount_from_source != request.amount_from_destination
        ):
            raise ValueError(
                f"Source amount {request.amount_from_source} does not match "
                f"destination amount {request.amount_from_destination}"
            )

        wallet = await self.resolver.resolve(route.wallet_chain_id)
        transfer_id = request.transfer_id

        async with self._transfer_lock(transfer_id):
            with structlog.contextvars.bound_contextvars(transfer_id=transfer_id):
                entry = self._ledger.get(transfer_id)
                if entry is not None and entry.report is not None:
                    self._remember(transfer_id, entry)
                    return await self._replay(entry)
                if entry is None:
                    entry = await self._sign(transfer_id, wallet.address, request, cancel)
                else:
                    logger.info(f"Transfer {transfer_id} was interrupted, resuming")
                return await self._execute(transfer_id, entry, cancel)

    async def history(self, wallet_address: Optional[str] = None) -> List[TransferRecord]:
        """Wallet history from the record-keeping service."""
        if wallet_address is None:
            wallet_address = (await self.resolver.resolve(self.route.wallet_chain_id)).address
        return await self.records.fetch_transactions(wallet_address)

    async def close(self) -> None:
        await self.records.close()
        await self.resolver.close()

    @asynccontextmanager
    async def _transfer_lock(self, transfer_id: str) -> AsyncIterator[None]:
        # Locks live only while some call for the id is running or waiting
        lock, users = self._transfer_locks.get(transfer_id, (None, 0))
        lock = lock or asyncio.Lock()
        self._transfer_locks[transfer_id] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._transfer_locks[transfer_id]
            if users <= 1:
                del self._transfer_locks[transfer_id]
            else:
                self._transfer_locks[transfer_id] = (lock, users - 1)

    async def _sign(
        self,
        transfer_id: str,
        wallet_address: str,
        request: TransferRequest,
        cancel: Optional[asyncio.Event],
    ) -> _LedgerEntry:
        await self._revalidate_session()

        calls = self._plan(request)
        await self._emit(
            ProgressStage.PRE_SIGNING,
            f"Preparing {len(calls)} sponsored operations",
            transfer_id,
        )

        reserved: List[Tuple[int, int]] = []
        try:
            _raise_if_cancelled(cancel, "before building operations")
            for call in calls:
                reserved.append((call.chain_id, await self.builder.reserve_nonce(call.chain_id)))

            results = await asyncio.gather(
                *(self._prepare(call, nonce) for call, (_, nonce) in zip(calls, reserved)),
                return_exceptions=True,
            )
            for result in results:
                if isinstance(result, BaseException):
                    raise result
            prepared: List[UnsignedOperation] = list(results)

            _raise_if_cancelled(cancel, "before signing")
            signed = await self.signer.sign_batch(
                [(op, call.chain_id) for op, call in zip(prepared, calls)]
            )
        except (Exception, asyncio.CancelledError) as exc:
            await self._release(reserved)
            await self._emit(ProgressStage.ABORTED, f"Transfer aborted: {exc}", transfer_id)
            raise

        entry = _LedgerEntry(request=request, wallet_address=wallet_address, steps=self._steps(signed))
        self._remember(transfer_id, entry)
        await self._emit(ProgressStage.SIGNED, "Batch signed", transfer_id)
        return entry

    async def _execute(
        self,
        transfer_id: str,
        entry: _LedgerEntry,
        cancel: Optional[asyncio.Event],
    ) -> TransferReport:
        request = entry.request
        outcomes = await self.sequencer.execute(
            entry.steps,
            progress=entry.progress,
            cancel=cancel,
            settlement_check=self._settlement_check(request),
        )
        await self._settle_nonces(entry.steps, outcomes)

        report = TransferReport(
            transfer_id=transfer_id,
            wallet_address=entry.wallet_address,
            outcomes=outcomes,
        )
        entry.report = report
        self._remember(transfer_id, entry)

        delivery = outcomes[-1]
        if delivery.status == StepStatus.CONFIRMED:
            report.record = self._record(entry.wallet_address, request, DeliveryStatus.DELIVERED)
        elif delivery.status == StepStatus.FAILED:
            # The attempt is recorded even though delivery did not confirm
            report.record = self._record(entry.wallet_address, request, DeliveryStatus.INTENT)
            report.warnings.append(
                "Destination transfer did not confirm; the record marks the transfer intent"
            )
        else:
            report.warnings.append("Destination transfer was skipped; no record written")

        if report.record is not None:
            await self._persist(report)

        logger.info(f"Transfer {transfer_id} finished: {report.summary}")
        await self._emit(ProgressStage.COMPLETED, report.summary, transfer_id)
        return report

    def _remember(self, transfer_id: str, entry: _LedgerEntry) -> None:
        # Most recently used last
        self._ledger.pop(transfer_id, None)
        self._ledger[transfer_id] = entry

        # Evict the oldest finished transfers; unfinished ones stay resumable
        excess = len(self._ledger) - self.ledger_size
        if excess <= 0:
            return
        finished = [key for key, e in self._ledger.items() if e.report is not None and key != transfer_id]
        for key in finished[:excess]:
            del self._ledger[key]

    def _settlement_check(self, request: TransferRequest) -> TokenBalanceCheck:
        route = self.route
        return TokenBalanceCheck(
            self.resolver,
            route.destination_chain_id,
            route.destination_token_address,
            route.to_base_units(request.amount_from_destination),
        )

    def _plan(self, request: TransferRequest) -> List[_PlannedCall]:
        route = self.route
        source_amount = route.to_base_units(request.amount_from_source)
        destination_amount = route.to_base_units(request.amount_from_destination)
        return [
            _PlannedCall(
                label=APPROVE,
                chain_id=route.source_chain_id,
                contract=route.source_token_address,
                call_data=build_erc20_approve_call(route.bridge_contract_address, source_amount),
            ),
            _PlannedCall(
                label=SEND_TO_BRIDGE,
                chain_id=route.source_chain_id,
                contract=route.bridge_contract_address,
                call_data=build_bridge_send_call(
                    route.bridge_destination_chain_name,
                    route.bridge_token_symbol,
                    source_amount,
                ),
            ),
            _PlannedCall(
                label=DELIVER,
                chain_id=route.destination_chain_id,
                contract=route.destination_token_address,
                call_data=build_erc20_transfer_call(request.receiver_address, destination_amount),
            ),
        ]

    async def _prepare(self, call: _PlannedCall, nonce: int) -> UnsignedOperation:
        op = await self.builder.build(call.chain_id, call.contract, call.call_data, nonce=nonce)
        return await self.sponsorship.sponsor(op)

    def _steps(self, signed: List[SignedOperation]) -> List[ExecutionStep]:
        approve, send, deliver = signed
        return [
            ExecutionStep(signed_operation=approve, order=0, label=APPROVE),
            ExecutionStep(
                signed_operation=send,
                order=1,
                label=SEND_TO_BRIDGE,
                settling_delay=self.route.settling_delay,
                depends_on=frozenset({0}),
            ),
            ExecutionStep(
                signed_operation=deliver,
                order=2,
                label=DELIVER,
                depends_on=frozenset({1}) if self.route.delivery_requires_bridge else frozenset(),
            ),
        ]

    def _record(
        self,
        wallet_address: str,
        request: TransferRequest,
        status: DeliveryStatus,
    ) -> TransferRecord:
        return TransferRecord(
            wallet_address=wallet_address,
            receiver_address=request.receiver_address,
            amount_sent=request.amount_from_destination,
            delivery_status=status,
        )

    async def _persist(self, report: TransferReport) -> None:
        assert report.record is not None
        try:
            await self.records.save_transaction(report.record)
        except RecordPersistenceFailure as exc:
            logger.warning(f"Could not save transfer record: {exc}")
            report.warnings.append(f"{RECORD_WARNING}: {exc}")
        else:
            report.record_persisted = True
            await self._emit(ProgressStage.RECORDED, "Transfer recorded", report.transfer_id)

        try:
            report.history = await self.records.fetch_transactions(report.wallet_address)
        except RecordPersistenceFailure as exc:
            logger.warning(f"Could not refresh transaction history: {exc}")
            report.warnings.append(f"{HISTORY_WARNING}: {exc}")
            return

        self._cache_history(report.history)

    async def _replay(self, entry: _LedgerEntry) -> TransferReport:
        report = entry.report
        logger.info(f"Transfer {report.transfer_id} already ran, not resubmitting")

        # Every stored outcome is terminal, so nothing reaches the network here
        report.outcomes = await self.sequencer.execute(entry.steps, prior=report.outcomes)
        report.replayed = True

        if report.record is not None and not report.record_persisted:
            report.warnings = [
                w for w in report.warnings if not w.startswith((RECORD_WARNING, HISTORY_WARNING))
            ]
            await self._persist(report)
        return report

    async def _release(self, reserved: List[Tuple[int, int]]) -> None:
        for chain_id, nonce in reversed(reserved):
            await self.builder.release_nonce(chain_id, nonce)

    async def _settle_nonces(self, steps: List[ExecutionStep], outcomes: List[StepOutcome]) -> None:
        # Accepted operations consumed their nonce; the rest never reached a bundler
        pairs = list(zip(steps, outcomes))
        for step, outcome in pairs:
            if outcome.user_op_hash:
                await self.builder.confirm_nonce(step.chain_id, step.signed_operation.operation.nonce)
        for step, outcome in reversed(pairs):
            if not outcome.user_op_hash:
                await self.builder.release_nonce(step.chain_id, step.signed_operation.operation.nonce)

    async def _revalidate_session(self) -> None:
        if self.session_store is None:
            return
        state = self.session_store.load()
        if state is None:
            return
        route = self.route
        fresh = await self.session_store.revalidate(
            state,
            self.resolver,
            {route.source_chain_id, route.destination_chain_id, route.wallet_chain_id},
            wallet_chain_id=route.wallet_chain_id,
        )
        if fresh != state:
            self._save_session(fresh)

    def _cache_history(self, history: List[TransferRecord]) -> None:
        if self.session_store is None:
            return
        state = self.session_store.load()
        if state is None:
            return
        try:
            self.session_store.record_history(state, history)
        except OSError as exc:
            logger.warning(f"Could not update session cache: {exc}")

    def _save_session(self, state: SessionState) -> None:
        try:
            self.session_store.save(state)
        except OSError as exc:
            logger.warning(f"Could not update session cache: {exc}")

    async def _on_transition(self, transition: StepTransition) -> None:
        transfer_id = structlog.contextvars.get_contextvars().get("transfer_id")
        status = transition.to_status

        if status == StepStatus.SUBMITTED:
            await self._emit(
                ProgressStage.STEP_UPDATE,
                f"{transition.label} submitted on chain {transition.chain_id}",
                transfer_id,
                transition.order,
            )
            return
        if not status.is_terminal:
            return

        suffix = f": {transition.detail}" if status != StepStatus.CONFIRMED and transition.detail else ""
        if transition.label == APPROVE:
            stage = ProgressStage.POST_APPROVE
            message = f"Approval {status.value}{suffix}"
        elif transition.label == SEND_TO_BRIDGE:
            stage = ProgressStage.POST_SEND
            message = f"Bridge send {status.value}{suffix}"
            if status == StepStatus.CONFIRMED and self.route.settling_delay > 0:
                message += f", waiting {self.route.settling_delay:.0f}s for the bridge to settle"
        elif transition.label == DELIVER:
            stage = ProgressStage.POST_DELIVERY
            message = f"Delivery {status.value}{suffix}"
        else:
            stage = ProgressStage.STEP_UPDATE
            message = f"{transition.label} {status.value}{suffix}"

        await self._emit(stage, message, transfer_id, transition.order)

    async def _emit(
        self,
        stage: ProgressStage,
        message: str,
        transfer_id: Optional[str],
        step_order: Optional[int] = None,
    ) -> None:
        try:
            await self.emitter.emit(
                ProgressEvent(stage=stage, message=message, transfer_id=transfer_id, step_order=step_order)
            )
        except Exception as exc:
            logger.error(f"Progress emission failed: {exc}")


def _raise_if_cancelled(cancel: Optional[asyncio.Event], where: str) -> None:
    if cancel is not None and cancel.is_set():
        raise TransferCancelled(f"Transfer cancelled {where}")


def build_orchestrator(
    signer: SignerCapability,
    config: Optional[Settings] = None,
    emitter: Optional[ProgressEmitter] = None,
    session_store: Optional[SessionStore] = None,
) -> TransferOrchestrator:
    """Wire an orchestrator from settings around a signer capability."""
    config = config or default_settings
    resolver = build_account_resolver(signer, config)
    sequencer = ExecutionSequencer(
        resolver,
        settling_policy=settling_policy_from_settings(config),
        confirmation_timeout=config.confirmation_timeout_seconds,
        poll_interval=config.receipt_poll_interval_seconds,
        max_submit_attempts=config.max_submit_attempts,
    )
    return TransferOrchestrator(
        resolver,
        RecordKeepingClient(
            base_url=config.record_service_url,
            timeout=config.request_timeout_seconds,
            include_delivery_status=config.record_include_delivery_status,
        ),
        route=TransferRoute.from_settings(config),
        sequencer=sequencer,
        signer=MultiChainSigner(
            resolver,
            entry_point=config.erc4337_entrypoint_address,
            module_address=config.erc4337_multichain_module_address,
            valid_for_seconds=config.signature_valid_for_seconds,
        ),
        sponsorship=SponsorshipResolver(
            resolver,
            account_name=config.smart_account_name,
            account_version=config.smart_account_version,
        ),
        emitter=emitter,
        session_store=session_store,
    )
