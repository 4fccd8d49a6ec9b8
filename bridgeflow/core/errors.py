"""
Transfer error taxonomy.

Errors raised before signing abort the whole transfer with no on-chain side
effects. Step errors are recorded per step by the sequencer and never abort
the sequence. Record-keeping errors are reported as warnings.
"""

from typing import Optional


class BridgeflowError(Exception):
    """Base exception for transfer errors."""
    pass


class ChainMismatchError(ValueError):
    """An operation, handle or pair carries a different chain id than expected."""

    def __init__(self, expected: int, actual: int, what: str = "operation"):
        super().__init__(f"{what} is tagged with chain {actual}, expected chain {expected}")
        self.expected = expected
        self.actual = actual


class AccountResolutionError(BridgeflowError):
    """No usable smart account exists for a chain."""

    def __init__(self, chain_id: int, reason: str = "no smart account handle"):
        super().__init__(f"Cannot resolve smart account on chain {chain_id}: {reason}")
        self.chain_id = chain_id
        self.reason = reason


class SponsorshipDeclined(BridgeflowError):
    """The fee sponsor refused (or could not be asked) to cover an operation."""

    def __init__(self, chain_id: int, reason: str):
        super().__init__(f"Sponsorship declined on chain {chain_id}: {reason}")
        self.chain_id = chain_id
        self.reason = reason


class SigningRejected(BridgeflowError):
    """The signer is unavailable or the user declined the batch."""
    pass


class TransferCancelled(BridgeflowError):
    """The caller cancelled the transfer before anything was submitted."""
    pass


class StepExecutionFailure(BridgeflowError):
    """A submitted step did not confirm."""

    def __init__(
        self,
        message: str,
        chain_id: Optional[int] = None,
        user_op_hash: Optional[str] = None,
    ):
        super().__init__(message)
        self.chain_id = chain_id
        self.user_op_hash = user_op_hash


class StepTimeoutError(StepExecutionFailure):
    """No receipt arrived within the confirmation timeout."""
    pass


class StepRevertedError(StepExecutionFailure):
    """The bundled operation was included but reverted."""

    def __init__(
        self,
        message: str,
        chain_id: Optional[int] = None,
        user_op_hash: Optional[str] = None,
        transaction_hash: Optional[str] = None,
    ):
        super().__init__(message, chain_id=chain_id, user_op_hash=user_op_hash)
        self.transaction_hash = transaction_hash


class RecordPersistenceFailure(BridgeflowError):
    """Writing or reading transfer records failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
