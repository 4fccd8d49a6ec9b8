"""
Operation Execution Layer

Builds, signs and sequences ERC-4337 user operations:
- OperationBuilder: Wraps a contract call into an unsigned operation
- MultiChainSigner: Signs a whole cross-chain batch with one interaction
- ExecutionSequencer: Submits signed steps in order, isolating failures
- NonceManager: Hands out nonces for concurrent builds

The SponsorshipResolver lives in `bridgeflow.core.execution.sponsorship`;
it talks to the paymaster provider and is imported from there directly.

Usage:
    from bridgeflow.core.execution import OperationBuilder, MultiChainSigner

    op = await OperationBuilder(resolver).build(43113, token, call)
"""

from .models import ExecutionProgress, ExecutionStep, StepOutcome, StepStatus, StepTransition
from .userop import SignedOperation, UnsignedOperation, UserOpReceipt
from .nonce_manager import NonceManager, get_nonce_manager
from .operation_builder import OperationBuilder
from .signer import MultiChainSigner
from .settling import (
    SettlingPolicy,
    FixedDelaySettling,
    BackoffSettling,
    PollingSettling,
    TokenBalanceCheck,
    settling_policy_from_settings,
)
from .sequencer import ExecutionSequencer

__all__ = [
    # Models
    "ExecutionProgress",
    "ExecutionStep",
    "StepOutcome",
    "StepStatus",
    "StepTransition",
    "SignedOperation",
    "UnsignedOperation",
    "UserOpReceipt",
    # Building and signing
    "NonceManager",
    "get_nonce_manager",
    "OperationBuilder",
    "MultiChainSigner",
    # Sequencing
    "SettlingPolicy",
    "FixedDelaySettling",
    "BackoffSettling",
    "PollingSettling",
    "TokenBalanceCheck",
    "settling_policy_from_settings",
    "ExecutionSequencer",
]
