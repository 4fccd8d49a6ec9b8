"""
Shared fakes for transfer tests.

Bundlers and paymasters are in-memory stand-ins with scripted behavior; the
signer is a real LocalKeySigner over a throwaway key.
"""

from typing import Any, Dict, List, Optional

import pytest
from eth_utils import encode_hex

from bridgeflow.config import DEFAULT_ENTRYPOINT_ADDRESS
from bridgeflow.core.accounts import CachedAccountResolver, LocalKeySigner, SmartAccountHandle
from bridgeflow.core.errors import StepTimeoutError
from bridgeflow.core.execution.userop import UserOpReceipt
from bridgeflow.providers.bundler import BundlerError
from bridgeflow.providers.paymaster import PaymasterError

TEST_PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
SOURCE_CHAIN = 43113
DESTINATION_CHAIN = 11155111
SMART_ACCOUNT = "0x1111111111111111111111111111111111111111"
RECEIVER = "0x2222222222222222222222222222222222222222"


class FakePaymaster:
    def __init__(self, chain_id: int, decline: bool = False):
        self.chain_id = chain_id
        self.decline = decline
        self.requests: List[Dict[str, Any]] = []
        self.closed = False

    async def sponsor_user_operation(self, user_op, context=None) -> Dict[str, Any]:
        self.requests.append({"op": user_op, "context": context})
        if self.decline:
            raise PaymasterError("Sponsorship cap exceeded (code -32000)")
        return {
            "paymasterAndData": "0x" + "ab" * 20 + f"{self.chain_id:064x}",
            "callGasLimit": "0x11170",
            "verificationGasLimit": "0x186a0",
            "preVerificationGas": "0xc350",
            "maxFeePerGas": "0x59682f00",
            "maxPriorityFeePerGas": "0x3b9aca00",
        }

    async def close(self) -> None:
        self.closed = True


class FakeBundler:
    """
    Bundler that accepts everything unless told otherwise.

    `submit_errors` are raised (in order) by successive submissions before
    anything is accepted; `accept_then_raise` errors are raised after the
    operation was accepted, like a response lost in transit. A second
    submission of an accepted nonce is rejected the way real bundlers do.
    `outcome` is one of "success", "revert" or "timeout".
    """

    def __init__(self, chain_id: int, nonce: int = 0, outcome: str = "success"):
        self.chain_id = chain_id
        self.nonce = nonce
        self.outcome = outcome
        self.submit_errors: List[Exception] = []
        self.accept_then_raise: List[Exception] = []
        self.submitted: List[Any] = []
        self.receipts_visible = False
        self.token_balance = 10 ** 24
        self.balance_queries = 0
        self.nonce_queries = 0
        self.closed = False
        self._accepted: Dict[str, Any] = {}

    async def get_nonce(self, sender: str, entry_point: str, key: int = 0) -> int:
        self.nonce_queries += 1
        return self.nonce

    async def get_token_balance(self, token_address: str, owner: str) -> int:
        self.balance_queries += 1
        return self.token_balance

    async def send_user_operation(self, signed_op, entry_point: str) -> str:
        op = signed_op.operation
        if any(s.operation.sender == op.sender and s.operation.nonce == op.nonce for s in self.submitted):
            raise BundlerError("AA25 invalid account nonce")
        if self.submit_errors:
            raise self.submit_errors.pop(0)

        user_op_hash = encode_hex(op.hash(entry_point))
        self.submitted.append(signed_op)
        self._accepted[user_op_hash] = signed_op
        if self.accept_then_raise:
            raise self.accept_then_raise.pop(0)
        return user_op_hash

    async def get_user_operation_receipt(self, user_op_hash: str) -> Optional[UserOpReceipt]:
        if not self.receipts_visible or user_op_hash not in self._accepted:
            return None
        return self._receipt(user_op_hash)

    async def wait_for_receipt(
        self,
        user_op_hash: str,
        timeout_seconds: float,
        poll_interval_seconds: float = 2.0,
        sleep=None,
    ) -> UserOpReceipt:
        if self.outcome == "timeout":
            raise StepTimeoutError(
                f"No receipt for {user_op_hash} after {timeout_seconds:.0f}s",
                chain_id=self.chain_id,
                user_op_hash=user_op_hash,
            )
        return self._receipt(user_op_hash)

    def _receipt(self, user_op_hash: str) -> UserOpReceipt:
        return UserOpReceipt(
            user_op_hash=user_op_hash,
            success=self.outcome == "success",
            transaction_hash="0x" + user_op_hash[-8:].rjust(64, "f"),
            block_number=100,
            reason=None if self.outcome == "success" else "execution reverted",
        )

    async def close(self) -> None:
        self.closed = True


class Network:
    """One fake bundler/paymaster pair per chain, plus the resolver over them."""

    def __init__(self, signer, chain_ids=(SOURCE_CHAIN, DESTINATION_CHAIN)):
        self.signer = signer
        self.bundlers: Dict[int, FakeBundler] = {c: FakeBundler(c) for c in chain_ids}
        self.paymasters: Dict[int, FakePaymaster] = {c: FakePaymaster(c) for c in chain_ids}
        self.resolutions: List[int] = []
        self.resolver = CachedAccountResolver(self._factory)

    async def _factory(self, chain_id: int) -> SmartAccountHandle:
        self.resolutions.append(chain_id)
        if chain_id not in self.bundlers:
            raise LookupError(f"chain {chain_id} not configured")
        return SmartAccountHandle(
            chain_id=chain_id,
            address=SMART_ACCOUNT,
            signer=self.signer,
            paymaster=self.paymasters[chain_id],
            bundler=self.bundlers[chain_id],
            entry_point=DEFAULT_ENTRYPOINT_ADDRESS,
        )

    @property
    def submitted_count(self) -> int:
        return sum(len(b.submitted) for b in self.bundlers.values())


class RecordingSigner:
    """LocalKeySigner wrapper counting prompts; can be told to decline."""

    def __init__(self, decline: bool = False, empty: bool = False):
        self._inner = LocalKeySigner(TEST_PRIVATE_KEY)
        self.address = self._inner.address
        self.decline = decline
        self.empty = empty
        self.prompts: List[bytes] = []

    async def sign_message(self, message: bytes) -> str:
        self.prompts.append(message)
        if self.decline:
            raise RuntimeError("User rejected the request")
        if self.empty:
            return ""
        return await self._inner.sign_message(message)


async def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def signer() -> RecordingSigner:
    return RecordingSigner()


@pytest.fixture
def network(signer) -> Network:
    return Network(signer)


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def recording_sleep(sleeps):
    async def _sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return _sleep
