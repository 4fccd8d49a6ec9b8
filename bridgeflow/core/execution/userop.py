"""
ERC-4337 UserOperation models and helpers.
"""

from dataclasses import dataclass, replace
from typing import Any, Dict, Optional

from eth_abi import encode
from eth_utils import decode_hex, keccak, to_checksum_address


def _to_hex(value: int) -> str:
    return hex(value)


def _parse_hex(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    return int(value, 16)


# Gas fields a sponsor may calculate for us, RPC name -> attribute
SPONSOR_GAS_FIELDS = {
    "callGasLimit": "call_gas_limit",
    "verificationGasLimit": "verification_gas_limit",
    "preVerificationGas": "pre_verification_gas",
    "maxFeePerGas": "max_fee_per_gas",
    "maxPriorityFeePerGas": "max_priority_fee_per_gas",
}


@dataclass
class UnsignedOperation:
    """
    ERC-4337 UserOperation before signing.

    `target` is the contract the smart account calls; `call_data` is the
    account's execute call wrapping it. Gas values are raw units and stay
    zero until the sponsor fills them in.
    """
    sender: str
    target: str
    call_data: str
    chain_id: int
    nonce: int = 0
    init_code: str = "0x"
    call_gas_limit: int = 0
    verification_gas_limit: int = 0
    pre_verification_gas: int = 0
    max_fee_per_gas: int = 0
    max_priority_fee_per_gas: int = 0
    sponsorship_data: Optional[str] = None

    @property
    def is_sponsored(self) -> bool:
        return bool(self.sponsorship_data) and self.sponsorship_data != "0x"

    def with_sponsorship(
        self,
        paymaster_and_data: str,
        gas: Optional[Dict[str, Any]] = None,
    ) -> "UnsignedOperation":
        """Copy of this operation carrying sponsorship data and sponsor gas values."""
        updates: Dict[str, Any] = {"sponsorship_data": paymaster_and_data}
        for rpc_name, attr in SPONSOR_GAS_FIELDS.items():
            value = _parse_hex((gas or {}).get(rpc_name))
            if value is not None:
                updates[attr] = value
        return replace(self, **updates)

    def to_rpc_dict(self, signature: str = "0x") -> Dict[str, Any]:
        return {
            "sender": self.sender,
            "nonce": _to_hex(self.nonce),
            "initCode": self.init_code,
            "callData": self.call_data,
            "callGasLimit": _to_hex(self.call_gas_limit),
            "verificationGasLimit": _to_hex(self.verification_gas_limit),
            "preVerificationGas": _to_hex(self.pre_verification_gas),
            "maxFeePerGas": _to_hex(self.max_fee_per_gas),
            "maxPriorityFeePerGas": _to_hex(self.max_priority_fee_per_gas),
            "paymasterAndData": self.sponsorship_data or "0x",
            "signature": signature,
        }

    def hash(self, entry_point: str) -> bytes:
        """EntryPoint v0.6 userOpHash, bound to the entry point and chain id."""
        packed = encode(
            [
                "address", "uint256", "bytes32", "bytes32", "uint256",
                "uint256", "uint256", "uint256", "uint256", "bytes32",
            ],
            [
                to_checksum_address(self.sender),
                self.nonce,
                keccak(decode_hex(self.init_code)),
                keccak(decode_hex(self.call_data)),
                self.call_gas_limit,
                self.verification_gas_limit,
                self.pre_verification_gas,
                self.max_fee_per_gas,
                self.max_priority_fee_per_gas,
                keccak(decode_hex(self.sponsorship_data or "0x")),
            ],
        )
        return keccak(
            encode(
                ["bytes32", "address", "uint256"],
                [keccak(packed), to_checksum_address(entry_point), self.chain_id],
            )
        )


@dataclass(frozen=True)
class SignedOperation:
    """An operation plus the signature produced for it. Immutable."""
    operation: UnsignedOperation
    signature: str

    @property
    def chain_id(self) -> int:
        return self.operation.chain_id

    @property
    def sender(self) -> str:
        return self.operation.sender

    def to_rpc_dict(self) -> Dict[str, Any]:
        return self.operation.to_rpc_dict(signature=self.signature)


@dataclass
class UserOpReceipt:
    user_op_hash: str
    success: bool
    transaction_hash: Optional[str] = None
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    actual_gas_cost: Optional[int] = None
    reason: Optional[str] = None

    @classmethod
    def from_rpc(cls, user_op_hash: str, data: Dict[str, Any]) -> "UserOpReceipt":
        receipt = data.get("receipt") or {}
        success = data.get("success")
        if success is None:
            success = receipt.get("status") == "0x1"
        return cls(
            user_op_hash=user_op_hash,
            success=bool(success),
            transaction_hash=receipt.get("transactionHash"),
            block_number=_parse_hex(receipt.get("blockNumber")),
            gas_used=_parse_hex(receipt.get("gasUsed")),
            actual_gas_cost=_parse_hex(data.get("actualGasCost")),
            reason=data.get("reason") or None,
        )
