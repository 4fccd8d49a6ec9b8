"""
UserOperation calldata builders.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence

from eth_abi import encode
from eth_utils import decode_hex, keccak, to_checksum_address

from bridgeflow.config import settings


ERC20_APPROVE_SELECTOR = "0x095ea7b3"  # approve(address,uint256)
ERC20_TRANSFER_SELECTOR = "0xa9059cbb"  # transfer(address,uint256)
ERC20_BALANCE_OF_SELECTOR = "0x70a08231"  # balanceOf(address)
BRIDGE_SEND_SIGNATURE = "send(string,string,uint256)"


def _selector_from_signature(signature: str) -> str:
    selector = keccak(text=signature)[:4].hex()
    return f"0x{selector}"


def _encode_call(selector: str, types: Sequence[str], args: Sequence[Any]) -> str:
    return selector + encode(list(types), list(args)).hex()


def get_execute_selector(
    signature: Optional[str] = None,
    selector_override: Optional[str] = None,
) -> str:
    selector_override = selector_override or settings.erc4337_account_execute_selector
    if selector_override:
        if not selector_override.startswith("0x") or len(selector_override) != 10:
            raise ValueError("Execute selector override must be 4 bytes (0x........)")
        return selector_override

    signature = signature or settings.erc4337_account_execute_signature
    return _selector_from_signature(signature)


def build_execute_call_data(
    to_address: str,
    value_wei: int,
    data: str,
    *,
    signature: Optional[str] = None,
    selector_override: Optional[str] = None,
) -> str:
    """
    Build calldata for the smart account's execute(address,uint256,bytes).
    """
    selector = get_execute_selector(signature, selector_override)
    return _encode_call(
        selector,
        ["address", "uint256", "bytes"],
        [to_checksum_address(to_address), value_wei, decode_hex(data)],
    )


def build_erc20_approve_call(spender: str, amount: int) -> str:
    return _encode_call(ERC20_APPROVE_SELECTOR, ["address", "uint256"], [to_checksum_address(spender), amount])


def build_erc20_transfer_call(recipient: str, amount: int) -> str:
    return _encode_call(ERC20_TRANSFER_SELECTOR, ["address", "uint256"], [to_checksum_address(recipient), amount])


def build_erc20_balance_of_call(owner: str) -> str:
    return _encode_call(ERC20_BALANCE_OF_SELECTOR, ["address"], [to_checksum_address(owner)])


def build_bridge_send_call(destination_chain: str, token_symbol: str, amount: int) -> str:
    """
    Build calldata for the bridge sender's send(string,string,uint256).
    """
    return _encode_call(
        _selector_from_signature(BRIDGE_SEND_SIGNATURE),
        ["string", "string", "uint256"],
        [destination_chain, token_symbol, amount],
    )


def build_entrypoint_get_nonce_call(sender: str, key: int = 0) -> str:
    """
    Build calldata for EntryPoint.getNonce(address,uint192).
    """
    return _encode_call(
        _selector_from_signature("getNonce(address,uint192)"),
        ["address", "uint192"],
        [to_checksum_address(sender), key],
    )
