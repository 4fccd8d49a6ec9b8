from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]

# EntryPoint v0.6, shared by every supported chain
DEFAULT_ENTRYPOINT_ADDRESS = "0x5FF137D4b0FDCD49DcA30c7CF57E578a026d2789"
DEFAULT_MULTICHAIN_MODULE = "0x000000824dc138db84FD9109fc154bdad332Aa8E"


class ChainEndpoints(BaseModel):
    """Bundler and paymaster endpoints for one chain."""
    name: str
    bundler_url: str = ""
    paymaster_url: str = ""


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    # ERC-4337
    erc4337_entrypoint_address: str = Field(
        default=DEFAULT_ENTRYPOINT_ADDRESS,
        description="EntryPoint contract used for hashing and submission",
    )
    erc4337_account_execute_signature: str = Field(
        default="execute_ncC(address,uint256,bytes)",
        description="Smart account function wrapping a single call",
    )
    erc4337_account_execute_selector: str = Field(
        default="",
        description="Optional 4-byte selector override for the execute call",
    )
    erc4337_multichain_module_address: str = Field(
        default=DEFAULT_MULTICHAIN_MODULE,
        description="Validation module that verifies Merkle-rooted batch signatures",
    )
    erc4337_paymaster_rpc_method: str = Field(default="pm_sponsorUserOperation")
    smart_account_name: str = Field(default="BICONOMY")
    smart_account_version: str = Field(default="2.0.0")
    signature_valid_for_seconds: int = Field(
        default=0,
        ge=0,
        description="validUntil window for batch signatures (0 = no expiry)",
    )

    # Chains, keyed by chain id. Provided as JSON in CHAINS.
    chains: Dict[int, ChainEndpoints] = Field(
        default_factory=lambda: {
            43113: ChainEndpoints(name="avalanche-fuji"),
            11155111: ChainEndpoints(name="sepolia"),
        },
        description="Bundler/paymaster endpoints per chain id",
    )

    # Fixed route
    source_chain_id: int = Field(default=43113)
    destination_chain_id: int = Field(default=11155111)
    primary_chain_id: Optional[int] = Field(
        default=None,
        description="Chain whose account address identifies the wallet (default: destination)",
    )
    smart_account_address: str = Field(
        default="",
        description="Smart account address used on every chain without an override",
    )
    account_addresses: Dict[int, str] = Field(
        default_factory=dict,
        description="Per-chain smart account address overrides",
    )
    source_token_address: str = Field(default="0x57F1c63497AEe0bE305B8852b354CEc793da43bB")
    destination_token_address: str = Field(default="0x2c852e740B62308c46DD29B982FBb650D063Bd07")
    bridge_contract_address: str = Field(default="0xA7a034e0e5958C4F1b9051597e715d13059866f8")
    bridge_destination_chain_name: str = Field(default="Polygon")
    bridge_token_symbol: str = Field(default="aUSDC")
    token_decimals: int = Field(default=6, ge=0, le=36)
    delivery_requires_bridge: bool = Field(
        default=True,
        description="Skip the destination transfer when the bridge send did not confirm",
    )
    require_amount_conservation: bool = Field(
        default=False,
        description="Reject transfers whose source and destination amounts differ",
    )

    # Execution
    settling_strategy: str = Field(default="fixed", description="fixed, backoff or polling")
    settling_delay_seconds: float = Field(default=120.0, ge=0)
    settling_max_checks: int = Field(default=5, ge=1)
    settling_poll_interval_seconds: float = Field(default=10.0, gt=0)
    settling_timeout_seconds: float = Field(default=600.0, gt=0)
    confirmation_timeout_seconds: float = Field(default=180.0, gt=0)
    receipt_poll_interval_seconds: float = Field(default=2.0, gt=0)
    max_submit_attempts: int = Field(default=3, ge=1)
    transfer_ledger_size: int = Field(
        default=512,
        ge=1,
        description="Finished transfers remembered for idempotent re-invocation",
    )
    request_timeout_seconds: int = Field(default=30, description="Request timeout")

    # Record keeping
    record_service_url: str = Field(
        default="http://localhost:3000/api",
        description="Base URL of the transaction record-keeping service",
    )
    record_include_delivery_status: bool = Field(
        default=False,
        description="Send deliveryStatus alongside the saved transaction",
    )

    # Local development signer (never logged)
    local_signer_private_key: str = Field(default="", description="Hex private key for the CLI signer")

    # Local session cache
    session_cache_path: Path = Field(default=BASE_DIR / ".bridgeflow" / "session.json")

    @property
    def wallet_chain_id(self) -> int:
        return self.primary_chain_id or self.destination_chain_id

    def account_address_for(self, chain_id: int) -> str:
        return self.account_addresses.get(chain_id) or self.smart_account_address

    def endpoints_for(self, chain_id: int) -> Optional[ChainEndpoints]:
        return self.chains.get(chain_id)

    def redacted(self) -> Dict[str, Any]:
        """Settings snapshot safe for logs (endpoint URLs often embed API keys)."""
        data = self.model_dump(exclude={"chains", "local_signer_private_key"})
        data["chains"] = {chain_id: ep.name for chain_id, ep in self.chains.items()}
        return data


# Global settings instance
settings = Settings()
