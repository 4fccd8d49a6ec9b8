"""
Versioned JSON store for the local session cache.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional

from pydantic import ValidationError

from ...config import settings
from ..accounts.models import ChainAccountResolver
from ..transfer.models import TransferRecord
from .models import SESSION_VERSION, SessionState

logger = logging.getLogger(__name__)


class SessionStore:
    """
    Loads and saves SessionState as JSON.

    A file written by another version, or one that does not parse, is
    treated as absent and removed.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path or settings.session_cache_path)

    def load(self) -> Optional[SessionState]:
        if not self.path.exists():
            return None

        try:
            state = SessionState.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, ValidationError, ValueError) as exc:
            logger.warning(f"Discarding unreadable session cache {self.path}: {exc}")
            self.clear()
            return None

        if state.version != SESSION_VERSION:
            logger.info(f"Discarding session cache version {state.version} (want {SESSION_VERSION})")
            self.clear()
            return None
        return state

    def save(self, state: SessionState) -> None:
        state.saved_at = datetime.now(timezone.utc)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(state.model_dump_json(indent=2), encoding="utf-8")
        tmp.replace(self.path)

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass

    async def revalidate(
        self,
        state: SessionState,
        resolver: ChainAccountResolver,
        chain_ids: Iterable[int],
        wallet_chain_id: Optional[int] = None,
    ) -> SessionState:
        """
        Check cached addresses against live handles and return a corrected copy.

        Cached balances for a chain whose address changed are dropped, as is the
        cached history when the main address changed.

        Raises:
            AccountResolutionError: If a chain no longer resolves
        """
        fresh = state.model_copy(deep=True)

        for chain_id in chain_ids:
            handle = await resolver.resolve(chain_id)
            cached = fresh.account_addresses.get(chain_id)
            if cached is not None and cached.lower() != handle.address.lower():
                logger.warning(
                    f"Cached account for chain {chain_id} is stale ({cached} != {handle.address})"
                )
                fresh.balances.pop(chain_id, None)
            fresh.account_addresses[chain_id] = handle.address

        if wallet_chain_id is not None and wallet_chain_id in fresh.account_addresses:
            live_main = fresh.account_addresses[wallet_chain_id]
            if fresh.main_address and fresh.main_address.lower() != live_main.lower():
                fresh.transactions = []
            fresh.main_address = live_main

        return fresh

    def record_history(self, state: SessionState, history: List[TransferRecord]) -> SessionState:
        """Replace the cached history and save."""
        state.transactions = [record.to_dict() for record in history]
        self.save(state)
        return state
