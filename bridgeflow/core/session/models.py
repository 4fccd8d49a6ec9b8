"""
Local session cache model.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

SESSION_VERSION = 1


class SessionState(BaseModel):
    """
    Last-known wallet view, cached for fast reload.

    Advisory only: account addresses are re-checked against live handles
    before any transfer uses them.
    """
    version: int = SESSION_VERSION
    main_address: Optional[str] = None
    account_addresses: Dict[int, str] = Field(default_factory=dict)
    balances: Dict[int, str] = Field(default_factory=dict)
    transactions: List[Dict[str, Any]] = Field(default_factory=list)
    saved_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
