"""
Local session cache.
"""

from .models import SESSION_VERSION, SessionState
from .store import SessionStore

__all__ = ["SESSION_VERSION", "SessionState", "SessionStore"]
