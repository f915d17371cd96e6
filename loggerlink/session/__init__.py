"""Device session coordination."""
from __future__ import annotations

from .coordinator import SessionCoordinator

__all__ = ["SessionCoordinator"]
