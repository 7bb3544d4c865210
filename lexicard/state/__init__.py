"""Shared in-memory state and the change events it publishes."""

from lexicard.state.app_state import AppState
from lexicard.state.events import ChangeEvent, ChangeKind, ChangeOrigin

__all__ = ["AppState", "ChangeEvent", "ChangeKind", "ChangeOrigin"]
