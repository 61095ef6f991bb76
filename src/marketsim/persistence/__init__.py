"""Flat-file persistence for marketplace and ledger state."""

from .gateway import load_state, save_state

__all__ = ["load_state", "save_state"]
