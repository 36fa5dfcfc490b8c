"""Selective sync rules, bandwidth throttling, resumable transfer checkpoints and file version history."""

__version__ = "0.1.0"