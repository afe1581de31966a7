"""Conversation orchestration and state persistence."""

__all__: list[str] = []
