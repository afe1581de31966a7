"""Workflow definitions, transition resolution and instruction rendering."""

__all__: list[str] = []
