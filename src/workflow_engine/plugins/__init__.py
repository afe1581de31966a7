"""Plugin contracts, registry and the bundled plugins."""

__all__: list[str] = []
