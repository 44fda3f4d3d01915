"""Read-only channel catalog."""

from __future__ import annotations

from collections.abc import Iterable

from aiostreamrelay.models.channel import ChannelDefinition, RelayConfig


class ChannelCatalog:
    """Ordered collection of channel definitions, keyed by channel name."""

    def __init__(self, definitions: Iterable[ChannelDefinition]) -> None:
        """Initialize the catalog. Duplicate channel names raise ValueError."""
        self._definitions: dict[str, ChannelDefinition] = {}
        for definition in definitions:
            if definition.name in self._definitions:
                raise ValueError(f"Duplicate channel name: {definition.name!r}")
            self._definitions[definition.name] = definition

    @classmethod
    def from_config(cls, config: RelayConfig) -> ChannelCatalog:
        """Build a catalog from a loaded RelayConfig."""
        return cls(config.channels)

    def __len__(self) -> int:
        """Return the number of channels, enabled or not."""
        return len(self._definitions)

    def list_enabled(self) -> list[ChannelDefinition]:
        """Return all enabled channels in catalog order."""
        return [d for d in self._definitions.values() if d.enabled]

    def lookup(self, name: str) -> ChannelDefinition | None:
        """Return the enabled channel with this name, if any."""
        definition = self._definitions.get(name)
        if definition is None or not definition.enabled:
            return None
        return definition

    def categories(self) -> dict[str, list[ChannelDefinition]]:
        """Group enabled channels by category, keeping catalog order."""
        grouped: dict[str, list[ChannelDefinition]] = {}
        for definition in self.list_enabled():
            grouped.setdefault(definition.category, []).append(definition)
        return grouped
