"""Platform registry: platform id to adapter instance."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fanout.platforms.bluesky import DEFAULT_SERVICE_URL, BlueskyAdapter
from fanout.platforms.mastodon import MastodonAdapter
from fanout.platforms.nostr import NostrAdapter
from fanout.platforms.relay import DEFAULT_RELAYS
from fanout.platforms.x import XAdapter

if TYPE_CHECKING:
    from collections.abc import Iterator

    from fanout.platforms.base import Platform, PlatformAdapter
    from fanout.platforms.nostr_event import EventSigner


class PlatformRegistry:
    """Lookup table of adapters keyed by their stable platform id."""

    def __init__(self) -> None:
        self._adapters: dict[str, PlatformAdapter] = {}

    def register(self, adapter: PlatformAdapter) -> None:
        """Add an adapter. Raises ValueError if its id is already taken."""
        platform_id = adapter.platform.id
        if platform_id in self._adapters:
            msg = f"Platform already registered: {platform_id}"
            raise ValueError(msg)
        self._adapters[platform_id] = adapter

    def get(self, platform_id: str) -> PlatformAdapter | None:
        return self._adapters.get(platform_id)

    def list_platforms(self) -> list[Platform]:
        """Return the descriptors of all registered platforms."""
        return [adapter.platform for adapter in self._adapters.values()]

    def platform_ids(self) -> list[str]:
        return list(self._adapters)

    def __contains__(self, platform_id: object) -> bool:
        return platform_id in self._adapters

    def __iter__(self) -> Iterator[str]:
        return iter(self._adapters)

    def __len__(self) -> int:
        return len(self._adapters)


def create_default_registry(
    *,
    http_timeout: float = 15.0,
    relay_timeout: float = 10.0,
    bluesky_service_url: str = DEFAULT_SERVICE_URL,
    default_relays: tuple[str, ...] | list[str] = DEFAULT_RELAYS,
    nip07_signer: EventSigner | None = None,
) -> PlatformRegistry:
    """Build the registry with the four built-in platforms."""
    registry = PlatformRegistry()
    registry.register(MastodonAdapter(timeout=http_timeout))
    registry.register(BlueskyAdapter(service_url=bluesky_service_url, timeout=http_timeout))
    registry.register(XAdapter(timeout=http_timeout))
    registry.register(
        NostrAdapter(
            default_relays=default_relays,
            relay_timeout=relay_timeout,
            timeout=http_timeout,
            nip07_signer=nip07_signer,
        )
    )
    return registry
