"""Broadcast signed Nostr events to relays over short-lived websockets."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

import websockets
from websockets.exceptions import WebSocketException

from fanout.platforms.ssrf import resolve_public_address

logger = logging.getLogger(__name__)

DEFAULT_RELAYS: tuple[str, ...] = (
    "wss://relay.damus.io",
    "wss://nos.lol",
    "wss://relay.nostr.band",
)


@dataclass(frozen=True)
class RelayPublishResult:
    """Outcome of sending one event to one relay."""

    url: str
    success: bool
    message: str = ""


def normalize_relay_urls(relays: Any) -> list[str]:
    """Turn a list, or a comma/whitespace separated string, into unique ws(s) URLs."""
    if relays is None:
        return []
    if isinstance(relays, str):
        candidates = relays.replace(",", " ").split()
    elif isinstance(relays, (list, tuple)):
        candidates = []
        for item in relays:
            if isinstance(item, dict):
                if item.get("write", True):
                    candidates.append(str(item.get("url", "")))
            else:
                candidates.append(str(item))
    else:
        return []

    urls: list[str] = []
    for candidate in candidates:
        url = candidate.strip().rstrip("/")
        parsed = urlparse(url)
        if parsed.scheme not in ("ws", "wss") or not parsed.hostname:
            logger.warning("Ignoring invalid relay URL %r", candidate)
            continue
        if url not in urls:
            urls.append(url)
    return urls


async def _connect_kwargs(relay_url: str) -> dict[str, Any]:
    """Pin the connection to a checked public address, keeping the hostname for TLS."""
    parsed = urlparse(relay_url)
    hostname = parsed.hostname or ""
    port = parsed.port or (443 if parsed.scheme == "wss" else 80)
    address = await resolve_public_address(hostname, port)
    kwargs: dict[str, Any] = {"host": address, "port": port}
    if parsed.scheme == "wss":
        kwargs["server_hostname"] = hostname
    return kwargs


async def publish_to_relay(
    relay_url: str,
    event: dict[str, Any],
    timeout: float = 10.0,
    *,
    allow_private: bool = False,
) -> RelayPublishResult:
    """Open a connection, send ``["EVENT", event]`` and wait for the matching ``OK``.

    Relay hosts that resolve to loopback, private or link-local addresses are
    refused unless ``allow_private`` is set.
    """
    try:
        async with asyncio.timeout(timeout):
            connect_kwargs = {} if allow_private else await _connect_kwargs(relay_url)
            async with websockets.connect(
                relay_url, open_timeout=timeout, **connect_kwargs
            ) as ws:
                await ws.send(json.dumps(["EVENT", event], ensure_ascii=False))
                while True:
                    frame = json.loads(await ws.recv())
                    if not isinstance(frame, list) or not frame:
                        continue
                    if frame[0] == "OK" and len(frame) >= 3 and frame[1] == event["id"]:
                        message = str(frame[3]) if len(frame) > 3 else ""
                        return RelayPublishResult(relay_url, bool(frame[2]), message)
                    if frame[0] == "NOTICE" and len(frame) > 1:
                        logger.info("Relay %s notice: %s", relay_url, frame[1])
    except TimeoutError:
        return RelayPublishResult(relay_url, False, "timed out")
    except (OSError, WebSocketException, ValueError) as exc:
        return RelayPublishResult(relay_url, False, str(exc) or type(exc).__name__)


async def publish_to_relays(
    relay_urls: list[str],
    event: dict[str, Any],
    timeout: float = 10.0,
    *,
    allow_private: bool = False,
) -> list[RelayPublishResult]:
    """Send the event to every relay concurrently; one relay failing never affects another."""
    results = await asyncio.gather(
        *(
            publish_to_relay(url, event, timeout, allow_private=allow_private)
            for url in relay_urls
        ),
    )
    for result in results:
        if not result.success:
            logger.warning("Failed to publish to relay %s: %s", result.url, result.message)
    accepted = sum(1 for r in results if r.success)
    logger.info("Published event %s to %d/%d relays", event.get("id"), accepted, len(results))
    return list(results)
