"""Nostr posting: sign a kind-1 note and broadcast it to relays."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

from fanout.platforms.base import (
    CredentialError,
    Platform,
    PostContent,
    PostResult,
    TestResult,
    credential_str,
)
from fanout.platforms.media import upload_to_blossom
from fanout.platforms.nostr_event import (
    LocalKeySigner,
    NostrKeyError,
    build_event,
    derive_public_key,
    normalize_private_key,
    normalize_public_key,
    note_id_to_bech32,
    public_key_to_npub,
    verify_event,
)
from fanout.platforms.relay import DEFAULT_RELAYS, normalize_relay_urls, publish_to_relays
from fanout.platforms.ssrf import public_client

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    import httpx

    from fanout.platforms.nostr_event import EventSigner
    from fanout.platforms.relay import RelayPublishResult

    RelayPublisher = Callable[[list[str], dict[str, Any], float], Awaitable[list[RelayPublishResult]]]

logger = logging.getLogger(__name__)

METHOD_NIP07 = "nip07"
METHOD_PRIVATE_KEY = "private_key"

BLOSSOM_REQUIRED_MESSAGE = (
    "Blossom server is required for image uploads. "
    "Please configure a Blossom server in your Nostr settings."
)


def normalize_blossom_url(raw: str) -> str:
    """Validate an http(s) Blossom server URL and strip trailing slashes."""
    url = raw.strip().rstrip("/")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        msg = "Invalid Blossom server URL. Must start with http:// or https://"
        raise CredentialError(msg)
    return url


@dataclass(frozen=True)
class NostrCredentials:
    method: str
    pubkey: str
    private_key: str | None = None
    relays: list[str] = field(default_factory=list)
    blossom_server: str | None = None

    @classmethod
    def from_mapping(cls, credentials: Mapping[str, Any]) -> NostrCredentials:
        raw_private = credential_str(credentials, "privateKey", "private_key", "nsec")
        raw_pubkey = credential_str(credentials, "pubkey", "publicKey", "npub")
        method = credential_str(credentials, "method") or (
            METHOD_PRIVATE_KEY if raw_private else METHOD_NIP07
        )
        if method not in (METHOD_NIP07, METHOD_PRIVATE_KEY):
            msg = f"Unknown Nostr signing method: {method}"
            raise CredentialError(msg)

        try:
            if method == METHOD_PRIVATE_KEY:
                if not raw_private:
                    msg = "Missing required Nostr credentials: privateKey"
                    raise CredentialError(msg)
                private_key = normalize_private_key(raw_private)
                pubkey = derive_public_key(private_key)
                if raw_pubkey and normalize_public_key(raw_pubkey) != pubkey:
                    msg = "Nostr pubkey does not match the private key"
                    raise CredentialError(msg)
            else:
                if not raw_pubkey:
                    msg = "Missing required Nostr credentials: pubkey"
                    raise CredentialError(msg)
                private_key = None
                pubkey = normalize_public_key(raw_pubkey)
        except NostrKeyError as exc:
            raise CredentialError(str(exc)) from exc

        raw_blossom = credential_str(credentials, "blossomServer", "blossom_server")
        return cls(
            method=method,
            pubkey=pubkey,
            private_key=private_key,
            relays=normalize_relay_urls(credentials.get("relays")),
            blossom_server=normalize_blossom_url(raw_blossom) if raw_blossom else None,
        )


class NostrAdapter:
    """Adapter for Nostr relays, with Blossom servers for images.

    ``nip07_signer`` is the external signer used for accounts whose key never
    reaches the server. ``publisher`` broadcasts signed events and defaults to
    websocket delivery.
    """

    platform = Platform(id="nostr", name="Nostr")

    def __init__(
        self,
        *,
        default_relays: tuple[str, ...] | list[str] = DEFAULT_RELAYS,
        relay_timeout: float = 10.0,
        timeout: float = 15.0,
        nip07_signer: EventSigner | None = None,
        publisher: RelayPublisher | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._default_relays = list(default_relays)
        self._relay_timeout = relay_timeout
        self._timeout = timeout
        self._nip07_signer = nip07_signer
        self._publish = publisher or publish_to_relays
        self._transport = transport

    def resolve_relays(self, content: PostContent, creds: NostrCredentials) -> list[str]:
        """Relays from user settings, then credentials, then defaults."""
        return (
            normalize_relay_urls(content.metadata.get("relays"))
            or creds.relays
            or list(self._default_relays)
        )

    def _signer(self, creds: NostrCredentials) -> EventSigner | None:
        if creds.method == METHOD_PRIVATE_KEY and creds.private_key:
            return LocalKeySigner(creds.private_key)
        return self._nip07_signer

    async def test_connection(self, credentials: Mapping[str, Any]) -> TestResult:
        """Validate key and Blossom URL formats locally; nothing is sent."""
        try:
            creds = NostrCredentials.from_mapping(credentials)
        except CredentialError as exc:
            return TestResult(success=False, message=str(exc))

        if creds.method == METHOD_NIP07:
            message = "Pubkey format validated (NIP-07 not available in server context)"
        else:
            message = "Private key validated"
        return TestResult(
            success=True,
            message=message,
            data={
                "pubkey": creds.pubkey,
                "npub": public_key_to_npub(creds.pubkey),
                "method": creds.method,
                "relays": creds.relays or list(self._default_relays),
                "blossomServer": creds.blossom_server,
            },
        )

    async def _upload_images(
        self,
        content: PostContent,
        server: str,
        signer: EventSigner,
    ) -> list[str]:
        urls: list[str] = []
        async with public_client(self._timeout, self._transport) as client:
            for index, image in enumerate(content.images):
                upload = await upload_to_blossom(client, server, signer, image)
                if upload.success and upload.url:
                    urls.append(upload.url)
                else:
                    logger.warning("Blossom image %d upload failed: %s", index, upload.error)
        if not urls:
            logger.warning("No Blossom images uploaded, posting text only")
        return urls

    async def post(self, content: PostContent, credentials: Mapping[str, Any]) -> PostResult:
        """Upload images to Blossom, sign a kind-1 note and publish it."""
        try:
            creds = NostrCredentials.from_mapping(credentials)
        except CredentialError as exc:
            return PostResult.failed(str(exc))

        if content.has_images and not creds.blossom_server:
            return PostResult.failed(BLOSSOM_REQUIRED_MESSAGE)

        signer = self._signer(creds)
        if signer is None:
            return PostResult.failed("NIP-07 signer not available")

        relays = self.resolve_relays(content, creds)

        image_urls: list[str] = []
        if content.has_images and creds.blossom_server:
            image_urls = await self._upload_images(content, creds.blossom_server, signer)
        if image_urls:
            content = replace(content, text=f"{content.text}\n\n" + "\n".join(image_urls))

        event = build_event(
            creds.pubkey,
            content.text,
            tags=[["r", url] for url in image_urls],
        )
        signed = await signer.sign_event(event)
        if not verify_event(signed):
            return PostResult.failed("Nostr signer returned an invalid signature")
        if signed.get("pubkey") != creds.pubkey:
            return PostResult.failed("Nostr signer used a different key than the configured pubkey")

        results = await self._publish(relays, signed, self._relay_timeout)
        if not any(r.success for r in results):
            failures = "; ".join(f"{r.url}: {r.message}" for r in results)
            return PostResult.failed(f"Failed to publish to any relay: {failures}")

        return PostResult(
            success=True,
            post_id=signed["id"],
            url=f"nostr:{note_id_to_bech32(signed['id'])}",
        )
