"""Nostr keys, NIP-01 event ids and BIP-340 signatures."""

from __future__ import annotations

import hashlib
import json
import os
import re
import time
from typing import Any, Protocol, runtime_checkable

from bech32 import bech32_decode, bech32_encode, convertbits
from coincurve import PrivateKey, PublicKeyXOnly

TEXT_NOTE_KIND = 1

_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")
_PUBKEY_RE = re.compile(r"^[0-9a-f]{64}$")


class NostrKeyError(ValueError):
    """Raised for keys that are neither 64-char hex nor valid bech32."""


def _decode_bech32(value: str, expected_hrp: str) -> bytes:
    hrp, data = bech32_decode(value)
    if hrp is None or data is None:
        msg = f"Invalid bech32 {expected_hrp} string"
        raise NostrKeyError(msg)
    if hrp != expected_hrp:
        msg = f"Expected {expected_hrp} key, got {hrp}"
        raise NostrKeyError(msg)
    decoded = convertbits(data, 5, 8, False)
    if decoded is None or len(decoded) != 32:
        msg = f"Invalid {expected_hrp} payload"
        raise NostrKeyError(msg)
    return bytes(decoded)


def _encode_bech32(hrp: str, payload: bytes) -> str:
    words = convertbits(payload, 8, 5, True)
    if words is None:
        msg = f"Cannot encode {hrp} payload"
        raise NostrKeyError(msg)
    return bech32_encode(hrp, words)


def normalize_private_key(raw: str) -> str:
    """Return the private key as 64 lowercase hex chars.

    Accepts ``nsec1...`` or hex; short hex is left-padded with zeros.
    """
    value = raw.strip()
    if value.lower().startswith("nsec1"):
        return _decode_bech32(value.lower(), "nsec").hex()
    if not value or not _HEX_RE.match(value) or len(value) > 64:
        msg = "Private key must be 64 hex characters or an nsec1 key"
        raise NostrKeyError(msg)
    return value.lower().zfill(64)


def normalize_public_key(raw: str) -> str:
    """Return the public key as 64 lowercase hex chars, accepting ``npub1...``."""
    value = raw.strip()
    if value.lower().startswith("npub1"):
        return _decode_bech32(value.lower(), "npub").hex()
    value = value.lower()
    if not _PUBKEY_RE.match(value):
        msg = "Invalid pubkey format. Must be 64 hex characters."
        raise NostrKeyError(msg)
    return value


def _private_key(private_key_hex: str) -> PrivateKey:
    try:
        return PrivateKey(bytes.fromhex(private_key_hex))
    except ValueError as exc:
        msg = "Private key is outside the secp256k1 range"
        raise NostrKeyError(msg) from exc


def derive_public_key(private_key_hex: str) -> str:
    """Return the x-only public key (hex) for a normalized private key."""
    compressed = _private_key(private_key_hex).public_key.format(compressed=True)
    return compressed[1:].hex()


def public_key_to_npub(public_key_hex: str) -> str:
    return _encode_bech32("npub", bytes.fromhex(public_key_hex))


def note_id_to_bech32(event_id: str) -> str:
    """Encode an event id as a NIP-19 ``note1...`` string."""
    return _encode_bech32("note", bytes.fromhex(event_id))


def build_event(
    pubkey: str,
    content: str,
    *,
    kind: int = TEXT_NOTE_KIND,
    tags: list[list[str]] | None = None,
    created_at: int | None = None,
) -> dict[str, Any]:
    """Build an unsigned event."""
    return {
        "pubkey": pubkey,
        "created_at": created_at if created_at is not None else int(time.time()),
        "kind": kind,
        "tags": [list(tag) for tag in (tags or [])],
        "content": content,
    }


def serialize_event(event: dict[str, Any]) -> bytes:
    """NIP-01 canonical serialization used for the event id."""
    payload = [
        0,
        event["pubkey"],
        event["created_at"],
        event["kind"],
        event["tags"],
        event["content"],
    ]
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def compute_event_id(event: dict[str, Any]) -> str:
    return hashlib.sha256(serialize_event(event)).hexdigest()


def sign_event(
    event: dict[str, Any],
    private_key_hex: str,
    aux_rand: bytes | None = None,
) -> dict[str, Any]:
    """Return a copy of ``event`` with ``id`` and ``sig`` filled in.

    ``aux_rand`` is the 32 bytes of BIP-340 auxiliary randomness; fixing it
    makes the signature deterministic.
    """
    signed = dict(event)
    event_id = compute_event_id(signed)
    key = _private_key(private_key_hex)
    signature = key.sign_schnorr(
        bytes.fromhex(event_id),
        aux_rand if aux_rand is not None else os.urandom(32),
    )
    signed["id"] = event_id
    signed["sig"] = signature.hex()
    return signed


def verify_event(event: dict[str, Any]) -> bool:
    """Check the id and Schnorr signature of a signed event."""
    try:
        if compute_event_id(event) != event["id"]:
            return False
        pubkey = PublicKeyXOnly(bytes.fromhex(event["pubkey"]))
        return bool(pubkey.verify(bytes.fromhex(event["sig"]), bytes.fromhex(event["id"])))
    except (KeyError, ValueError, TypeError):
        return False


@runtime_checkable
class EventSigner(Protocol):
    """Something that can sign Nostr events on behalf of one key."""

    async def get_public_key(self) -> str: ...

    async def sign_event(self, event: dict[str, Any]) -> dict[str, Any]: ...


class LocalKeySigner:
    """Signer holding a private key in memory for the duration of one post."""

    def __init__(self, private_key: str, aux_rand: bytes | None = None) -> None:
        self._private_key = normalize_private_key(private_key)
        self._public_key = derive_public_key(self._private_key)
        self._aux_rand = aux_rand

    async def get_public_key(self) -> str:
        return self._public_key

    async def sign_event(self, event: dict[str, Any]) -> dict[str, Any]:
        if event.get("pubkey") != self._public_key:
            event = {**event, "pubkey": self._public_key}
        return sign_event(event, self._private_key, self._aux_rand)
