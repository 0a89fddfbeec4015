"""OAuth 1.0a (HMAC-SHA1) request signing for the X API."""

from __future__ import annotations

import base64
import hashlib
import hmac
import secrets
import time
from collections.abc import Mapping
from urllib.parse import quote

SIGNATURE_METHOD = "HMAC-SHA1"
OAUTH_VERSION = "1.0"


def percent_encode(value: str) -> str:
    """Percent-encode per RFC 3986: only ALPHA, DIGIT and ``-._~`` stay literal."""
    return quote(value, safe="")


def signature_base_string(method: str, url: str, params: Mapping[str, str]) -> str:
    """Build ``METHOD&enc(url)&enc(sorted k=v pairs)``."""
    pairs = sorted((percent_encode(k), percent_encode(v)) for k, v in params.items())
    param_string = "&".join(f"{k}={v}" for k, v in pairs)
    return "&".join(
        (method.upper(), percent_encode(url), percent_encode(param_string)),
    )


def sign(
    method: str,
    url: str,
    params: Mapping[str, str],
    consumer_secret: str,
    token_secret: str,
) -> str:
    """Return the base64 HMAC-SHA1 signature of the request."""
    key = f"{percent_encode(consumer_secret)}&{percent_encode(token_secret)}"
    base = signature_base_string(method, url, params)
    digest = hmac.new(key.encode(), base.encode(), hashlib.sha1).digest()
    return base64.b64encode(digest).decode()


def authorization_header(
    method: str,
    url: str,
    *,
    consumer_key: str,
    consumer_secret: str,
    token: str,
    token_secret: str,
    params: Mapping[str, str] | None = None,
    nonce: str | None = None,
    timestamp: str | None = None,
) -> str:
    """Build the ``Authorization: OAuth ...`` header value for one request.

    ``params`` holds query-string or form parameters that take part in the
    signature. JSON and multipart bodies are not signed.
    """
    oauth_params = {
        "oauth_consumer_key": consumer_key,
        "oauth_nonce": nonce if nonce is not None else secrets.token_hex(16),
        "oauth_signature_method": SIGNATURE_METHOD,
        "oauth_timestamp": timestamp if timestamp is not None else str(int(time.time())),
        "oauth_token": token,
        "oauth_version": OAUTH_VERSION,
    }
    signed = {**(params or {}), **oauth_params}
    oauth_params["oauth_signature"] = sign(method, url, signed, consumer_secret, token_secret)
    fields = ", ".join(
        f'{percent_encode(k)}="{percent_encode(v)}"' for k, v in sorted(oauth_params.items())
    )
    return f"OAuth {fields}"
