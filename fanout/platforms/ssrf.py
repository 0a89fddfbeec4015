"""Connections to user-chosen hosts that refuse non-public addresses at connect time."""

from __future__ import annotations

import asyncio
import ipaddress
import socket
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, cast

import httpcore
import httpx

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable

_BLOCKED_HOSTNAMES = frozenset({"localhost", "localhost.localdomain", "ip6-localhost"})

_SocketOption = (
    tuple[int, int, int] | tuple[int, int, bytes | bytearray] | tuple[int, int, None, int]
)


def is_public_ip(ip_text: str) -> bool:
    """Return True when the address is globally routable."""
    ip = ipaddress.ip_address(ip_text)
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return not (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_multicast
        or ip.is_reserved
        or ip.is_unspecified
    )


class NonPublicAddressError(OSError):
    """A user-supplied host is, or resolves to, a non-public address."""


async def resolve_public_address(host: str, port: int) -> str:
    """Resolve ``host`` and return the address to connect to.

    Every address the name resolves to must be public; the first one is
    returned so the caller connects to exactly what was checked.
    """
    if host.strip().lower() in _BLOCKED_HOSTNAMES:
        msg = f"Refusing to connect to {host!r}"
        raise NonPublicAddressError(msg)

    loop = asyncio.get_running_loop()
    try:
        addr_infos = await loop.getaddrinfo(host, port, proto=socket.IPPROTO_TCP)
    except socket.gaierror as exc:
        msg = f"DNS resolution failed for {host!r}"
        raise NonPublicAddressError(msg) from exc
    if not addr_infos:
        msg = f"DNS resolution returned no addresses for {host!r}"
        raise NonPublicAddressError(msg)

    for *_, sockaddr in addr_infos:
        ip_text = str(sockaddr[0])
        if not is_public_ip(ip_text):
            msg = f"Refusing to connect to {host!r}: resolves to non-public address {ip_text}"
            raise NonPublicAddressError(msg)
    return str(addr_infos[0][4][0])


class PublicOnlyBackend(httpcore.AsyncNetworkBackend):
    """Network backend that resolves the host itself and connects only to public IPs.

    Resolution and validation happen inside ``connect_tcp`` and the connection
    is made to the validated address, so a DNS answer cannot change between
    the check and the connect.
    """

    def __init__(self) -> None:
        self._inner = cast("httpcore.AsyncNetworkBackend", httpcore.AnyIOBackend())

    async def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: float | None = None,
        local_address: str | None = None,
        socket_options: Iterable[_SocketOption] | None = None,
    ) -> httpcore.AsyncNetworkStream:
        try:
            address = await resolve_public_address(host, port)
        except NonPublicAddressError as exc:
            raise httpcore.ConnectError(str(exc)) from exc

        return await self._inner.connect_tcp(
            address,
            port,
            timeout=timeout,
            local_address=local_address,
            socket_options=socket_options,
        )

    async def connect_unix_socket(
        self,
        path: str,
        timeout: float | None = None,
        socket_options: Iterable[_SocketOption] | None = None,
    ) -> httpcore.AsyncNetworkStream:
        msg = "Unix socket connections are not allowed"
        raise httpcore.ConnectError(msg)

    async def sleep(self, seconds: float) -> None:
        await self._inner.sleep(seconds)


@asynccontextmanager
async def public_client(
    timeout: float | httpx.Timeout | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AsyncIterator[httpx.AsyncClient]:
    """Yield an AsyncClient for hosts supplied by users.

    An explicit ``transport`` replaces the public-only transport entirely.
    """
    if transport is None:
        public_transport = httpx.AsyncHTTPTransport()
        # httpx keeps its connection pool on a private attribute (httpx 0.28.x).
        public_transport._pool = httpcore.AsyncConnectionPool(
            network_backend=PublicOnlyBackend(),
        )
        transport = public_transport
    async with httpx.AsyncClient(transport=transport, timeout=timeout) as client:
        yield client
