from __future__ import annotations

from typing import Any, Dict, Optional, Protocol

import httpx

DEFAULT_SOCKET = "/var/run/tailscale/tailscaled.sock"

# tailscaled ignores the host part when talking over its unix socket
LOCALAPI_BASE = "http://local-tailscaled.sock"


class IdentityResolutionError(Exception):
    pass


class IdentityResolver(Protocol):
    async def resolve(self, peer_addr: str) -> str: ...


def format_peer_addr(host: str, port: int) -> str:
    if ":" in host and not host.startswith("["):
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def _node_name(reply: Dict[str, Any]) -> Optional[str]:
    node = reply.get("Node")
    if not isinstance(node, dict):
        return None
    name = node.get("Name")
    return name if isinstance(name, str) and name else None


class TailscaleWhois:
    """Maps a tailnet peer ip:port to its node name via the tailscaled LocalAPI."""

    def __init__(
        self,
        socket_path: str = DEFAULT_SOCKET,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.socket_path = socket_path
        self.timeout = timeout
        self.transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=LOCALAPI_BASE,
                transport=self.transport or httpx.AsyncHTTPTransport(uds=self.socket_path),
                timeout=self.timeout,
            )
        return self._client

    async def resolve(self, peer_addr: str) -> str:
        try:
            resp = await self._get_client().get("/localapi/v0/whois", params={"addr": peer_addr})
        except httpx.HTTPError as e:
            raise IdentityResolutionError(f"whois {peer_addr}: {e}") from e

        if resp.status_code != 200:
            raise IdentityResolutionError(f"whois {peer_addr}: status={resp.status_code} {resp.text.strip()}")

        try:
            reply = resp.json()
        except ValueError as e:
            raise IdentityResolutionError(f"whois {peer_addr}: bad reply: {e}") from e

        name = _node_name(reply) if isinstance(reply, dict) else None
        if not name:
            raise IdentityResolutionError(f"whois {peer_addr}: reply has no node name")
        return name

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class StaticIdentity:
    """Every caller is the same node. For running without tailscaled."""

    def __init__(self, identity: str):
        self.identity = identity

    async def resolve(self, peer_addr: str) -> str:
        return self.identity
