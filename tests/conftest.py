from __future__ import annotations

import datetime as dt
from pathlib import Path
from typing import Callable, Optional

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID
from fastapi.testclient import TestClient

from cacher.overlay.whois import IdentityResolutionError
from cacher.runtime import CacherRuntime
from main import Settings, create_app


def make_cert_pem(not_after: dt.datetime, common_name: str = "m3.tailnet.net") -> str:
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(min(not_after, dt.datetime.now(dt.timezone.utc)) - dt.timedelta(days=1))
        .not_valid_after(not_after)
        .sign(key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.PEM).decode("ascii")


def make_key_pem() -> str:
    key = ec.generate_private_key(ec.SECP256R1())
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


class FakeResolver:
    """Resolves every caller to whatever identity the test set last."""

    def __init__(self, identity: str = "m3.tailnet.net."):
        self.identity = identity
        self.error: Optional[str] = None
        self.seen: list[str] = []

    async def resolve(self, peer_addr: str) -> str:
        self.seen.append(peer_addr)
        if self.error:
            raise IdentityResolutionError(self.error)
        return self.identity


@pytest.fixture
def cert_pem() -> str:
    return make_cert_pem(dt.datetime.now(dt.timezone.utc) + dt.timedelta(days=10, hours=1))


@pytest.fixture
def key_pem() -> str:
    return make_key_pem()


@pytest.fixture
def runtime(tmp_path: Path) -> CacherRuntime:
    return CacherRuntime(hostname="cert-cacher", events_log=tmp_path / "logs" / "events.jsonl")


@pytest.fixture
def make_settings(tmp_path: Path) -> Callable[..., Settings]:
    def _make(backend: str = "memory") -> Settings:
        return Settings(
            listen_host="0.0.0.0",
            listen_port=9191,
            hostname="cert-cacher",
            store_backend=backend,
            store_dir=tmp_path / "certs",
            events_log=tmp_path / "logs" / "events.jsonl",
            tailscale_socket="/nonexistent/tailscaled.sock",
            whois_timeout_sec=1.0,
            static_identity="",
        )

    return _make


@pytest.fixture
def resolver() -> FakeResolver:
    return FakeResolver()


@pytest.fixture(params=["memory", "disk"])
def client(request, make_settings, resolver):
    app = create_app(make_settings(request.param), resolver=resolver)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def disk_client(make_settings, resolver):
    app = create_app(make_settings("disk"), resolver=resolver)
    with TestClient(app) as c:
        yield c
