from __future__ import annotations

import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

import uvicorn
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import PlainTextResponse
from fastapi.templating import Jinja2Templates

from cacher.constants import CERTS_DIR, CLIENT_SCRIPT, DATA_DIR, ENV_FILE, EVENTS_LOG, PROJECT_ROOT, TEMPLATES_DIR
from cacher.overlay.whois import (
    DEFAULT_SOCKET,
    IdentityResolutionError,
    IdentityResolver,
    StaticIdentity,
    TailscaleWhois,
    format_peer_addr,
)
from cacher.runtime import CacherRuntime
from cacher.security.pem import ExpiryError, classify, days_until_expiry
from cacher.store.base import Slot, StoreError, normalize_identity
from cacher.store.factory import build_store
from cacher.store.locks import IdentityLocks


def env_str(key: str, default: str) -> str:
    v = os.getenv(key)
    return default if v is None or v.strip() == "" else v.strip()


def env_float(key: str, default: float) -> float:
    v = os.getenv(key)
    return default if v is None or v.strip() == "" else float(v.strip())


def split_hostport(addr: str) -> Tuple[str, int]:
    host, port = addr.rsplit(":", 1)
    return host.strip() or "0.0.0.0", int(port.strip())


def project_path(raw: str) -> Path:
    p = Path(raw)
    return p if p.is_absolute() else PROJECT_ROOT / p


@dataclass(frozen=True)
class Settings:
    listen_host: str
    listen_port: int
    hostname: str
    store_backend: str
    store_dir: Path
    events_log: Path
    tailscale_socket: str
    whois_timeout_sec: float
    static_identity: str

    @property
    def base_url(self) -> str:
        return f"http://{self.hostname}:{self.listen_port}"


def load_settings() -> Settings:
    listen_host, listen_port = split_hostport(env_str("LISTEN_ADDR", ":9191"))
    return Settings(
        listen_host=listen_host,
        listen_port=listen_port,
        hostname=env_str("CACHER_HOSTNAME", "cert-cacher"),
        store_backend=env_str("STORE_BACKEND", "memory").lower(),
        store_dir=project_path(env_str("STORE_DIR", str(CERTS_DIR))),
        events_log=project_path(env_str("EVENTS_LOG", str(EVENTS_LOG))),
        tailscale_socket=env_str("TAILSCALE_SOCKET", DEFAULT_SOCKET),
        whois_timeout_sec=env_float("WHOIS_TIMEOUT_SEC", 5.0),
        static_identity=env_str("STATIC_IDENTITY", ""),
    )


def build_resolver(settings: Settings) -> IdentityResolver:
    if settings.static_identity:
        return StaticIdentity(settings.static_identity)
    return TailscaleWhois(settings.tailscale_socket, timeout=settings.whois_timeout_sec)


def create_app(settings: Optional[Settings] = None, resolver: Optional[IdentityResolver] = None) -> FastAPI:
    if settings is None:
        load_dotenv(dotenv_path=str(ENV_FILE), override=True)
        DATA_DIR.mkdir(parents=True, exist_ok=True)
        settings = load_settings()

    runtime = CacherRuntime(hostname=settings.hostname, events_log=settings.events_log)
    store = build_store(settings.store_backend, settings.store_dir, runtime)
    if resolver is None:
        resolver = build_resolver(settings)

    templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

    @asynccontextmanager
    async def lifespan(app_: FastAPI):
        runtime.log_event(
            "CACHER_STARTED",
            bind=f"{settings.listen_host}:{settings.listen_port}",
            backend=settings.store_backend,
        )
        try:
            yield
        finally:
            aclose = getattr(app_.state.resolver, "aclose", None)
            if aclose is not None:
                await aclose()
            runtime.log_event("CACHER_STOPPED")

    app = FastAPI(title="cert-cacher", lifespan=lifespan)
    app.state.settings = settings
    app.state.runtime = runtime
    app.state.store = store
    app.state.locks = IdentityLocks()
    app.state.resolver = resolver

    async def caller_identity(request: Request) -> str:
        peer = format_peer_addr(request.client.host, request.client.port) if request.client else ""
        try:
            who = await app.state.resolver.resolve(peer)
        except IdentityResolutionError as e:
            runtime.log_event("IDENTITY_RESOLUTION_FAILED", severity="ERROR", peer=peer, detail=str(e))
            raise HTTPException(status_code=500, detail=str(e))
        return normalize_identity(who)

    async def lookup(who: str, slot: Slot) -> Optional[str]:
        try:
            async with app.state.locks.lock(who):
                return app.state.store.get(who, slot)
        except StoreError as e:
            raise HTTPException(status_code=500, detail=str(e))

    async def serve_slot(who: str, slot: Slot) -> PlainTextResponse:
        blob = await lookup(who, slot)
        if blob is None:
            raise HTTPException(status_code=404, detail=f"no {slot.value} for {who}")
        return PlainTextResponse(blob)

    @app.get("/sh")
    async def client_script(request: Request, who: str = Depends(caller_identity)):
        return templates.TemplateResponse(
            request,
            CLIENT_SCRIPT,
            {"base_url": settings.base_url, "hostname": settings.hostname},
            media_type="application/x-sh",
        )

    @app.get("/days")
    async def days(who: str = Depends(caller_identity)):
        cert = await lookup(who, Slot.CERT)
        if cert is None:
            raise HTTPException(status_code=404, detail=f"no {Slot.CERT.value} for {who}")
        try:
            n = days_until_expiry(cert)
        except ExpiryError as e:
            runtime.log_event("CERT_DECODE_FAILED", severity="ERROR", node_name=who, detail=str(e))
            raise HTTPException(status_code=500, detail=str(e))
        return PlainTextResponse(str(n))

    @app.get("/cert")
    async def get_cert(who: str = Depends(caller_identity)):
        return await serve_slot(who, Slot.CERT)

    @app.get("/key")
    async def get_key(who: str = Depends(caller_identity)):
        return await serve_slot(who, Slot.KEY)

    @app.get("/{path:path}")
    async def invalid_path(path: str, who: str = Depends(caller_identity)):
        raise HTTPException(
            status_code=400,
            detail=f"invalid path=[/{path}] use /sh, /days, /cert or /key paths",
        )

    @app.post("/{path:path}")
    async def upload(request: Request, path: str, who: str = Depends(caller_identity)):
        raw = await request.body()
        try:
            body = raw.decode("utf-8")
        except UnicodeDecodeError:
            body = ""

        slot = classify(body)
        if slot is None:
            runtime.log_event("CERT_REJECTED", severity="WARNING", node_name=who, size=len(raw))
            raise HTTPException(status_code=500, detail="Please, provide a cert or a key")

        try:
            async with app.state.locks.lock(who):
                app.state.store.upsert(who, body, slot)
        except StoreError as e:
            runtime.log_event("STORE_WRITE_FAILED", severity="ERROR", node_name=who, slot=slot.value, detail=str(e))
            raise HTTPException(status_code=500, detail=str(e))

        runtime.log_event("CERT_SAVED", node_name=who, slot=slot.value)
        return PlainTextResponse(f"{who} {slot.value} saved")

    return app


app = create_app()

if __name__ == "__main__":
    env = os.getenv("APP_ENV", "dev").lower()
    uvicorn.run(
        "main:app",
        host=app.state.settings.listen_host,
        port=app.state.settings.listen_port,
        reload=(env == "dev"),
        workers=1,
        log_level=("debug" if env == "dev" else "info"),
    )
