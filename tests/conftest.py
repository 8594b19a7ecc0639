"""Pytest configuration and fixtures for wsstat tests."""

from __future__ import annotations

import asyncio
import contextlib
import ipaddress
import json
import socket
import ssl
from collections.abc import AsyncIterator
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from aiohttp import WSCloseCode, WSMsgType, web
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from wsstat.timing import TimingRecord


def _build_app() -> web.Application:
    """Build a local app with echo, silent, header-reporting and rejecting routes."""
    sockets: set[web.WebSocketResponse] = set()

    async def echo(request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        sockets.add(ws)
        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    await ws.send_str(msg.data)
                elif msg.type == WSMsgType.BINARY:
                    await ws.send_bytes(msg.data)
        finally:
            sockets.discard(ws)
        return ws

    async def silent(request: web.Request) -> web.WebSocketResponse:
        # autoping=False: pings reach the handler and are never answered
        ws = web.WebSocketResponse(autoping=False)
        await ws.prepare(request)
        sockets.add(ws)
        try:
            async for _msg in ws:
                pass
        finally:
            sockets.discard(ws)
        return ws

    async def headers(request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        sockets.add(ws)
        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    await ws.send_str(json.dumps(dict(request.headers)))
        finally:
            sockets.discard(ws)
        return ws

    async def reject(request: web.Request) -> web.Response:
        return web.Response(status=403, text="forbidden")

    async def on_shutdown(app: web.Application) -> None:
        for ws in set(sockets):
            await ws.close(code=WSCloseCode.GOING_AWAY, message=b"Server shutdown")

    app = web.Application()
    app.router.add_get("/echo", echo)
    app.router.add_get("/silent", silent)
    app.router.add_get("/headers", headers)
    app.router.add_get("/reject", reject)
    app.on_shutdown.append(on_shutdown)
    return app


@dataclass
class TlsMaterial:
    """A local CA, a server certificate it signed and matching contexts."""

    ca_der: bytes
    leaf_der: bytes
    server_context: ssl.SSLContext
    client_context: ssl.SSLContext


def _issue(
    subject: x509.Name,
    issuer: x509.Name,
    public_key: ec.EllipticCurvePublicKey,
    signing_key: ec.EllipticCurvePrivateKey,
    *,
    ca: bool,
) -> x509.Certificate:
    now = datetime.now(UTC)
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(public_key)
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=ca, path_length=None), critical=True)
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(public_key), critical=False
        )
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(
                signing_key.public_key()
            ),
            critical=False,
        )
    )
    builder = builder.add_extension(
        x509.KeyUsage(
            digital_signature=True,
            content_commitment=False,
            key_encipherment=False,
            data_encipherment=False,
            key_agreement=False,
            key_cert_sign=ca,
            crl_sign=ca,
            encipher_only=False,
            decipher_only=False,
        ),
        critical=True,
    )
    if not ca:
        builder = builder.add_extension(
            x509.SubjectAlternativeName(
                [
                    x509.DNSName("localhost"),
                    x509.IPAddress(ipaddress.ip_address("127.0.0.1")),
                ]
            ),
            critical=False,
        ).add_extension(
            x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False
        )
    return builder.sign(signing_key, hashes.SHA256())


@pytest.fixture(scope="session")
def tls_material(tmp_path_factory: pytest.TempPathFactory) -> TlsMaterial:
    """Issue a throwaway CA and a 127.0.0.1 server certificate."""
    ca_key = ec.generate_private_key(ec.SECP256R1())
    ca_name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "wsstat test CA")])
    ca_cert = _issue(ca_name, ca_name, ca_key.public_key(), ca_key, ca=True)

    leaf_key = ec.generate_private_key(ec.SECP256R1())
    leaf_name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "localhost")])
    leaf_cert = _issue(leaf_name, ca_name, leaf_key.public_key(), ca_key, ca=False)

    directory = tmp_path_factory.mktemp("tls")
    cert_file = directory / "server.pem"
    key_file = directory / "server.key"
    # Leaf first, then the CA, so the server sends the whole chain
    cert_file.write_bytes(
        leaf_cert.public_bytes(serialization.Encoding.PEM)
        + ca_cert.public_bytes(serialization.Encoding.PEM)
    )
    key_file.write_bytes(
        leaf_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )

    server_context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    server_context.load_cert_chain(cert_file, key_file)
    client_context = ssl.create_default_context(
        cadata=ca_cert.public_bytes(serialization.Encoding.PEM).decode("ascii")
    )
    return TlsMaterial(
        ca_der=ca_cert.public_bytes(serialization.Encoding.DER),
        leaf_der=leaf_cert.public_bytes(serialization.Encoding.DER),
        server_context=server_context,
        client_context=client_context,
    )


@contextlib.asynccontextmanager
async def _serve(
    scheme: str, ssl_context: ssl.SSLContext | None = None
) -> AsyncIterator[str]:
    runner = web.AppRunner(_build_app())
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0, ssl_context=ssl_context)
    await site.start()
    port = runner.addresses[0][1]
    try:
        yield f"{scheme}://127.0.0.1:{port}"
    finally:
        await runner.cleanup()


@pytest_asyncio.fixture
async def ws_base_url() -> AsyncIterator[str]:
    """Run the local WebSocket app on 127.0.0.1 and yield its ws:// base URL."""
    async with _serve("ws") as url:
        yield url


@pytest_asyncio.fixture
async def wss_base_url(tls_material: TlsMaterial) -> AsyncIterator[str]:
    """Run the local WebSocket app behind TLS and yield its wss:// base URL."""
    async with _serve("wss", tls_material.server_context) as url:
        yield url


@pytest.fixture
def echo_url(ws_base_url: str) -> str:
    """URL of the echo endpoint."""
    return f"{ws_base_url}/echo"


@pytest.fixture
def silent_url(ws_base_url: str) -> str:
    """URL of an endpoint that never answers messages or pings."""
    return f"{ws_base_url}/silent"


@pytest.fixture
def closed_port() -> int:
    """A local port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def record() -> TimingRecord:
    """Fresh timing record."""
    return TimingRecord()


async def _block_forever() -> None:
    await asyncio.Event().wait()


@pytest.fixture
def mock_connection() -> MagicMock:
    """Create a mock websockets ClientConnection.

    ``recv`` blocks until cancelled; tests override it as needed.
    """
    connection = MagicMock()
    connection.send = AsyncMock()
    connection.recv = AsyncMock(side_effect=_block_forever)
    connection.ping = AsyncMock()
    connection.close = AsyncMock()
    connection.transport = MagicMock()
    return connection
