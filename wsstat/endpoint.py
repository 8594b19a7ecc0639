"""Descriptive metadata about the measured endpoint.

Nothing in here drives control flow; it is captured for diagnostics next to
the timing record.
"""

from __future__ import annotations

import ssl
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlsplit

from cryptography import x509
from cryptography.x509.oid import NameOID

_DEFAULT_PORTS = {"ws": 80, "wss": 443}


@dataclass(frozen=True)
class CertificateDetails:
    """Details of a peer certificate."""

    common_name: str | None
    issuer: str | None
    not_before: datetime | None
    not_after: datetime | None
    dns_names: tuple[str, ...] = ()
    ip_addresses: tuple[str, ...] = ()
    uris: tuple[str, ...] = ()

    @classmethod
    def from_peercert(cls, cert: dict[str, Any]) -> CertificateDetails:
        """Build details from the dict returned by ``SSLObject.getpeercert()``."""
        alt_names = cert.get("subjectAltName", ())
        return cls(
            common_name=_rdn_value(cert.get("subject", ()), "commonName"),
            issuer=_rdn_value(cert.get("issuer", ()), "commonName"),
            not_before=_cert_time(cert.get("notBefore")),
            not_after=_cert_time(cert.get("notAfter")),
            dns_names=tuple(v for k, v in alt_names if k == "DNS"),
            ip_addresses=tuple(v for k, v in alt_names if k == "IP Address"),
            uris=tuple(v for k, v in alt_names if k == "URI"),
        )

    @classmethod
    def from_der(cls, der: bytes) -> CertificateDetails:
        """Build details from a DER-encoded certificate."""
        cert = x509.load_der_x509_certificate(der)
        try:
            alt_names = cert.extensions.get_extension_for_class(
                x509.SubjectAlternativeName
            ).value
        except x509.ExtensionNotFound:
            alt_names = x509.SubjectAlternativeName([])
        return cls(
            common_name=_name_value(cert.subject),
            issuer=_name_value(cert.issuer),
            not_before=cert.not_valid_before_utc,
            not_after=cert.not_valid_after_utc,
            dns_names=tuple(alt_names.get_values_for_type(x509.DNSName)),
            ip_addresses=tuple(
                str(ip) for ip in alt_names.get_values_for_type(x509.IPAddress)
            ),
            uris=tuple(
                alt_names.get_values_for_type(x509.UniformResourceIdentifier)
            ),
        )


@dataclass(frozen=True)
class TlsState:
    """Negotiated TLS parameters of a secure connection."""

    version: str | None
    cipher_suite: str | None
    server_name: str | None
    certificates: tuple[CertificateDetails, ...] = ()

    @classmethod
    def from_ssl_object(cls, ssl_object: ssl.SSLObject) -> TlsState:
        """Capture state from the transport's SSL object.

        Every certificate the peer sent is captured, leaf first, where the
        SSL object exposes the chain (Python 3.13+). Otherwise only the
        verified leaf certificate is available.
        """
        cipher = ssl_object.cipher()
        return cls(
            version=ssl_object.version(),
            cipher_suite=cipher[0] if cipher else None,
            server_name=ssl_object.server_hostname,
            certificates=_peer_certificates(ssl_object),
        )


@dataclass
class Endpoint:
    """Target address and captured handshake metadata of a session."""

    url: str | None = None
    ips: list[str] = field(default_factory=list)
    status_code: int | None = None
    request_headers: dict[str, list[str]] = field(default_factory=dict)
    response_headers: dict[str, list[str]] = field(default_factory=dict)
    tls: TlsState | None = None

    @property
    def port(self) -> int | None:
        """Port of the target URL."""
        if self.url is None:
            return None
        return port_for(self.url)


def port_for(url: str) -> int | None:
    """Return the URL's port, or the scheme default for ws/wss.

    Returns None for an unknown scheme without an explicit port.
    """
    parts = urlsplit(url)
    if parts.port is not None:
        return parts.port
    return _DEFAULT_PORTS.get(parts.scheme)


def headers_to_dict(items: Iterable[tuple[str, str]]) -> dict[str, list[str]]:
    """Group raw header pairs into a name -> values mapping."""
    grouped: dict[str, list[str]] = {}
    for name, value in items:
        grouped.setdefault(name, []).append(value)
    return grouped


def unique_addresses(addrinfo: Iterable[tuple[Any, ...]]) -> list[str]:
    """Extract unique IP strings from ``getaddrinfo`` results, in order."""
    seen: list[str] = []
    for *_, sockaddr in addrinfo:
        ip = str(sockaddr[0])
        if ip not in seen:
            seen.append(ip)
    return seen


def _peer_certificates(ssl_object: ssl.SSLObject) -> tuple[CertificateDetails, ...]:
    get_chain = getattr(ssl_object, "get_unverified_chain", None)
    if get_chain is not None:
        chain = get_chain()
        if chain:
            return tuple(CertificateDetails.from_der(der) for der in chain)
    # getpeercert() is empty when the certificate was not verified
    peercert = ssl_object.getpeercert()
    return (CertificateDetails.from_peercert(peercert),) if peercert else ()


def _name_value(name: x509.Name) -> str | None:
    attributes = name.get_attributes_for_oid(NameOID.COMMON_NAME)
    return str(attributes[0].value) if attributes else None


def _rdn_value(rdns: Iterable[Iterable[tuple[str, str]]], key: str) -> str | None:
    for rdn in rdns:
        for name, value in rdn:
            if name == key:
                return value
    return None


def _cert_time(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromtimestamp(ssl.cert_time_to_seconds(value), tz=UTC)
