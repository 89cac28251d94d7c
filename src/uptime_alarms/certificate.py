from __future__ import annotations

import asyncio
import contextlib
import ssl
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from urllib.parse import urlsplit

import structlog
from cryptography import x509

from uptime_alarms.models import CertificateInfo

ExpiryFetcher = Callable[[str, int, float], Awaitable[datetime | None]]


def _unverified_context() -> ssl.SSLContext:
    # expired or self-signed peers must still complete the handshake so their notAfter can be read
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


async def fetch_peer_certificate_expiry(host: str, port: int, timeout_seconds: float) -> datetime | None:
    writer: asyncio.StreamWriter | None = None
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host=host, port=port, ssl=_unverified_context(), server_hostname=host),
            timeout=timeout_seconds,
        )
        ssl_object = writer.get_extra_info("ssl_object")
        der = ssl_object.getpeercert(binary_form=True) if ssl_object is not None else None
        if not der:
            return None
        return x509.load_der_x509_certificate(der).not_valid_after_utc
    finally:
        if writer is not None:
            writer.close()
            with contextlib.suppress(OSError, ssl.SSLError):
                await writer.wait_closed()


async def inspect_certificate(
    url: str,
    *,
    timeout_seconds: float = 5.0,
    now: datetime | None = None,
    fetch_expiry: ExpiryFetcher = fetch_peer_certificate_expiry,
) -> CertificateInfo:
    """Report whether the TLS certificate served for ``url`` is unexpired.

    Best-effort: plain HTTP, connection errors, timeouts and certificates
    without a readable expiry all come back as ``CertificateInfo(valid=False,
    expiry=0)``. Nothing is raised.
    """
    parts = urlsplit(url)
    if parts.scheme.lower() != "https" or not parts.hostname:
        return CertificateInfo()

    try:
        port = parts.port or 443
        expiry = await fetch_expiry(parts.hostname, port, timeout_seconds)
    except Exception as exc:
        structlog.get_logger().debug("certificate_check_failed", url=url, error=str(exc) or type(exc).__name__)
        return CertificateInfo()

    if expiry is None:
        return CertificateInfo()
    if expiry.tzinfo is None:
        expiry = expiry.replace(tzinfo=UTC)
    current = now if now is not None else datetime.now(UTC)
    return CertificateInfo(valid=expiry > current, expiry=int(expiry.timestamp() * 1000))
