"""
Gateway Fetcher: download the bytes behind a CID from one IPFS gateway.

One request, no retry. The caller (ContentVerifier) decides whether to try
another gateway. The size ceiling is enforced twice: on Content-Length when
the gateway sends it, and on the bytes actually received while streaming.
"""

from __future__ import annotations

import logging
from urllib.parse import urlparse

import httpx

from dsoul.config.settings import DEFAULT_MAX_PAYLOAD_BYTES
from dsoul.logging_utils import format_fields
from dsoul.skills.errors import GatewayHTTPError, GatewayNetworkError, SizeExceeded

logger = logging.getLogger(__name__)


def gateway_name(gateway_base_url: str) -> str:
    """Hostname for display, the raw URL when it does not parse"""
    try:
        host = urlparse(gateway_base_url).hostname
    except ValueError:
        host = None
    return host or gateway_base_url


def gateway_url(gateway_base_url: str, cid: str) -> str:
    base = gateway_base_url.strip()
    if not base.endswith("/"):
        base += "/"
    return base + cid


async def fetch(
    client: httpx.AsyncClient,
    gateway_base_url: str,
    cid: str,
    max_bytes: int = DEFAULT_MAX_PAYLOAD_BYTES,
) -> bytes:
    """
    Download a CID from a gateway

    Args:
        client: Shared async HTTP client
        gateway_base_url: Gateway prefix, e.g. https://ipfs.io/ipfs/
        cid: Content identifier
        max_bytes: Size ceiling

    Returns:
        Raw payload bytes (never decoded, so zip bytes hash correctly)

    Raises:
        GatewayHTTPError: Non-2xx response
        SizeExceeded: Declared or actual size above max_bytes
        GatewayNetworkError: Connection, timeout or protocol failure
    """
    name = gateway_name(gateway_base_url)
    url = gateway_url(gateway_base_url, cid)
    logger.debug(format_fields(action="fetch", gateway=name, cid=cid))

    try:
        async with client.stream("GET", url, follow_redirects=True) as response:
            if not response.is_success:
                raise GatewayHTTPError(name, response.status_code)

            content_length = response.headers.get("content-length")
            if content_length:
                try:
                    declared = int(content_length)
                except ValueError:
                    declared = None
                if declared is not None and declared > max_bytes:
                    raise SizeExceeded(name, declared, max_bytes)

            chunks = []
            received = 0
            async for chunk in response.aiter_bytes():
                received += len(chunk)
                if received > max_bytes:
                    raise SizeExceeded(name, received, max_bytes)
                chunks.append(chunk)

    except httpx.TimeoutException as e:
        raise GatewayNetworkError(name, f"timeout ({type(e).__name__})")
    except httpx.HTTPError as e:
        raise GatewayNetworkError(name, str(e) or type(e).__name__)

    data = b"".join(chunks)
    logger.debug(format_fields(action="fetched", gateway=name, cid=cid, bytes=len(data)))
    return data


__all__ = ["fetch", "gateway_name", "gateway_url"]
