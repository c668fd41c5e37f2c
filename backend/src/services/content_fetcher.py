"""Bounded HTTP fetching of bookmarked pages."""
import asyncio
import ipaddress
import logging
import socket
from dataclasses import dataclass
from urllib.parse import urlparse

import httpx

from services.exceptions import (
    BlockedUrlError,
    FetchConnectionError,
    FetchTimeoutError,
    HttpStatusError,
    InvalidUrlError,
    ResponseTooLargeError,
)

logger = logging.getLogger(__name__)

USER_AGENT = 'Mozilla/5.0 (compatible; BookyBot/1.0)'
DEFAULT_TIMEOUT = 10.0
DEFAULT_MAX_BYTES = 5 * 1024 * 1024
ALLOWED_SCHEMES = ('http', 'https')


def is_private_ip(ip_str: str) -> bool:
    """
    Check if an IP address is private, loopback, or otherwise internal.

    Args:
        ip_str: IP address string (IPv4 or IPv6).

    Returns:
        True if the IP is private/internal, False if public.
    """
    try:
        ip = ipaddress.ip_address(ip_str)
        return (
            ip.is_private
            or ip.is_loopback
            or ip.is_link_local
            or ip.is_multicast
            or ip.is_reserved
            or ip.is_unspecified
        )
    except ValueError:
        # Unparseable addresses are treated as internal
        return True


def validate_url(url: str) -> str:
    """
    Check that a URL is absolute with an http(s) scheme and a host.

    Args:
        url: The URL to validate.

    Returns:
        The hostname.

    Raises:
        InvalidUrlError: If the URL is malformed.
    """
    try:
        parsed = urlparse(url)
        hostname = parsed.hostname
    except ValueError as e:
        raise InvalidUrlError(url, str(e)) from e
    if parsed.scheme.lower() not in ALLOWED_SCHEMES:
        raise InvalidUrlError(url, f"unsupported scheme {parsed.scheme!r}")
    if not hostname:
        raise InvalidUrlError(url, "no hostname")
    return hostname


def validate_url_not_private(url: str) -> None:
    """
    Validate that a URL does not target a private/internal network.

    Resolves the hostname to check the actual IP address, preventing
    DNS rebinding attacks where a hostname resolves to an internal IP.

    Raises:
        BlockedUrlError: If the URL targets a private network.
        InvalidUrlError: If the URL is malformed.
        FetchConnectionError: If the hostname cannot be resolved right now.
    """
    hostname = validate_url(url)

    if hostname.lower() in ('localhost', 'localhost.localdomain'):
        raise BlockedUrlError(f"Blocked request to localhost: {url}")

    try:
        addrinfo = socket.getaddrinfo(hostname, None, socket.AF_UNSPEC, socket.SOCK_STREAM)
    except socket.gaierror as e:
        raise FetchConnectionError(f"Could not resolve hostname {hostname}: {e}") from e
    for _, _, _, _, sockaddr in addrinfo:
        ip_str = sockaddr[0]
        if is_private_ip(ip_str):
            raise BlockedUrlError(
                f"Blocked request to private/internal address: {url} resolves to {ip_str}",
            )


@dataclass(frozen=True)
class FetchResult:
    """Raw body of a successfully fetched page."""

    content: str
    final_url: str
    status_code: int
    content_type: str | None

    @property
    def size(self) -> int:
        """Length of the decoded body in characters."""
        return len(self.content)


class ContentFetcher:
    """
    HTTP GET with a wall-clock timeout and a streamed response size cap.

    Failures raise PipelineError subclasses rather than returning error info,
    so the processor can abort and report retryability to the job queue.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        max_bytes: int = DEFAULT_MAX_BYTES,
        block_private_networks: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._max_bytes = max_bytes
        self._block_private_networks = block_private_networks
        self._transport = transport

    @property
    def timeout(self) -> float:
        """Wall-clock limit for one fetch, in seconds."""
        return self._timeout

    @property
    def max_bytes(self) -> int:
        """Maximum accepted response body size."""
        return self._max_bytes

    async def fetch(self, url: str) -> FetchResult:
        """
        Fetch ``url`` and return its body as text.

        Raises:
            InvalidUrlError, BlockedUrlError: Non-retryable validation failures.
            FetchTimeoutError: The whole exchange exceeded the timeout.
            FetchConnectionError: The request failed at the transport level.
            ResponseTooLargeError: The body exceeded ``max_bytes``.
            HttpStatusError: The response status was not 2xx.
        """
        if self._block_private_networks:
            await asyncio.to_thread(validate_url_not_private, url)
        else:
            validate_url(url)

        try:
            async with asyncio.timeout(self._timeout):
                return await self._fetch(url)
        except TimeoutError as e:
            raise FetchTimeoutError(url, self._timeout) from e
        except httpx.TimeoutException as e:
            raise FetchTimeoutError(url, self._timeout) from e
        except httpx.RequestError as e:
            raise FetchConnectionError(f"Request to {url} failed: {e}") from e

    async def _fetch(self, url: str) -> FetchResult:
        async with httpx.AsyncClient(
            follow_redirects=True,
            timeout=self._timeout,
            headers={'User-Agent': USER_AGENT},
            http2=True,
            transport=self._transport,
        ) as client, client.stream('GET', url) as response:
            final_url = str(response.url)
            if self._block_private_networks and final_url != url:
                await asyncio.to_thread(validate_url_not_private, final_url)

            if not response.is_success:
                raise HttpStatusError(url, response.status_code)

            declared = response.headers.get('content-length')
            if declared and declared.isdigit() and int(declared) > self._max_bytes:
                raise ResponseTooLargeError(url, self._max_bytes)

            body = bytearray()
            async for chunk in response.aiter_bytes():
                body.extend(chunk)
                if len(body) > self._max_bytes:
                    raise ResponseTooLargeError(url, self._max_bytes)

            encoding = response.charset_encoding or 'utf-8'
            try:
                content = body.decode(encoding, errors='replace')
            except LookupError:
                content = body.decode('utf-8', errors='replace')

            logger.debug(
                "Fetched %s (%d bytes, HTTP %d)", final_url, len(body), response.status_code,
            )
            return FetchResult(
                content=content,
                final_url=final_url,
                status_code=response.status_code,
                content_type=response.headers.get('content-type'),
            )
