# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_identity

"""
Outbound HTTP helpers: SSRF-safe transport, bounded reads and the retry policy
for calls to the identity provider.
"""

import ipaddress
import json
import socket
from typing import Any

import anyio
import httpx

from coreason_oidc.exceptions import OversizedResponseError, SecurityError
from coreason_oidc.utils.logger import logger

MAX_RESPONSE_BYTES = 1_000_000
RETRY_ATTEMPTS = 2
RETRY_WAIT = 0.1


class SafeHTTPTransport(httpx.AsyncHTTPTransport):
    """
    A secure HTTP transport that enforces DNS pinning to prevent SSRF/DNS Rebinding attacks.

    It resolves the hostname, rejects private, loopback, link-local, reserved and multicast
    addresses, and connects to the first safe IP while keeping the original Host header and
    SNI for certificate verification.
    """

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        hostname = request.url.host

        try:
            ip_obj = ipaddress.ip_address(hostname)
        except ValueError:
            ip_obj = None

        if ip_obj is not None:
            self._validate_ip(ip_obj, hostname)
            return await super().handle_async_request(request)

        try:
            addr_infos = await anyio.to_thread.run_sync(socket.getaddrinfo, hostname, None, 0, socket.SOCK_STREAM)
        except socket.gaierror as e:
            logger.error(f"DNS resolution failed for {hostname}: {e}")
            raise SecurityError(f"DNS resolution failed for {hostname}") from e

        target_ip: str | None = None
        for _, _, _, _, sockaddr in addr_infos:
            ip_str = str(sockaddr[0])
            try:
                self._validate_ip(ipaddress.ip_address(ip_str), hostname)
            except (SecurityError, ValueError):
                continue
            target_ip = ip_str
            break

        if not target_ip:
            logger.error(f"Security violation: No valid public IP found for {hostname}")
            raise SecurityError(f"Security violation: No valid public IP found for {hostname}")

        request.extensions["sni_hostname"] = hostname
        if "Host" not in request.headers:
            request.headers["Host"] = request.url.netloc.decode("ascii")
        request.url = request.url.copy_with(host=target_ip)

        logger.debug(f"DNS Pinned: {hostname} -> {target_ip}")
        return await super().handle_async_request(request)

    def _validate_ip(self, ip_obj: Any, hostname: str) -> None:
        if (
            ip_obj.is_private
            or ip_obj.is_loopback
            or ip_obj.is_link_local
            or ip_obj.is_reserved
            or ip_obj.is_multicast
        ):
            logger.warning(f"Security violation: Blocked access to {hostname} ({ip_obj})")
            raise SecurityError(f"Access to {hostname} ({ip_obj}) is blocked")


async def read_bounded(
    client: httpx.AsyncClient, method: str, url: str, **kwargs: Any
) -> tuple[httpx.Response, bytes]:
    """
    Sends a request and reads at most `MAX_RESPONSE_BYTES` of the body.

    Returns:
        The (closed) response and its body. Status is not checked.

    Raises:
        OversizedResponseError: If the body exceeds the limit.
        httpx.TransportError: On network failure.
    """
    async with client.stream(method, url, **kwargs) as response:
        content_length = response.headers.get("Content-Length")
        if content_length and content_length.isdigit() and int(content_length) > MAX_RESPONSE_BYTES:
            raise OversizedResponseError(f"Response from {url} too large")

        content = bytearray()
        async for chunk in response.aiter_bytes():
            content.extend(chunk)
            if len(content) > MAX_RESPONSE_BYTES:
                raise OversizedResponseError(f"Response from {url} too large")

    return response, bytes(content)


async def send_with_retry(
    client: httpx.AsyncClient, method: str, url: str, **kwargs: Any
) -> tuple[httpx.Response, bytes]:
    """
    `read_bounded` with a single retry on transient network failure.

    Any HTTP status, 4xx and 5xx included, is returned to the caller untouched;
    only `httpx.TransportError` (connect, read, timeout) is retried.
    """
    for attempt in range(RETRY_ATTEMPTS):
        try:
            return await read_bounded(client, method, url, **kwargs)
        except httpx.TransportError as e:
            if attempt == RETRY_ATTEMPTS - 1:
                raise
            logger.warning(f"Transient network error calling {url}, retrying once: {e!r}")
            await anyio.sleep(RETRY_WAIT)

    raise RuntimeError("unreachable")  # pragma: no cover


async def safe_json_fetch(client: httpx.AsyncClient, url: str, method: str = "GET", **kwargs: Any) -> Any:
    """
    Fetches a JSON document with the size limit and retry policy applied.

    Raises:
        httpx.HTTPStatusError: For non-2xx responses.
        httpx.TransportError: If the network keeps failing.
        OversizedResponseError: If the body exceeds the limit.
        ValueError: If the body is not JSON.
    """
    response, content = await send_with_retry(client, method, url, **kwargs)
    response.raise_for_status()
    return json.loads(content)
