"""Execute adapter-built requests over HTTP or as local commands/files."""

from __future__ import annotations

import asyncio
import logging
import pathlib
import shutil
from http import HTTPStatus
from typing import Callable, Optional

import httpx

from usagewatch.core.exceptions import (
    AuthFailureError,
    FetchTimeoutError,
    SourceUnavailableError,
)
from usagewatch.core.redactor import redact, redact_payload
from usagewatch.providers.base import CliUsageRequest, HttpUsageRequest

logger = logging.getLogger("usagewatch.transport")

ProgressCallback = Callable[[int], None]

MAX_ERROR_DETAIL_LENGTH = 200
_AUTH_STATUSES = {HTTPStatus.UNAUTHORIZED, HTTPStatus.FORBIDDEN}
_AUTH_HINTS = ("auth", "login", "401", "403", "token")


async def execute_http(
    provider_id: str,
    request: HttpUsageRequest,
    timeout: float,
    *,
    progress: Optional[ProgressCallback] = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bytes:
    """Send ``request`` and return the body, reporting bytes as they arrive."""

    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            async with client.stream(
                request.method,
                request.url,
                headers=request.headers,
                params=request.params or None,
                json=request.json_body,
            ) as response:
                if response.status_code in _AUTH_STATUSES:
                    raise AuthFailureError(provider_id, f"HTTP {response.status_code}")
                if response.is_error:
                    body = await response.aread()
                    detail = redact_payload(body, max_length=MAX_ERROR_DETAIL_LENGTH)
                    if response.status_code == HTTPStatus.TOO_MANY_REQUESTS:
                        raise SourceUnavailableError(provider_id, "rate limited (HTTP 429)")
                    raise SourceUnavailableError(
                        provider_id, f"HTTP {response.status_code}: {detail}".rstrip(": ")
                    )
                chunks: list[bytes] = []
                async for chunk in response.aiter_bytes():
                    chunks.append(chunk)
                    if progress is not None:
                        progress(len(chunk))
                return b"".join(chunks)
    except httpx.TimeoutException as exc:
        raise FetchTimeoutError(provider_id, f"request timed out after {timeout:g}s") from exc
    except httpx.RequestError as exc:
        raise SourceUnavailableError(
            provider_id, f"request failed: {type(exc).__name__}"
        ) from exc


def which(binary: str) -> str | None:
    return shutil.which(binary)


async def execute_cli(provider_id: str, request: CliUsageRequest, timeout: float) -> bytes:
    """Run the request's command, or read its report file, and return the raw output."""

    if request.path:
        path = pathlib.Path(request.path).expanduser()
        if not path.is_file():
            raise SourceUnavailableError(provider_id, "report file not found")
        return await asyncio.to_thread(path.read_bytes)

    if not request.argv:
        raise SourceUnavailableError(provider_id, "no command to run")
    binary = which(request.argv[0])
    if binary is None:
        raise SourceUnavailableError(provider_id, "cli binary not found")

    process = await asyncio.create_subprocess_exec(
        binary,
        *request.argv[1:],
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        stdin=asyncio.subprocess.DEVNULL,
    )
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
    except asyncio.TimeoutError as exc:
        await _kill(process)
        raise FetchTimeoutError(provider_id, f"command timed out after {timeout:g}s") from exc
    except asyncio.CancelledError:
        await _kill(process)
        raise

    if process.returncode != 0:
        message = redact(stderr.decode("utf-8", errors="replace").strip())[:MAX_ERROR_DETAIL_LENGTH]
        logger.info(
            "CLI exited with an error",
            extra={
                "event": "cli_error",
                "provider": provider_id,
                "returncode": process.returncode,
            },
        )
        if any(hint in message.lower() for hint in _AUTH_HINTS):
            raise AuthFailureError(provider_id, message or "cli reported an auth error")
        raise SourceUnavailableError(
            provider_id, f"cli exited with {process.returncode}: {message}".rstrip(": ")
        )
    return stdout


async def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        process.kill()
        await process.wait()


__all__ = ["ProgressCallback", "execute_cli", "execute_http", "which"]
