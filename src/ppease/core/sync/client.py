"""MCP client for the remote record store.

The remote store is an MCP server exposing ``account_status`` and
``save_record`` tools. Calls go through ``fastmcp.Client``.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from ppease.core.sync.models import RemoteRecord

logger = logging.getLogger(__name__)

ACCOUNT_AVAILABLE = "available"


class RemoteRecordClient:
    """Client for the remote record-store MCP server.

    Usage::

        from fastmcp import Client
        remote = RemoteRecordClient(Client("https://records.example/mcp"))

        async with remote:
            await remote.ensure_available()
            await remote.save_record(record)
    """

    def __init__(self, mcp_client: Any) -> None:
        """Initialise with a fastmcp.Client (or compatible)."""
        self._client = mcp_client

    async def __aenter__(self) -> RemoteRecordClient:
        try:
            await self._client.__aenter__()
        except Exception as exc:
            raise RemoteUnavailableError(
                f"Could not connect to the remote record store: {exc}"
            ) from exc
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self._client.__aexit__(*exc_info)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def account_status(self) -> str:
        """Return the remote account status, e.g. 'available' or 'no_account'."""
        payload = await self._call_tool("account_status", {})
        status = payload.get("status")
        if not isinstance(status, str):
            raise RemoteResponseError("account_status response has no 'status'")
        return status

    async def ensure_available(self) -> None:
        """Fail fast unless the account is signed in and provisioned.

        Raises:
            RemoteUnavailableError: If the account is not available.
        """
        status = await self.account_status()
        if status != ACCOUNT_AVAILABLE:
            raise RemoteUnavailableError(f"Remote account not available (status={status!r})")

    async def save_record(self, record: RemoteRecord) -> dict[str, Any]:
        """Upload one record with its assets. Returns the server's reply."""
        payload = await self._call_tool("save_record", record.to_payload())
        if payload.get("status") != "ok":
            raise RemoteResponseError(
                f"Unexpected status from save_record: {payload.get('status')!r}"
            )
        return payload

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _call_tool(self, tool_name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """Call a remote tool and return its JSON object payload."""
        logger.debug("Calling remote record store tool %s", tool_name)

        try:
            result = await self._client.call_tool(tool_name, arguments)
        except Exception as exc:
            raise RemoteUnavailableError(
                f"Failed to call remote tool '{tool_name}': {exc}"
            ) from exc

        if not result:
            raise RemoteResponseError(f"Empty response from {tool_name}")

        payload = _extract_payload(result)
        if payload is None:
            raise RemoteResponseError(f"No usable content in response from {tool_name}")

        if isinstance(payload, str):
            try:
                parsed: Any = json.loads(payload)
            except (json.JSONDecodeError, TypeError) as exc:
                raise RemoteResponseError(f"Invalid JSON from {tool_name}: {exc}") from exc
        else:
            parsed = payload

        if not isinstance(parsed, dict):
            raise RemoteResponseError(
                f"Expected JSON object from {tool_name}, got {type(parsed).__name__}"
            )

        if parsed.get("status") == "error":
            raise RemoteRejectedError(
                f"Remote record store returned error: {_format_error(parsed.get('error'))}"
            )

        return parsed


# ------------------------------------------------------------------
# Exceptions
# ------------------------------------------------------------------

class SyncError(Exception):
    """Base exception for remote mirror failures."""


class RemoteUnavailableError(SyncError):
    """No signed-in account, not provisioned, or the store is unreachable."""


class RemoteResponseError(SyncError):
    """Response from the remote store was unexpected."""


class RemoteRejectedError(SyncError):
    """The remote store refused the call."""


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _extract_payload(result: Any) -> Any | None:
    """Extract a usable payload from a fastmcp tool result.

    Depending on the transport and fastmcp version this is a
    ``CallToolResult`` (``.data`` / ``.content``), a list of content blocks,
    a single block, a raw string, or an already-parsed dict.
    """
    if isinstance(result, (dict, str)):
        return result

    data = getattr(result, "data", None)
    if isinstance(data, dict):
        return data

    content = getattr(result, "content", None)
    if isinstance(content, list):
        result = content

    if isinstance(result, list):
        for block in result:
            if isinstance(block, (dict, str)):
                return block.get("text", block) if isinstance(block, dict) else block
            text = getattr(block, "text", None)
            if text is not None:
                return text
        return None

    return getattr(result, "text", None)


def _format_error(error: Any) -> str:
    """Format an error payload into a human-readable string."""
    if error is None:
        return "Unknown error"
    if isinstance(error, str):
        return error
    if isinstance(error, dict):
        msg = error.get("message") or error.get("code")
        return msg if isinstance(msg, str) and msg else str(error)
    return str(error)
