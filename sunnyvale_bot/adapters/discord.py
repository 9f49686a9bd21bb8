"""Discord adapter implementing :class:`~sunnyvale_bot.adapters.base.GuildAdapter`.

The adapter talks to Discord's HTTP API directly with :mod:`httpx`, which
keeps it fully asynchronous and trivially testable through
``httpx.MockTransport``.  Only HTTP 429 responses are retried here; every
other failure surfaces as :class:`~sunnyvale_bot.errors.GuildAPIError`.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any
from urllib.parse import quote

import httpx

from ..core.models import (
    ChannelSpec,
    GuildInfo,
    GuildSettings,
    LiveChannel,
    LiveOverwrite,
    LiveRole,
    RoleSpec,
)
from ..core.schema import (
    DISCORD_API_VERSION,
    DISCORD_CHANNEL_CODES,
    DISCORD_CHANNEL_TYPES,
    ChannelType,
)
from ..errors import GuildAPIError
from .base import GuildAdapter, ResolvedOverwrite

log = logging.getLogger("sunnyvale.discord")

_ROLE_OVERWRITE = 0
_MEMBER_OVERWRITE = 1
_DEFAULT_RETRY_AFTER = 1.0


class DiscordAdapter(GuildAdapter):
    """Adapter that sends requests directly to the Discord HTTP API."""

    api_base = f"https://discord.com/api/v{DISCORD_API_VERSION}"

    def __init__(
        self,
        token: str,
        guild_id: str,
        client: httpx.AsyncClient | None = None,
        *,
        audit_reason: str | None = None,
        max_retries: int = 5,
    ) -> None:
        """Store authentication ``token`` and optional HTTP ``client``."""
        self.token = token
        self.guild_id = str(guild_id)
        self.client = client or httpx.AsyncClient(timeout=15.0)
        self.audit_reason = audit_reason
        self.max_retries = max_retries

    # ------------------------------------------------------------------
    # Transport
    def _headers(self) -> dict[str, str]:
        headers = {"Authorization": f"Bot {self.token}"}
        if self.audit_reason:
            headers["X-Audit-Log-Reason"] = quote(self.audit_reason)
        return headers

    async def _request(self, method: str, path: str, payload: Any = None) -> Any:
        url = f"{self.api_base}{path}"
        for _ in range(self.max_retries + 1):
            try:
                response = await self.client.request(
                    method, url, json=payload, headers=self._headers()
                )
            except httpx.HTTPError as exc:
                raise GuildAPIError(f"{method} {path} failed: {exc}") from exc

            if response.status_code == 429:
                retry_after = _retry_after(response)
                log.warning(
                    "Discord rate limit on %s %s, waiting %.2fs", method, path, retry_after
                )
                await asyncio.sleep(retry_after)
                continue
            if response.is_error:
                raise GuildAPIError(_error_message(response), response.status_code)
            if response.status_code == 204 or not response.content:
                return None
            try:
                return response.json()
            except ValueError as exc:
                raise GuildAPIError(
                    f"{method} {path}: malformed response body", response.status_code
                ) from exc
        raise GuildAPIError(f"{method} {path}: too many rate-limit retries", 429)

    async def close(self) -> None:
        """Close the underlying :class:`httpx.AsyncClient`."""
        await self.client.aclose()

    # ------------------------------------------------------------------
    # Reads
    async def fetch_guild(self) -> GuildInfo:
        data = await self._request("GET", f"/guilds/{self.guild_id}")
        return GuildInfo(
            id=str(data["id"]),
            name=data["name"],
            description=data.get("description"),
            owner_id=data.get("owner_id"),
            settings=GuildSettings(
                verification_level=data.get("verification_level"),
                default_message_notifications=data.get("default_message_notifications"),
                explicit_content_filter=data.get("explicit_content_filter"),
                afk_timeout=data.get("afk_timeout"),
                preferred_locale=data.get("preferred_locale"),
            ),
        )

    async def list_roles(self) -> list[LiveRole]:
        data = await self._request("GET", f"/guilds/{self.guild_id}/roles")
        return [
            LiveRole(
                id=str(r["id"]),
                name=r["name"],
                color=r.get("color") or 0,
                permissions=int(r.get("permissions", 0)),
                position=r.get("position", 0),
                hoist=r.get("hoist", False),
                mentionable=r.get("mentionable", False),
                managed=r.get("managed", False),
            )
            for r in data or []
        ]

    async def list_channels(self) -> list[LiveChannel]:
        data = await self._request("GET", f"/guilds/{self.guild_id}/channels")
        channels = []
        for ch in data or []:
            overwrites = tuple(
                LiveOverwrite(
                    id=str(ow["id"]),
                    type="member" if ow.get("type") == _MEMBER_OVERWRITE else "role",
                    allow=int(ow.get("allow", 0)),
                    deny=int(ow.get("deny", 0)),
                )
                for ow in ch.get("permission_overwrites", [])
            )
            channels.append(
                LiveChannel(
                    id=str(ch["id"]),
                    name=ch["name"],
                    type=DISCORD_CHANNEL_TYPES.get(ch["type"]),
                    topic=ch.get("topic") or None,
                    slowmode_seconds=ch.get("rate_limit_per_user") or None,
                    parent_id=ch.get("parent_id"),
                    position=ch.get("position", 0),
                    nsfw=ch.get("nsfw", False),
                    bitrate=ch.get("bitrate"),
                    user_limit=ch.get("user_limit") or None,
                    overwrites=overwrites,
                )
            )
        return channels

    # ------------------------------------------------------------------
    # Mutations
    async def create_role(self, spec: RoleSpec) -> str:
        data = await self._request(
            "POST", f"/guilds/{self.guild_id}/roles", _role_payload(spec)
        )
        return _created_id(data)

    async def update_role(self, role_id: str, spec: RoleSpec) -> None:
        await self._request(
            "PATCH", f"/guilds/{self.guild_id}/roles/{role_id}", _role_payload(spec)
        )

    async def move_role(self, role_id: str, position: int) -> None:
        # Role position is only writable through the bulk endpoint.
        await self._request(
            "PATCH",
            f"/guilds/{self.guild_id}/roles",
            [{"id": role_id, "position": position}],
        )

    async def create_channel(
        self,
        spec: ChannelSpec,
        parent_id: str | None,
        overwrites: Sequence[ResolvedOverwrite],
    ) -> str:
        payload = _channel_payload(spec, parent_id)
        payload["type"] = DISCORD_CHANNEL_CODES[spec.type]
        payload["permission_overwrites"] = [
            {
                "id": ow.subject_id,
                "type": _ROLE_OVERWRITE,
                "allow": str(ow.allow),
                "deny": str(ow.deny),
            }
            for ow in overwrites
        ]
        data = await self._request("POST", f"/guilds/{self.guild_id}/channels", payload)
        return _created_id(data)

    async def update_channel(
        self, channel_id: str, spec: ChannelSpec, parent_id: str | None
    ) -> None:
        await self._request(
            "PATCH", f"/channels/{channel_id}", _channel_payload(spec, parent_id)
        )

    async def set_permission_overwrite(
        self, channel_id: str, subject_id: str, allow: int, deny: int
    ) -> None:
        await self._request(
            "PUT",
            f"/channels/{channel_id}/permissions/{subject_id}",
            {"type": _ROLE_OVERWRITE, "allow": str(allow), "deny": str(deny)},
        )

    async def update_settings(self, settings: GuildSettings) -> None:
        payload = settings.model_dump(exclude_none=True)
        if payload:
            await self._request("PATCH", f"/guilds/{self.guild_id}", payload)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return response.reason_phrase


def _retry_after(response: httpx.Response) -> float:
    try:
        body = response.json()
        return float(body["retry_after"])
    except (ValueError, KeyError, TypeError):
        pass
    try:
        return float(response.headers.get("Retry-After", _DEFAULT_RETRY_AFTER))
    except ValueError:
        return _DEFAULT_RETRY_AFTER


def _created_id(data: Any) -> str:
    if not isinstance(data, dict) or not data.get("id"):
        raise GuildAPIError("Discord response did not include the new ID")
    return str(data["id"])


def _role_payload(spec: RoleSpec) -> dict[str, Any]:
    return {
        "name": spec.name,
        "color": spec.color,
        "permissions": str(spec.permissions),
        "hoist": spec.hoist,
        "mentionable": spec.mentionable,
    }


def _channel_payload(spec: ChannelSpec, parent_id: str | None) -> dict[str, Any]:
    payload: dict[str, Any] = {"name": spec.name, "position": spec.position}
    if spec.is_category:
        return payload
    payload["parent_id"] = parent_id
    if spec.type in (ChannelType.VOICE, ChannelType.STAGE):
        if spec.bitrate is not None:
            payload["bitrate"] = spec.bitrate
        if spec.user_limit is not None:
            payload["user_limit"] = spec.user_limit
    else:
        payload["topic"] = spec.topic
        payload["nsfw"] = spec.nsfw
        if spec.slowmode_seconds is not None:
            payload["rate_limit_per_user"] = spec.slowmode_seconds
    return payload
