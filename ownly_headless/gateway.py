"""
Control Gateway — HTTP surface for starting and replacing the agent.

Built on aiohttp.  The gateway owns no business logic: it parses the request,
delegates to the AgentLifecycleManager, and maps every failure to a JSON
error body.

Routes:
  POST    /agent   — start or replace the agent (empty channelName lists channels)
  OPTIONS /agent   — CORS preflight
  GET     /health  — liveness and current agent

There is no authentication on this surface; bind it to a trusted interface.
"""

from __future__ import annotations

import json
import time
from typing import Any, Optional

import pydantic
import structlog
from aiohttp import web
from pydantic import BaseModel, ConfigDict, Field

from ownly_headless.errors import ChannelNotFoundError, OwnlyError
from ownly_headless.lifecycle import AgentLifecycleManager
from ownly_headless.types import parse_psk_hex

logger = structlog.get_logger(__name__)

_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}


class AgentRequest(BaseModel):
    """Body of ``POST /agent``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    workspace_name: str = Field(alias="workspaceName", min_length=1)
    preshared_key_hex: str = Field(alias="presharedKeyHex")
    channel_name: str = Field("", alias="channelName")
    mode: Optional[str] = None


@web.middleware
async def cors_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
    """Allow browser callers from any origin."""
    if request.method == "OPTIONS":
        response: web.StreamResponse = web.Response(status=204)
    else:
        response = await handler(request)
    response.headers.update(_CORS_HEADERS)
    return response


def _error(message: str, status: int = 500) -> web.Response:
    return web.json_response({"ok": False, "error": message}, status=status)


def _format_pydantic_error(exc: pydantic.ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg', 'invalid')}" if loc else err.get("msg", "invalid"))
    return "invalid request: " + "; ".join(parts)


class ControlGateway:
    """HTTP control server.

    Lifecycle: create → start() → (serve requests) → stop()
    """

    def __init__(self, lifecycle: AgentLifecycleManager) -> None:
        self._lifecycle = lifecycle
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None
        self._started_at: float = 0.0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def build_app(self) -> web.Application:
        app = web.Application(middlewares=[cors_middleware])
        app.router.add_post("/agent", self._handle_agent)
        app.router.add_route("OPTIONS", "/agent", self._handle_preflight)
        app.router.add_get("/health", self._handle_health)
        self._started_at = time.monotonic()
        return app

    async def start(self, host: str, port: int) -> None:
        """Start the HTTP server."""
        self._app = self.build_app()
        self._runner = web.AppRunner(self._app, access_log=None)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, host, port)
        await self._site.start()
        logger.info("gateway.started", url=f"http://{host}:{port}")

    async def stop(self) -> None:
        """Stop accepting requests."""
        if self._site is not None:
            await self._site.stop()
            self._site = None
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        self._app = None
        logger.info("gateway.stopped")

    # ------------------------------------------------------------------
    # HTTP handlers
    # ------------------------------------------------------------------

    async def _handle_preflight(self, request: web.Request) -> web.Response:
        return web.Response(status=204)

    async def _handle_health(self, request: web.Request) -> web.Response:
        """Health check — for monitoring."""
        uptime = time.monotonic() - self._started_at if self._started_at else 0.0
        active = self._lifecycle.active
        return web.json_response({
            "status": "ok",
            "uptime": round(uptime, 1),
            "agent": active.describe() if active is not None else None,
        })

    async def _handle_agent(self, request: web.Request) -> web.Response:
        """Start or replace the agent; list channels when no channel is given."""
        try:
            payload = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return _error("invalid JSON body")
        if not isinstance(payload, dict):
            return _error("expected JSON object")

        try:
            body = AgentRequest.model_validate(payload)
        except pydantic.ValidationError as e:
            return _error(_format_pydantic_error(e))

        try:
            psk = parse_psk_hex(body.preshared_key_hex)
            if not body.channel_name:
                listing = await self._lifecycle.list_channels(body.workspace_name, psk)
                if listing.channels:
                    message = "Available channels: " + ", ".join(
                        f"#{name}" for name in listing.channels
                    )
                else:
                    message = "No channels found"
                return web.json_response({
                    "ok": True,
                    "message": message,
                    "channels": listing.channels,
                })

            handle = await self._lifecycle.start_or_replace(
                body.workspace_name,
                psk,
                body.channel_name,
                body.mode,
            )
        except ChannelNotFoundError as e:
            logger.warning(
                "gateway.channel_not_found",
                channel=e.channel_name,
                available=e.available,
            )
            return web.json_response(
                {"ok": False, "error": str(e), "channels": e.available},
                status=500,
            )
        except OwnlyError as e:
            logger.error("gateway.start_failed", workspace=body.workspace_name, error=str(e))
            return _error(str(e))
        except Exception as e:
            logger.error(
                "gateway.start_crashed",
                workspace=body.workspace_name,
                error=str(e),
                exc_info=True,
            )
            return _error(str(e))

        return web.json_response({
            "ok": True,
            "message": f"Agent joined workspace {handle.workspace_name} on #{handle.channel_name}",
            "agent": handle.describe(),
        })
