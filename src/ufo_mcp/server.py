"""
UFO MCP Server

Tools for a lamp that cannot describe itself:
- configureLighting / playEffect: layer a display on top of what is showing
- stopEffect: remove the top layer and restore the one below
- getLedState: the shadow copy of what the lamp is showing
- addEffect / updateEffect / deleteEffect / listEffects: the effect catalog
- sendRawApi / setBrightness: direct device access

Transports:
- stdio: Local single-client (default)
- HTTP (--http): Streamable HTTP at /mcp, health at /healthz,
  state change events as Server-Sent Events at /events
"""

import argparse
import asyncio
import json
import logging
import sys
import time
import uuid
from pathlib import Path
from typing import Optional

from mcp.server.stdio import stdio_server

from .config import UfoConfig, get_config_manager
from .device import UfoClient
from .effects import EffectStore
from .events import Broadcaster
from .state import StateManager
from .timers import EffectTimers
from .tool_registry import create_server, get_fastmcp

logger = logging.getLogger(__name__)

SSE_POLL_SECONDS = 15.0

# Process-wide components, owned by wake()/sleep()
_config: Optional[UfoConfig] = None
_state: Optional[StateManager] = None
_client: Optional[UfoClient] = None
_store: Optional[EffectStore] = None
_timers: Optional[EffectTimers] = None
_started_at: Optional[float] = None


def _get_config() -> UfoConfig:
    global _config
    if _config is None:
        _config = UfoConfig()
    return _config


def _get_state() -> StateManager:
    if _state is None:
        raise RuntimeError("Server not initialized - call wake() first")
    return _state


def _get_client() -> UfoClient:
    if _client is None:
        raise RuntimeError("Server not initialized - call wake() first")
    return _client


def _get_store() -> EffectStore:
    if _store is None:
        raise RuntimeError("Server not initialized - call wake() first")
    return _store


def _get_timers() -> EffectTimers:
    if _timers is None:
        raise RuntimeError("Server not initialized - call wake() first")
    return _timers


def wake(config: Optional[UfoConfig] = None, client: Optional[UfoClient] = None):
    """
    Build the process-wide components. Call before serving.

    Loads the effect catalog (seeding it on first run). A catalog that exists
    but cannot be read is fatal: EffectStoreError propagates.

    Args:
        config: Configuration (defaults if None)
        client: Device client to use instead of one built from config
    """
    global _config, _state, _client, _store, _timers, _started_at

    _config = config or UfoConfig()

    broadcaster = Broadcaster()
    _state = StateManager(broadcaster, stack_warn_depth=_config.state.stack_warn_depth)
    if _config.state.base_state:
        _state.set_base_state(_config.state.base_state)

    _client = client or UfoClient(_config.device)
    _timers = EffectTimers(_state)

    _store = EffectStore(_config.server.effects_file)
    _store.load()

    _started_at = time.monotonic()
    print(f"[Wake] UFO at {_config.device.base_url}", file=sys.stderr, flush=True)
    print(f"[Wake] {len(_store)} effects from {_config.server.effects_file}", file=sys.stderr, flush=True)


async def sleep():
    """Tear down components. Pending effect timers are cancelled, not fired."""
    global _state, _client, _store, _timers

    if _timers is not None:
        await _timers.cancel_all()
        _timers = None

    if _client is not None:
        await _client.close()
        _client = None

    if _state is not None:
        _state.broadcaster.close()
        _state = None

    _store = None
    print("[Sleep] Server stopped", file=sys.stderr, flush=True)


async def run_stdio_server():
    """Run the MCP server over stdio (local)."""
    server = create_server()
    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())
    finally:
        await sleep()


def build_http_app(host: str, port: int):
    """Starlette app: /mcp (Streamable HTTP), /healthz, /events (SSE)."""
    from starlette.responses import JSONResponse, StreamingResponse
    from starlette.routing import Route

    from . import __version__

    mcp = get_fastmcp(host, port)
    app = mcp.streamable_http_app()

    async def health_check(request):
        state = _state
        return JSONResponse({
            "status": "healthy" if state is not None else "starting",
            "version": __version__,
            "uptime": round(time.monotonic() - _started_at, 1) if _started_at else 0,
            "stackDepth": state.get_effect_stack_depth() if state else 0,
            "subscribers": state.broadcaster.subscriber_count if state else 0,
        })

    async def events_stream(request):
        """Fan out broadcaster events to one SSE client."""
        broadcaster = _get_state().broadcaster
        subscriber_id = request.query_params.get("id") or f"sse-{uuid.uuid4().hex[:8]}"
        subscriber = broadcaster.subscribe_async(subscriber_id, asyncio.get_running_loop())
        print(f"[Events] Subscriber {subscriber_id} connected", file=sys.stderr, flush=True)

        async def stream():
            try:
                yield ": connected\n\n"
                while not await request.is_disconnected():
                    event = await subscriber.get_async(SSE_POLL_SECONDS)
                    if event is None:
                        if subscriber.closed:
                            break
                        yield ": keepalive\n\n"
                        continue
                    yield event.to_sse_data()
            finally:
                broadcaster.unsubscribe(subscriber_id)
                print(f"[Events] Subscriber {subscriber_id} disconnected", file=sys.stderr, flush=True)

        return StreamingResponse(
            stream(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    app.routes.append(Route("/healthz", health_check, methods=["GET"]))
    app.routes.append(Route("/events", events_stream, methods=["GET"]))
    return app


def run_http_server(host: str, port: int):
    """Run the MCP server over HTTP with uvicorn."""
    import uvicorn

    async def _serve():
        app = build_http_app(host, port)
        print(f"MCP server running at http://{host}:{port}", file=sys.stderr, flush=True)
        print(f"  Streamable HTTP: http://{host}:{port}/mcp", file=sys.stderr, flush=True)
        print(f"  Health check:    http://{host}:{port}/healthz", file=sys.stderr, flush=True)
        print(f"  Events (SSE):    http://{host}:{port}/events", file=sys.stderr, flush=True)

        config = uvicorn.Config(
            app,
            host=host,
            port=port,
            log_level="warning",
            timeout_keep_alive=5,
            timeout_graceful_shutdown=10,
        )
        server = uvicorn.Server(config)
        try:
            await server.serve()
        finally:
            await sleep()

    asyncio.run(_serve())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="UFO MCP Server")
    parser.add_argument("--http", action="store_true", dest="http_server",
                        help="Run HTTP server (Streamable HTTP at /mcp)")
    parser.add_argument("--host", default=None, help="HTTP server host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=None, help="HTTP server port (default: 8080)")
    parser.add_argument("--ufo-ip", default=None, help="UFO device IP or hostname (default: $UFO_IP or 'ufo')")
    parser.add_argument("--effects-file", default=None, help="Effects JSON file (default: /data/effects.json)")
    parser.add_argument("--config", default=None, help="YAML or JSON config file (default: ufo_config.yaml)")
    parser.add_argument("--log-level", default=None, help="Logging level (default: INFO)")
    return parser


def load_config(args: argparse.Namespace) -> UfoConfig:
    """Config file and environment, then command line flags on top."""
    manager = get_config_manager(Path(args.config) if args.config else None)
    config = manager.load()

    if args.ufo_ip:
        config.device.host = args.ufo_ip
    if args.effects_file:
        config.server.effects_file = args.effects_file
    if args.host:
        config.server.host = args.host
    if args.port:
        config.server.port = args.port
    if args.log_level:
        config.server.log_level = args.log_level.upper()
    return config


def main(argv: Optional[list] = None):
    """Entry point."""
    args = build_parser().parse_args(argv)
    config = load_config(args)

    # stdout carries the stdio transport; logs go to stderr
    logging.basicConfig(
        stream=sys.stderr,
        level=getattr(logging, config.server.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    valid, error = config.validate()
    if not valid:
        print(f"[Server] Invalid configuration: {error}", file=sys.stderr, flush=True)
        sys.exit(2)

    print(f"[Server] Config: {json.dumps(config.to_dict())}", file=sys.stderr, flush=True)
    wake(config)

    try:
        if args.http_server:
            run_http_server(config.server.host, config.server.port)
        else:
            asyncio.run(run_stdio_server())
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr, flush=True)


if __name__ == "__main__":
    main()
