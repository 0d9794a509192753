"""
Local HTTP server for the browser extension API.

Wraps ExtensionAPI in http.server so the extension can talk to FocusFlow
without the web dashboard. Responses are JSON; CORS is open so the
extension's background page can call it.
"""

import json
import logging
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Optional

import config
from sync.extension_api import ExtensionAPI

logger = logging.getLogger(__name__)

# Largest request body we read (activity payloads are tiny)
_MAX_BODY_BYTES = 64 * 1024


class _ExtensionRequestHandler(BaseHTTPRequestHandler):
    """Translates HTTP requests into ExtensionAPI.handle() calls."""

    # Set by make_server()
    api: Optional[ExtensionAPI] = None

    def _send_json(self, status: int, payload: dict) -> None:
        data = json.dumps(payload, default=str).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(data)))
        self._send_cors_headers()
        self.end_headers()
        self.wfile.write(data)

    def _send_cors_headers(self) -> None:
        self.send_header("Access-Control-Allow-Origin", "*")
        self.send_header("Access-Control-Allow-Methods", "GET, POST, OPTIONS")
        self.send_header("Access-Control-Allow-Headers", "Authorization, Content-Type")

    def _read_body(self) -> Optional[bytes]:
        try:
            length = int(self.headers.get("Content-Length") or 0)
        except ValueError:
            return None
        if length <= 0:
            return None
        return self.rfile.read(min(length, _MAX_BODY_BYTES))

    def _dispatch(self, method: str) -> None:
        body = self._read_body() if method == "POST" else None
        status, payload = self.api.handle(method, self.path, dict(self.headers.items()), body)
        self._send_json(status, payload)

    def do_OPTIONS(self) -> None:
        """CORS preflight."""
        self.send_response(204)
        self._send_cors_headers()
        self.end_headers()

    def do_GET(self) -> None:
        self._dispatch("GET")

    def do_POST(self) -> None:
        self._dispatch("POST")

    def log_message(self, format, *args) -> None:
        """Route access logs through our logger instead of stderr."""
        logger.debug(f"API server: {format % args}")


def make_server(api: ExtensionAPI, host: str = config.API_HOST, port: int = config.API_PORT) -> ThreadingHTTPServer:
    """Build (but don't start) the extension API server."""
    handler = type("ExtensionRequestHandler", (_ExtensionRequestHandler,), {"api": api})
    server = ThreadingHTTPServer((host, port), handler)
    server.daemon_threads = True
    return server


def run_api_server(host: str = config.API_HOST, port: int = config.API_PORT, api: Optional[ExtensionAPI] = None) -> None:
    """
    Serve the extension API until interrupted.

    Args:
        host: Interface to bind
        port: TCP port
        api: Pre-built handler (defaults to one backed by the service role store)
    """
    if api is None:
        from sync.supabase_client import FlowStore
        store = FlowStore.for_service()
        if not store.is_available():
            logger.warning("Supabase is not configured; API requests will fail with 500")
        api = ExtensionAPI(store)

    server = make_server(api, host, port)
    logger.info(f"Extension API listening on http://{host}:{port}/api/extension")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Extension API server interrupted")
    finally:
        server.server_close()
        logger.info("Extension API server stopped")
