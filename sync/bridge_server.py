"""
Local HTTP bridge between the browser extension shim and the engine.

The shim forwards browser events and popup/interstitial messages here and
picks up the side effects (redirects, warnings) the engine asked for:

    POST /events     {"event": "tab_activated", "tab": {"id": 3, "url": "...", "active": true}}
                     {"event": "tab_updated", "tab": {...}, "status": "complete" | "loading"}
                     {"event": "window_focus", "focused": false}
                     {"event": "tab_removed", "tab_id": 3}
    POST /message    {"type": "GET_STATUS" | "REQUEST_EMERGENCY_ACCESS" | ...}
    GET  /commands   pending host commands (drained)
    GET  /health     "ok"

Listens on 127.0.0.1 only.
"""

import json
import logging
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import config
from core.host import Tab
from core.messages import handle_message

logger = logging.getLogger(__name__)

# Request bodies are small JSON objects
_MAX_BODY_BYTES = 64 * 1024


class BridgeHost:
    """
    BrowserHost fed by shim events.

    Remembers the last reported active tab and window focus, and queues
    redirect/warning commands until the shim polls /commands.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active_tab: Optional[Tab] = None
        self._focused: bool = False
        self._commands: List[Dict[str, Any]] = []

    # BrowserHost ------------------------------------------------------

    def get_active_tab(self) -> Optional[Tab]:
        with self._lock:
            return self._active_tab

    def is_window_focused(self) -> bool:
        with self._lock:
            return self._focused

    def redirect(self, tab_id: int, url: str) -> None:
        self._queue({"action": "redirect", "tab_id": tab_id, "url": url})

    def show_warning(self, tab_id: int, used_minutes: int, limit_minutes: int) -> None:
        self._queue({
            "action": "showWarning",
            "tab_id": tab_id,
            "minutes": used_minutes,
            "limit": limit_minutes,
        })

    # Shim side --------------------------------------------------------

    def drain_commands(self) -> List[Dict[str, Any]]:
        with self._lock:
            commands, self._commands = self._commands, []
        return commands

    def apply_event(self, engine, payload: Dict[str, Any]) -> None:
        """
        Record an event's effect on host state, then forward it to the engine.

        Raises:
            ValueError: For an unknown event or a malformed tab payload.
        """
        event = payload.get("event")

        if event == "tab_activated":
            tab = Tab.from_dict(payload.get("tab") or {})
            tab = Tab(id=tab.id, url=tab.url, active=True)
            with self._lock:
                self._active_tab = tab
                self._focused = True
            engine.on_tab_activated(tab)

        elif event == "tab_updated":
            tab = Tab.from_dict(payload.get("tab") or {})
            if tab.active:
                with self._lock:
                    self._active_tab = tab
            engine.on_tab_updated(tab, str(payload.get("status", "")))

        elif event == "window_focus":
            focused = bool(payload.get("focused"))
            if "tab" in payload and payload["tab"]:
                tab = Tab.from_dict(payload["tab"])
                with self._lock:
                    self._active_tab = Tab(id=tab.id, url=tab.url, active=True)
            with self._lock:
                self._focused = focused
            engine.on_window_focus_changed(focused)

        elif event == "tab_removed":
            try:
                tab_id = int(payload.get("tab_id"))
            except (TypeError, ValueError) as e:
                raise ValueError(f"Invalid tab_id: {payload.get('tab_id')!r}") from e
            with self._lock:
                if self._active_tab and self._active_tab.id == tab_id:
                    self._active_tab = None
            engine.on_tab_removed(tab_id)

        else:
            raise ValueError(f"Unknown event: {event!r}")

    def _queue(self, command: Dict[str, Any]) -> None:
        with self._lock:
            self._commands.append(command)
        logger.debug(f"Queued host command: {command['action']} (tab {command['tab_id']})")


class _BridgeHandler(BaseHTTPRequestHandler):
    """HTTP request handler for the extension shim."""

    server: "BridgeServer"

    def do_GET(self) -> None:
        path = urlparse(self.path).path
        if path == "/health":
            self._send_text(200, "ok")
        elif path == "/commands":
            self._send_json(200, {"ok": True, "commands": self.server.host.drain_commands()})
        else:
            self._send_json(404, {"ok": False, "error": "not found"})

    def do_POST(self) -> None:
        path = urlparse(self.path).path
        payload = self._read_json()
        if payload is None:
            return

        if path == "/events":
            try:
                self.server.host.apply_event(self.server.engine, payload)
            except ValueError as e:
                logger.warning(f"Rejected bridge event: {e}")
                self._send_json(400, {"ok": False, "error": str(e)})
                return
            self._send_json(200, {"ok": True, "commands": self.server.host.drain_commands()})

        elif path == "/message":
            response = handle_message(self.server.engine, payload)
            self._send_json(200, response)

        else:
            self._send_json(404, {"ok": False, "error": "not found"})

    def _read_json(self) -> Optional[Dict[str, Any]]:
        try:
            length = int(self.headers.get("Content-Length", 0))
        except ValueError:
            length = 0
        if length <= 0 or length > _MAX_BODY_BYTES:
            self._send_json(400, {"ok": False, "error": "missing or oversized body"})
            return None
        try:
            payload = json.loads(self.rfile.read(length).decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            self._send_json(400, {"ok": False, "error": "invalid JSON"})
            return None
        if not isinstance(payload, dict):
            self._send_json(400, {"ok": False, "error": "expected a JSON object"})
            return None
        return payload

    def _send_json(self, status: int, body: Dict[str, Any]) -> None:
        data = json.dumps(body).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def _send_text(self, status: int, text: str) -> None:
        data = text.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "text/plain")
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def log_message(self, format, *args) -> None:
        """Suppress default HTTP log messages (use our logger instead)."""
        logger.debug(f"Bridge: {format % args}")


class BridgeServer(ThreadingHTTPServer):
    """Bridge HTTP server bound to an engine and its BridgeHost."""

    daemon_threads = True

    def __init__(self, engine, host: BridgeHost, port: Optional[int] = None) -> None:
        self.engine = engine
        self.host = host
        super().__init__((config.BRIDGE_HOST, config.BRIDGE_PORT if port is None else port), _BridgeHandler)

    @property
    def port(self) -> int:
        return self.server_address[1]


def start_bridge_server(engine, host: BridgeHost, port: Optional[int] = None) -> BridgeServer:
    """
    Start the bridge in a background thread.

    Returns:
        The running server; call shutdown() then server_close() to stop it.
    """
    server = BridgeServer(engine, host, port)
    thread = threading.Thread(target=server.serve_forever, name="bridge", daemon=True)
    thread.start()
    logger.info(f"Extension bridge listening on http://{config.BRIDGE_HOST}:{server.port}")
    return server
