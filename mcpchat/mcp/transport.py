"""MCP server communication via stdio subprocess transport."""

from __future__ import annotations

import json
import logging
import os
import subprocess
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

METHOD_NOT_FOUND = -32601


class MCPTransportError(Exception):
    """Raised when MCP transport communication fails."""


class LaunchFailedError(MCPTransportError):
    """The server subprocess could not be started."""


class HandshakeTimeoutError(MCPTransportError):
    """The server did not answer ``initialize`` in time."""


class ProtocolMismatchError(MCPTransportError):
    """The server answered ``initialize`` with something we cannot use."""


class MCPCallError(MCPTransportError):
    """The server answered a request with a JSON-RPC error."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


class MCPTimeoutError(MCPTransportError):
    """No response arrived within the request timeout."""


class MCPTransport:
    """
    Communicate with an MCP server over stdin/stdout (JSON-RPC).

    Responses are matched to requests by id on a background reader thread,
    so several threads may have requests in flight on the same server and
    each request waits with its own timeout.
    """

    def __init__(
        self,
        command: str,
        args: Optional[List[str]] = None,
        env: Optional[Dict[str, str]] = None,
        name: str = "",
    ):
        self.command = command
        self.args = args or []
        self.env = env or {}
        self.name = name or command
        self._process: Optional[subprocess.Popen] = None
        self._request_id = 0
        self._pending: Dict[int, Future] = {}
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._reader: Optional[threading.Thread] = None
        self._stderr_reader: Optional[threading.Thread] = None

    # ── Lifecycle ─────────────────────────────────────────────────────────

    def start(self) -> None:
        """Spawn the MCP server subprocess."""
        if self.is_running:
            return

        merged_env = {**os.environ, **self.env}
        try:
            self._process = subprocess.Popen(
                [self.command] + self.args,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=merged_env,
            )
        except (FileNotFoundError, PermissionError) as exc:
            raise LaunchFailedError(
                f"MCP server command not found or not executable: {self.command} ({exc})"
            )
        except OSError as exc:
            raise LaunchFailedError(f"Failed to launch MCP server '{self.name}': {exc}")

        self._reader = threading.Thread(
            target=self._read_stdout, name=f"mcp-{self.name}-stdout", daemon=True
        )
        self._stderr_reader = threading.Thread(
            target=self._read_stderr, name=f"mcp-{self.name}-stderr", daemon=True
        )
        self._reader.start()
        self._stderr_reader.start()
        logger.debug("Started MCP server '%s': %s", self.name, " ".join([self.command] + self.args))

    def stop(self, timeout: float = 5.0) -> None:
        """Terminate the MCP server subprocess. Never raises."""
        process = self._process
        self._process = None
        if process is None:
            return

        try:
            if process.stdin and not process.stdin.closed:
                process.stdin.close()
        except OSError:
            pass

        if process.poll() is None:
            try:
                process.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                process.terminate()
                try:
                    process.wait(timeout=timeout)
                except subprocess.TimeoutExpired:
                    logger.warning("MCP server '%s' did not terminate, killing it", self.name)
                    process.kill()

        self._fail_pending(MCPTransportError(f"MCP server '{self.name}' was stopped"))

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.poll() is None

    # ── JSON-RPC ──────────────────────────────────────────────────────────

    def request(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Send a JSON-RPC request and wait up to ``timeout`` seconds for the result."""
        if not self.is_running:
            raise MCPTransportError(f"MCP server '{self.name}' is not running")

        future: Future = Future()
        with self._lock:
            self._request_id += 1
            request_id = self._request_id
            self._pending[request_id] = future

        message: Dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
        if params is not None:
            message["params"] = params

        try:
            self._write(message)
            response = future.result(timeout=timeout)
        except FutureTimeoutError:
            raise MCPTimeoutError(
                f"MCP server '{self.name}' did not answer '{method}' within {timeout}s"
            )
        finally:
            with self._lock:
                self._pending.pop(request_id, None)

        if "error" in response and response["error"] is not None:
            err = response["error"]
            if isinstance(err, dict):
                raise MCPCallError(f"MCP error {err.get('code')}: {err.get('message')}", err.get("code"))
            raise MCPCallError(f"MCP error: {err}")

        result = response.get("result")
        return result if isinstance(result, dict) else {}

    def notify(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        """Send a JSON-RPC notification (no response expected)."""
        message: Dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            message["params"] = params
        self._write(message)

    def _write(self, message: Dict[str, Any]) -> None:
        process = self._process
        if process is None or process.stdin is None:
            raise MCPTransportError(f"MCP server '{self.name}' is not running")
        line = json.dumps(message) + "\n"
        try:
            with self._write_lock:
                process.stdin.write(line.encode())
                process.stdin.flush()
        except (BrokenPipeError, OSError, ValueError) as exc:
            raise MCPTransportError(f"MCP transport error: {exc}")

    # ── Reader threads ────────────────────────────────────────────────────

    def _read_stdout(self) -> None:
        process = self._process
        if process is None or process.stdout is None:
            return
        for raw in iter(process.stdout.readline, b""):
            line = raw.decode(errors="replace").strip()
            if not line:
                continue
            try:
                message = json.loads(line)
            except json.JSONDecodeError:
                logger.debug("[%s] ignoring non-JSON output: %s", self.name, line[:200])
                continue
            if not isinstance(message, dict):
                continue
            self._dispatch(message)

        self._fail_pending(
            MCPTransportError(f"MCP server '{self.name}' closed connection")
        )

    def _dispatch(self, message: Dict[str, Any]) -> None:
        request_id = message.get("id")
        if "method" in message:
            logger.debug("[%s] server message: %s", self.name, message.get("method"))
            if request_id is not None:
                self._answer_server_request(request_id, message["method"])
            return
        with self._lock:
            future = self._pending.get(request_id)
        if future is None:
            logger.debug("[%s] response for unknown request id %r", self.name, request_id)
            return
        if not future.done():
            future.set_result(message)

    def _answer_server_request(self, request_id: Any, method: Any) -> None:
        """Reply to ``ping``; every other server request is unsupported."""
        reply: Dict[str, Any] = {"jsonrpc": "2.0", "id": request_id}
        if method == "ping":
            reply["result"] = {}
        else:
            reply["error"] = {"code": METHOD_NOT_FOUND, "message": f"Method not found: {method}"}
        try:
            self._write(reply)
        except MCPTransportError as exc:
            logger.debug("[%s] could not answer '%s': %s", self.name, method, exc)

    def _read_stderr(self) -> None:
        process = self._process
        if process is None or process.stderr is None:
            return
        for raw in iter(process.stderr.readline, b""):
            text = raw.decode(errors="replace").rstrip()
            if text:
                logger.debug("[%s] stderr: %s", self.name, text)

    def _fail_pending(self, exc: Exception) -> None:
        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
        for future in pending:
            if not future.done():
                future.set_exception(exc)
