"""Pytest configuration and fixtures for http-relay tests.

This file provides:
- make_transport_response / make_config: sensible-default model factories
- ScriptedHandler: an httpx.MockTransport handler that replays scripted replies
- CountingInterceptor: an interceptor that answers RETRY a fixed number of times
- PortReservation / MockServer: subprocess management for the integration server
"""

from __future__ import annotations

import socket
import subprocess
import sys
import time
from pathlib import Path
from typing import Any, Callable, Generator

import httpx
import pytest

from http_relay.interceptor import Interceptor
from http_relay.models import ClientConfig, LogLevel, RetryDecision, TransportResponse, WireRequest

# Project root for fixture paths
PROJECT_ROOT = Path(__file__).parent.parent
MOCK_SERVER_MODULE = "tests.integration.mock_server"

BASE_URL = "https://api.example.com/v1"


def make_transport_response(
    status_code: int = 200,
    content: bytes = b"{}",
    headers: dict[str, list[str]] | None = None,
    url: str = f"{BASE_URL}/test",
) -> TransportResponse:
    """Create a TransportResponse for testing classification.

    Prefer this over constructing TransportResponse directly - it provides
    sensible defaults and documents which fields are typically varied in tests.
    """
    return TransportResponse(
        status_code=status_code,
        headers=headers or {},
        content=content,
        url=url,
    )


def make_config(**overrides: Any) -> ClientConfig:
    """Create a ClientConfig with logging off and the test base URL."""
    values: dict[str, Any] = {"base_url": BASE_URL, "log_level": LogLevel.OFF}
    values.update(overrides)
    return ClientConfig(**values)


Reply = httpx.Response | Exception


class ScriptedHandler:
    """httpx.MockTransport handler that replays a script of replies.

    Each reply is an httpx.Response or an exception to raise. The last reply
    repeats once the script runs out. Every received request is recorded.
    """

    def __init__(self, *replies: Reply) -> None:
        if not replies:
            replies = (httpx.Response(200, json={}),)
        self._replies = list(replies)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = min(len(self.requests), len(self._replies)) - 1
        reply = self._replies[index]
        if isinstance(reply, Exception):
            raise reply
        return httpx.Response(
            reply.status_code, headers=reply.headers, content=reply.content
        )

    @property
    def call_count(self) -> int:
        return len(self.requests)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


class CountingInterceptor(Interceptor):
    """Answers RETRY `retries` times, then DO_NOT_RETRY.

    Records every request passed to adapt and every error passed to retry.
    Optionally stamps an attempt header in adapt.
    """

    def __init__(self, retries: int = 0, stamp_header: str | None = None) -> None:
        self.retries = retries
        self.stamp_header = stamp_header
        self.adapted: list[WireRequest] = []
        self.errors: list[Exception] = []

    def adapt(self, request: WireRequest) -> WireRequest:
        self.adapted.append(request)
        if self.stamp_header:
            return request.with_header(self.stamp_header, str(len(self.adapted)))
        return request

    def retry(self, request: WireRequest, error: Exception) -> RetryDecision:
        self.errors.append(error)
        if len(self.errors) <= self.retries:
            return RetryDecision.RETRY
        return RetryDecision.DO_NOT_RETRY


@pytest.fixture
def scripted() -> Callable[..., ScriptedHandler]:
    """Factory fixture: scripted(httpx.Response(...), httpx.ConnectError(...), ...)."""
    return ScriptedHandler


# =============================================================================
# Integration server
# =============================================================================


class PortReservation:
    """Holds a reserved port with socket kept open to prevent races.

    Usage:
        reservation = PortReservation()
        # port is held exclusively until release()
        server = MockServer(reservation)
        server.start()  # calls release() internally, then binds
    """

    def __init__(self) -> None:
        self._socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._socket.bind(("127.0.0.1", 0))  # Port 0 = OS assigns ephemeral port
        self._port = self._socket.getsockname()[1]
        self._released = False

    @property
    def port(self) -> int:
        return self._port

    def release(self) -> int:
        """Release the socket and return the port for server use.

        Safe to call multiple times - subsequent calls are no-ops.
        """
        if not self._released:
            self._socket.close()
            self._released = True
        return self._port

    def __enter__(self) -> PortReservation:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.release()


def wait_for_server_ready(host: str, port: int, timeout: float = 10.0) -> bool:
    """Block until server accepts TCP connections, or timeout expires."""
    start = time.time()
    while time.time() - start < timeout:
        try:
            with socket.create_connection((host, port), timeout=1.0):
                return True
        except (ConnectionRefusedError, socket.timeout, OSError):
            time.sleep(0.1)
    return False


class MockServer:
    """Manages the mock server subprocess for integration tests.

    Runs tests/integration/mock_server.py as a subprocess.
    """

    def __init__(self, port: int | PortReservation) -> None:
        if isinstance(port, PortReservation):
            self._reservation: PortReservation | None = port
            self.port = port.port
        else:
            self._reservation = None
            self.port = port
        self.host = "127.0.0.1"
        self.base_url = f"http://{self.host}:{self.port}"
        self._process: subprocess.Popen | None = None

    def start(self) -> None:
        """Start the mock server subprocess.

        Raises:
            RuntimeError: If server fails to start within 10 seconds.
        """
        if self._reservation:
            self._reservation.release()

        self._process = subprocess.Popen(
            [
                sys.executable, "-m", MOCK_SERVER_MODULE,
                "--host", self.host,
                "--port", str(self.port),
            ],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=PROJECT_ROOT,
        )

        if not wait_for_server_ready(self.host, self.port):
            stderr = ""
            if self._process and self._process.stderr:
                stderr = self._process.stderr.read().decode(errors="replace")
            self.stop()
            raise RuntimeError(
                f"MockServer failed to start on port {self.port}. "
                f"stderr: {stderr or '(empty)'}"
            )

    def stop(self) -> None:
        """Stop the mock server subprocess with graceful shutdown.

        Uses SIGTERM first, then SIGKILL after 5s if process doesn't exit.
        Safe to call multiple times or if server was never started.
        """
        if self._process:
            self._process.terminate()
            try:
                self._process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                # Process ignored SIGTERM, escalate to SIGKILL
                self._process.kill()
                try:
                    self._process.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    pass  # Process is unkillable (zombie?), nothing more we can do
            self._process = None

    def __enter__(self) -> MockServer:
        self.start()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.stop()


@pytest.fixture(scope="session")
def mock_server() -> Generator[MockServer, None, None]:
    """Start the mock server once per test session."""
    with MockServer(PortReservation()) as server:
        yield server


# =============================================================================
# Pytest Hooks
# =============================================================================


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Automatically apply markers based on test location.

    Enables running subsets via:
        pytest -m integration  # only integration tests
        pytest -m unit         # only unit tests
    """
    for item in items:
        test_path = Path(item.fspath)
        if "integration" in test_path.parts:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
