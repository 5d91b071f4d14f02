from __future__ import annotations

import socket
import threading
import time
from datetime import timedelta
from typing import Any, Iterable, Iterator

import httpcore
import httpx
import pytest

from conftest import RecordingFactory, echo
from curlish import HttpClient
from curlish import transport as transport_module
from curlish.exceptions import InvalidOptionType, URLParseError, UnsupportedProxyKind
from curlish.options import Opt, ProxyKind
from curlish.transport import (
    DeadlineBackend,
    OptionTransport,
    TransportSettings,
    build_transport,
    build_transport_settings,
)


def test_no_options_means_no_timeouts_and_direct_connections() -> None:
    settings = build_transport_settings({})
    assert settings == TransportSettings()
    assert settings.timeout_extension() == {"connect": None, "read": None, "write": None, "pool": None}


def test_millisecond_options_win_over_seconds() -> None:
    settings = build_transport_settings(
        {
            Opt.CONNECTTIMEOUT: 9,
            Opt.CONNECTTIMEOUT_MS: 1500,
            Opt.TIMEOUT: 30,
            Opt.TIMEOUT_MS: 4000,
        }
    )
    assert settings.connect_timeout_ms == 1500
    assert settings.timeout_ms == 4000


def test_seconds_options_scale_to_milliseconds() -> None:
    settings = build_transport_settings({Opt.CONNECTTIMEOUT: 2, Opt.TIMEOUT: 5})
    assert settings.connect_timeout_ms == 2000
    assert settings.timeout_ms == 5000


def test_timedelta_values_are_accepted() -> None:
    settings = build_transport_settings({Opt.TIMEOUT: timedelta(seconds=1.5)})
    assert settings.timeout_ms == 1500


def test_connect_timeout_clamps_to_overall_timeout() -> None:
    settings = build_transport_settings({Opt.CONNECTTIMEOUT_MS: 10000, Opt.TIMEOUT_MS: 2000})
    assert settings.connect_timeout_ms == 2000
    assert settings.timeout_extension() == {"connect": 2.0, "read": 2.0, "write": 2.0, "pool": 2.0}


def test_missing_connect_timeout_takes_overall_timeout() -> None:
    settings = build_transport_settings({Opt.TIMEOUT: 3})
    assert settings.connect_timeout_ms == 3000


@pytest.mark.parametrize(
    ("key", "value"),
    [
        (Opt.CONNECTTIMEOUT_MS, "100"),
        (Opt.CONNECTTIMEOUT, 1.5),
        (Opt.TIMEOUT_MS, True),
        (Opt.TIMEOUT, "5"),
        (Opt.PROXY, 3128),
        (Opt.PROXYTYPE, "http"),
        (Opt.INTERFACE, 0),
        (Opt.PROXY_FUNC, "proxy.local"),
    ],
)
def test_type_mismatch_names_the_option(key: Opt, value: object) -> None:
    with pytest.raises(InvalidOptionType) as excinfo:
        build_transport_settings({key: value})
    assert excinfo.value.option == key.option_name


@pytest.mark.parametrize("kind", [ProxyKind.SOCKS4, ProxyKind.SOCKS5, ProxyKind.SOCKS4A])
def test_only_http_proxy_kind_is_supported(kind: ProxyKind) -> None:
    with pytest.raises(UnsupportedProxyKind):
        build_transport_settings({Opt.PROXYTYPE: kind, Opt.PROXY: "proxy.local:1080"})


def test_static_proxy_is_normalized_to_http_url() -> None:
    settings = build_transport_settings({Opt.PROXYTYPE: ProxyKind.HTTP, Opt.PROXY: "proxy.local:3128"})
    assert settings.proxy == "http://proxy.local:3128"


def test_static_proxy_with_other_scheme_is_rejected() -> None:
    with pytest.raises(UnsupportedProxyKind):
        build_transport_settings({Opt.PROXY: "socks5://proxy.local:1080"})


def test_static_proxy_without_host_is_rejected() -> None:
    with pytest.raises(URLParseError):
        build_transport_settings({Opt.PROXY: "http://:3128"})


def test_proxy_func_takes_precedence_over_proxy_type() -> None:
    settings = build_transport_settings(
        {
            Opt.PROXY_FUNC: lambda request: (ProxyKind.HTTP, "proxy.local:3128"),
            Opt.PROXYTYPE: ProxyKind.SOCKS5,
        }
    )
    assert settings.proxy_func is not None


def test_transport_applies_timeouts_and_static_proxy() -> None:
    factory = RecordingFactory(echo)
    transport = build_transport(
        {Opt.CONNECTTIMEOUT_MS: 10000, Opt.TIMEOUT_MS: 2000, Opt.PROXY: "proxy.local:3128", Opt.INTERFACE: "10.0.0.2"},
        factory=factory,
    )

    with httpx.Client(transport=transport) as client:
        response = client.get("http://example.com/")

    assert response.status_code == 200
    assert factory.calls == [("http://proxy.local:3128", "10.0.0.2")]
    assert factory.requests[0].extensions["timeout"] == {"connect": 2.0, "read": 2.0, "write": 2.0, "pool": 2.0}


def test_proxy_selector_runs_per_request_and_pools_per_proxy() -> None:
    def select(request: httpx.Request) -> tuple[int, str]:
        if request.url.host == "internal.example":
            return ProxyKind.HTTP, ""
        return ProxyKind.HTTP, "proxy.local:3128"

    factory = RecordingFactory(echo)
    transport = build_transport({Opt.PROXY_FUNC: select}, factory=factory)

    with httpx.Client(transport=transport) as client:
        client.get("http://public.example/a")
        client.get("http://internal.example/b")
        client.get("http://public.example/c")

    assert factory.calls == [("http://proxy.local:3128", None), (None, None)]
    assert len(factory.requests) == 3


def test_proxy_selector_unsupported_kind_fails_the_request() -> None:
    transport = build_transport(
        {Opt.PROXY_FUNC: lambda request: (ProxyKind.SOCKS5, "proxy.local:1080")},
        factory=RecordingFactory(echo),
    )

    with httpx.Client(transport=transport) as client:
        with pytest.raises(UnsupportedProxyKind):
            client.get("http://example.com/")


def test_proxy_selector_errors_propagate() -> None:
    def select(request: httpx.Request) -> tuple[int, str]:
        raise LookupError("no route")

    transport = build_transport({Opt.PROXY_FUNC: select}, factory=RecordingFactory(echo))
    with httpx.Client(transport=transport) as client:
        with pytest.raises(LookupError, match="no route"):
            client.get("http://example.com/")


def test_overall_timeout_is_a_deadline_on_the_body() -> None:
    def slow_body(request: httpx.Request) -> httpx.Response:
        def chunks() -> Iterator[bytes]:
            yield b"first"
            time.sleep(0.2)
            yield b"second"

        return httpx.Response(200, content=chunks())

    transport = build_transport({Opt.TIMEOUT_MS: 50}, factory=RecordingFactory(slow_body))
    with httpx.Client(transport=transport) as client:
        with pytest.raises(httpx.ReadTimeout):
            client.get("http://example.com/slow")


def test_close_closes_every_delegate() -> None:
    closed: list[str | None] = []

    class ClosingTransport(httpx.MockTransport):
        def __init__(self, proxy: str | None) -> None:
            super().__init__(echo)
            self.proxy = proxy

        def close(self) -> None:
            closed.append(self.proxy)

    transport = OptionTransport(
        build_transport_settings({Opt.PROXY: "proxy.local:3128"}),
        factory=lambda proxy, local_address: ClosingTransport(proxy),
    )
    with httpx.Client(transport=transport) as client:
        client.get("http://example.com/")

    assert closed == ["http://proxy.local:3128"]


class _RecordingStream(httpcore.NetworkStream):
    def __init__(self) -> None:
        self.timeouts: list[float | None] = []

    def read(self, max_bytes: int, timeout: float | None = None) -> bytes:
        self.timeouts.append(timeout)
        return b""

    def write(self, buffer: bytes, timeout: float | None = None) -> None:
        self.timeouts.append(timeout)

    def close(self) -> None:
        pass


class _RecordingBackend(httpcore.NetworkBackend):
    def __init__(self) -> None:
        self.stream = _RecordingStream()
        self.connect_timeouts: list[float | None] = []

    def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: float | None = None,
        local_address: str | None = None,
        socket_options: Iterable[Any] | None = None,
    ) -> httpcore.NetworkStream:
        self.connect_timeouts.append(timeout)
        return self.stream


def test_deadline_backend_clamps_socket_timeouts_to_the_deadline() -> None:
    inner = _RecordingBackend()
    backend = DeadlineBackend(inner)

    token = transport_module._deadline.set(time.monotonic() + 0.5)
    try:
        stream = backend.connect_tcp("example.com", 80, timeout=10.0)
        stream.write(b"GET / HTTP/1.1\r\n\r\n", timeout=10.0)
        stream.read(1024, timeout=None)
    finally:
        transport_module._deadline.reset(token)
    stream.read(1024, timeout=10.0)

    assert 0 < inner.connect_timeouts[0] <= 0.5
    assert all(0 < timeout <= 0.5 for timeout in inner.stream.timeouts[:2])
    assert inner.stream.timeouts[2] == 10.0


def test_deadline_backend_fails_operations_past_the_deadline() -> None:
    backend = DeadlineBackend(_RecordingBackend())
    stream = backend.connect_tcp("example.com", 80)

    token = transport_module._deadline.set(time.monotonic() - 1)
    try:
        with pytest.raises(httpcore.ReadTimeout):
            stream.read(1024, timeout=10.0)
        with pytest.raises(httpcore.WriteTimeout):
            stream.write(b"data", timeout=10.0)
        with pytest.raises(httpcore.ConnectTimeout):
            backend.connect_tcp("example.com", 80, timeout=10.0)
    finally:
        transport_module._deadline.reset(token)


@pytest.fixture
def trickling_server() -> Iterator[str]:
    """Server sending its response headers one line every 100 ms."""
    listener = socket.create_server(("127.0.0.1", 0))
    listener.settimeout(5)
    stop = threading.Event()

    def serve() -> None:
        try:
            conn, _ = listener.accept()
        except OSError:
            return
        with conn:
            try:
                conn.recv(65536)
                conn.sendall(b"HTTP/1.1 200 OK\r\n")
                for _ in range(50):
                    if stop.wait(0.1):
                        return
                    conn.sendall(b"X-Slow: 1\r\n")
            except OSError:
                return

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()
    host, port = listener.getsockname()
    yield f"http://{host}:{port}/"
    stop.set()
    listener.close()
    thread.join(timeout=5)


def test_overall_timeout_bounds_trickled_response_headers(trickling_server: str) -> None:
    client = HttpClient({Opt.TIMEOUT_MS: 500})

    started = time.monotonic()
    with pytest.raises(httpx.ReadTimeout):
        client.get(trickling_server)
    elapsed = time.monotonic() - started
    client.close()

    assert elapsed < 1.5
