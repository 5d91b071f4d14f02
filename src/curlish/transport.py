"""Connection-layer configuration built from resolved options."""

from __future__ import annotations

import logging
import ssl
import threading
import time
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Iterable, Iterator, Mapping, cast

import httpcore
import httpx

from .exceptions import InvalidOptionType, URLParseError, UnsupportedProxyKind
from .options import Opt, ProxyKind

logger = logging.getLogger(__name__)

ProxySelector = Callable[[httpx.Request], tuple[int, str]]
TransportFactory = Callable[[str | None, str | None], httpx.BaseTransport]


# absolute deadline of the request running in this context, on the time.monotonic() clock
_deadline: ContextVar[float | None] = ContextVar("curlish_deadline", default=None)


def _remaining(timeout: float | None, error: type[httpcore.TimeoutException]) -> float | None:
    """Clamp a per-operation socket timeout to what is left of the deadline."""
    deadline = _deadline.get()
    if deadline is None:
        return timeout
    remaining = deadline - time.monotonic()
    if remaining <= 0:
        raise error("Overall request timeout exceeded")
    return remaining if timeout is None else min(timeout, remaining)


class _DeadlineNetworkStream(httpcore.NetworkStream):
    def __init__(self, stream: httpcore.NetworkStream) -> None:
        self._stream = stream

    def read(self, max_bytes: int, timeout: float | None = None) -> bytes:
        return self._stream.read(max_bytes, _remaining(timeout, httpcore.ReadTimeout))

    def write(self, buffer: bytes, timeout: float | None = None) -> None:
        self._stream.write(buffer, _remaining(timeout, httpcore.WriteTimeout))

    def close(self) -> None:
        self._stream.close()

    def start_tls(
        self,
        ssl_context: ssl.SSLContext,
        server_hostname: str | None = None,
        timeout: float | None = None,
    ) -> httpcore.NetworkStream:
        stream = self._stream.start_tls(ssl_context, server_hostname, _remaining(timeout, httpcore.ConnectTimeout))
        return _DeadlineNetworkStream(stream)

    def get_extra_info(self, info: str) -> Any:
        return self._stream.get_extra_info(info)


class DeadlineBackend(httpcore.NetworkBackend):
    """Network backend bounding every connect, read and write by the request deadline.

    Each socket operation gets the smaller of its own timeout and the time
    left before the deadline of the request being sent, so a peer trickling
    bytes cannot stretch a request past its overall timeout.
    """

    def __init__(self, backend: httpcore.NetworkBackend) -> None:
        self._backend = backend

    def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: float | None = None,
        local_address: str | None = None,
        socket_options: Iterable[Any] | None = None,
    ) -> httpcore.NetworkStream:
        stream = self._backend.connect_tcp(
            host,
            port,
            timeout=_remaining(timeout, httpcore.ConnectTimeout),
            local_address=local_address,
            socket_options=socket_options,
        )
        return _DeadlineNetworkStream(stream)

    def connect_unix_socket(
        self,
        path: str,
        timeout: float | None = None,
        socket_options: Iterable[Any] | None = None,
    ) -> httpcore.NetworkStream:
        stream = self._backend.connect_unix_socket(
            path,
            timeout=_remaining(timeout, httpcore.ConnectTimeout),
            socket_options=socket_options,
        )
        return _DeadlineNetworkStream(stream)

    def sleep(self, seconds: float) -> None:
        self._backend.sleep(seconds)


def _default_factory(proxy: str | None, local_address: str | None) -> httpx.BaseTransport:
    transport = httpx.HTTPTransport(proxy=proxy, local_address=local_address)
    # httpx builds the connection pool itself and offers no backend argument
    pool = transport._pool
    pool._network_backend = DeadlineBackend(pool._network_backend)
    return transport

def _duration_ms(options: Mapping[Opt, Any], key: Opt, scale: int) -> int:
    value = options[key]
    if isinstance(value, timedelta):
        return int(value.total_seconds() * 1000)
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidOptionType("must be int or timedelta", option=key.option_name)
    return value * scale


def _resolve_ms(options: Mapping[Opt, Any], ms_key: Opt, seconds_key: Opt) -> int:
    if ms_key in options:
        return _duration_ms(options, ms_key, 1)
    if seconds_key in options:
        return _duration_ms(options, seconds_key, 1000)
    return 0


def _proxy_url(address: str, option: Opt) -> str | None:
    """Normalize a proxy address to an ``http://`` URL; empty means direct."""
    if not address:
        return None
    url = address if "://" in address else f"http://{address}"
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL as exc:
        raise URLParseError(f"invalid proxy address {address!r}", option=option.option_name, cause=exc) from exc
    if parsed.scheme != "http":
        raise UnsupportedProxyKind(
            f"only plain HTTP proxies are currently supported, got {parsed.scheme!r}",
            option=option.option_name,
        )
    if not parsed.host:
        raise URLParseError(f"proxy address {address!r} has no host", option=option.option_name)
    return url


@dataclass(frozen=True)
class TransportSettings:
    connect_timeout_ms: int = 0
    timeout_ms: int = 0
    proxy: str | None = None
    proxy_func: ProxySelector | None = None
    local_address: str | None = None

    def timeout_extension(self) -> dict[str, float | None]:
        connect = self.connect_timeout_ms / 1000 if self.connect_timeout_ms > 0 else None
        overall = self.timeout_ms / 1000 if self.timeout_ms > 0 else None
        return {"connect": connect, "read": overall, "write": overall, "pool": overall}


def build_transport_settings(options: Mapping[Opt, Any]) -> TransportSettings:
    connect_ms = _resolve_ms(options, Opt.CONNECTTIMEOUT_MS, Opt.CONNECTTIMEOUT)
    timeout_ms = _resolve_ms(options, Opt.TIMEOUT_MS, Opt.TIMEOUT)

    # the connection phase must not outlast the whole-request deadline
    if timeout_ms > 0 and (connect_ms <= 0 or connect_ms > timeout_ms):
        connect_ms = timeout_ms

    proxy: str | None = None
    proxy_func: ProxySelector | None = None
    if Opt.PROXY_FUNC in options:
        proxy_func = options[Opt.PROXY_FUNC]
        if not callable(proxy_func):
            raise InvalidOptionType(
                "must be a callable taking the outbound request",
                option=Opt.PROXY_FUNC.option_name,
            )
    else:
        if Opt.PROXYTYPE in options:
            kind = options[Opt.PROXYTYPE]
            if isinstance(kind, bool) or not isinstance(kind, int):
                raise InvalidOptionType("must be int", option=Opt.PROXYTYPE.option_name)
            if kind != ProxyKind.HTTP:
                raise UnsupportedProxyKind(
                    f"only ProxyKind.HTTP is currently supported, got {kind}",
                    option=Opt.PROXYTYPE.option_name,
                )
        if Opt.PROXY in options:
            address = options[Opt.PROXY]
            if not isinstance(address, str):
                raise InvalidOptionType("must be str", option=Opt.PROXY.option_name)
            proxy = _proxy_url(address, Opt.PROXY)

    local_address: str | None = None
    if Opt.INTERFACE in options:
        local_address = options[Opt.INTERFACE]
        if not isinstance(local_address, str):
            raise InvalidOptionType("must be str", option=Opt.INTERFACE.option_name)

    return TransportSettings(
        connect_timeout_ms=max(connect_ms, 0),
        timeout_ms=max(timeout_ms, 0),
        proxy=proxy,
        proxy_func=proxy_func,
        local_address=local_address or None,
    )


class _DeadlineBody(httpx.SyncByteStream):
    """Response body stream bounded by the overall deadline."""

    def __init__(self, stream: httpx.SyncByteStream, deadline: float, request: httpx.Request) -> None:
        self._stream = stream
        self._deadline = deadline
        self._request = request

    def __iter__(self) -> Iterator[bytes]:
        chunks = iter(self._stream)
        while True:
            # only the socket reads behind next() run under the deadline
            token = _deadline.set(self._deadline)
            try:
                chunk = next(chunks, None)
            finally:
                _deadline.reset(token)
            if chunk is None:
                return
            if time.monotonic() > self._deadline:
                raise httpx.ReadTimeout("Overall request timeout exceeded", request=self._request)
            yield chunk

    def close(self) -> None:
        self._stream.close()


class OptionTransport(httpx.BaseTransport):
    """Transport applying option-driven timeouts and proxy selection.

    One delegate transport (and therefore one connection pool) is kept per
    proxy URL, ``None`` standing for direct connections.
    """

    def __init__(self, settings: TransportSettings, *, factory: TransportFactory | None = None) -> None:
        self.settings = settings
        self._factory = factory or _default_factory
        self._delegates: dict[str | None, httpx.BaseTransport] = {}
        self._lock = threading.Lock()

    def _delegate(self, proxy: str | None) -> httpx.BaseTransport:
        with self._lock:
            transport = self._delegates.get(proxy)
            if transport is None:
                transport = self._factory(proxy, self.settings.local_address)
                self._delegates[proxy] = transport
            return transport

    def select_proxy(self, request: httpx.Request) -> str | None:
        selector = self.settings.proxy_func
        if selector is None:
            return self.settings.proxy
        kind, address = selector(request)
        if kind != ProxyKind.HTTP:
            raise UnsupportedProxyKind(
                f"only ProxyKind.HTTP is currently supported, got {kind}",
                option=Opt.PROXY_FUNC.option_name,
            )
        return _proxy_url(address or "", Opt.PROXY_FUNC)

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        deadline = None
        if self.settings.timeout_ms > 0:
            deadline = time.monotonic() + self.settings.timeout_ms / 1000
        request.extensions = {**request.extensions, "timeout": self.settings.timeout_extension()}

        transport = self._delegate(self.select_proxy(request))
        if deadline is None:
            return transport.handle_request(request)

        token = _deadline.set(deadline)
        try:
            response = transport.handle_request(request)
        finally:
            _deadline.reset(token)
        if time.monotonic() > deadline:
            response.close()
            raise httpx.ReadTimeout("Overall request timeout exceeded", request=request)
        response.stream = _DeadlineBody(cast(httpx.SyncByteStream, response.stream), deadline, request)
        return response

    def close(self) -> None:
        with self._lock:
            delegates = list(self._delegates.values())
            self._delegates.clear()
        for transport in delegates:
            transport.close()


def build_transport(options: Mapping[Opt, Any], *, factory: TransportFactory | None = None) -> OptionTransport:
    settings = build_transport_settings(options)
    logger.debug(
        "Building transport connect_timeout_ms=%s timeout_ms=%s proxy=%s proxy_func=%s",
        settings.connect_timeout_ms,
        settings.timeout_ms,
        settings.proxy,
        settings.proxy_func is not None,
    )
    return OptionTransport(settings, factory=factory)
