"""HTTP client session configured through CURL-like options."""

from __future__ import annotations

import logging
import threading
from contextlib import ExitStack, contextmanager
from http.cookiejar import CookieJar
from types import MappingProxyType
from typing import Any, Iterable, Iterator, Mapping, Union

import httpx

from .config import DEFAULT_OPTIONS, ClientDefaults
from .cookies import build_cookie_jar
from .exceptions import CurlishError, InvalidOptionType, RedirectRefused, URLParseError
from .forms import FORM_CONTENT_TYPE, MultipartFields, add_params, encode_params, has_file_params, open_multipart
from .options import Opt, affects_jar, affects_transport, coerce_option_key, coerce_options
from .redirects import RedirectPolicy, UseLastResponse, build_redirect_policy
from .request_options import OneTimeOverrides, ResolvedRequest, resolve
from .security import sanitize_headers
from .transport import OptionTransport, TransportFactory, build_transport

logger = logging.getLogger(__name__)

RequestBody = Union[bytes, str, Iterable[bytes]]


def _normalize_headers(headers: Mapping[str, str] | None) -> dict[str, str]:
    if not headers:
        return {}
    clean: dict[str, str] = {}
    for key, value in headers.items():
        clean[str(key)] = str(value)
    return clean


def _string_option(options: Mapping[Opt, Any], key: Opt) -> str | None:
    value = options.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidOptionType("must be str", option=key.option_name)
    return value


def _referer_for(previous: httpx.URL, target: httpx.URL) -> str | None:
    if previous.scheme == "https" and target.scheme == "http":
        return None
    return str(previous).split("#", 1)[0]


def _same_site(initial: httpx.URL, target: httpx.URL) -> bool:
    """True when ``target`` is the host of ``initial`` or one of its subdomains."""
    return target.host == initial.host or target.host.endswith("." + initial.host)


def _append_cookies(request: httpx.Request, cookies: Iterable[tuple[str, str]]) -> None:
    staged = "; ".join(f"{name}={value}" for name, value in cookies)
    if not staged:
        return
    existing = request.headers.get("Cookie")
    request.headers["Cookie"] = f"{existing}; {staged}" if existing else staged


class HttpClient:
    """Synchronous client session.

    Options resolve per call as one-time > persistent > default. The
    ``with_*`` staging methods take the session lock for the calling thread;
    the next ``do`` (or helper) consumes the staged overrides and releases it,
    whether or not the call succeeds. Calls made without staging take the
    lock only while options are resolved.

    The transport and cookie jar built for the first call are cached and
    reused until a staged or persistent option that affects them changes.
    """

    def __init__(
        self,
        options: Mapping[Opt | int, Any] | None = None,
        *,
        headers: Mapping[str, str] | None = None,
        defaults: ClientDefaults | Mapping[Opt | int, Any] | None = None,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        if defaults is None:
            self._defaults = DEFAULT_OPTIONS
        elif isinstance(defaults, ClientDefaults):
            self._defaults = MappingProxyType(defaults.as_options())
        else:
            self._defaults = MappingProxyType(coerce_options(defaults))
        self._options = coerce_options(options)
        self._headers = _normalize_headers(headers)
        self._transport_factory = transport_factory

        self._transport: OptionTransport | None = None
        self._retired: list[OptionTransport] = []
        self._jar: CookieJar | None = None

        self._lock = threading.Lock()
        # holds_lock is set only in the thread that owns the lock
        self._local = threading.local()
        self._staged = OneTimeOverrides()

    def __enter__(self) -> "HttpClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        with self._exclusive():
            transports = self._retired
            if self._transport is not None:
                transports.append(self._transport)
            self._transport = None
            self._retired = []
            self._jar = None
        for transport in transports:
            transport.close()

    @property
    def options(self) -> Mapping[Opt, Any]:
        return MappingProxyType(dict(self._options))

    @property
    def headers(self) -> Mapping[str, str]:
        return MappingProxyType(dict(self._headers))

    @property
    def cookies(self) -> CookieJar | None:
        return self._jar

    # -- locking --------------------------------------------------------------

    def _holds_lock(self) -> bool:
        return getattr(self._local, "holds_lock", False)

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        if self._holds_lock():
            yield
            return
        with self._lock:
            yield

    def _reset(self) -> None:
        self._staged = OneTimeOverrides()
        self._local.holds_lock = False
        self._lock.release()

    def begin(self) -> "HttpClient":
        """Take the session lock for this thread; blocks while another thread stages."""
        if not self._holds_lock():
            self._lock.acquire()
            self._local.holds_lock = True
        return self

    def discard(self) -> None:
        """Drop staged overrides and release the lock without sending a request."""
        if self._holds_lock():
            self._reset()

    # -- one-time overrides ---------------------------------------------------

    def with_option(self, key: Opt | int, value: Any) -> "HttpClient":
        key = coerce_option_key(key)
        self.begin()
        self._staged.set_option(key, value)
        return self

    def with_options(self, options: Mapping[Opt | int, Any]) -> "HttpClient":
        converted = coerce_options(options)
        self.begin()
        for key, value in converted.items():
            self._staged.set_option(key, value)
        return self

    def with_header(self, key: str, value: str) -> "HttpClient":
        self.begin()
        self._staged.headers[str(key)] = str(value)
        return self

    def with_headers(self, headers: Mapping[str, str]) -> "HttpClient":
        self.begin()
        self._staged.headers.update(_normalize_headers(headers))
        return self

    def with_cookie(self, name: str, value: str) -> "HttpClient":
        self.begin()
        self._staged.cookies.append((str(name), str(value)))
        return self

    # -- persistent configuration ---------------------------------------------

    def set_option(self, key: Opt | int, value: Any) -> "HttpClient":
        """Change a persistent option; ``None`` removes it."""
        return self.set_options({key: value})

    def set_options(self, options: Mapping[Opt | int, Any]) -> "HttpClient":
        converted = coerce_options(options)
        with self._exclusive():
            for key, value in converted.items():
                if value is None:
                    self._options.pop(key, None)
                else:
                    self._options[key] = value
                self._invalidate(key)
        return self

    def set_header(self, key: str, value: str | None) -> "HttpClient":
        with self._exclusive():
            if value is None:
                self._headers.pop(str(key), None)
            else:
                self._headers[str(key)] = str(value)
        return self

    def _invalidate(self, key: Opt) -> None:
        if affects_transport(key) and self._transport is not None:
            logger.debug("Persistent %s changed; dropping cached transport", key.option_name)
            # requests may still be running on it; closed with the session
            self._retired.append(self._transport)
            self._transport = None
        if affects_jar(key) and self._jar is not None:
            logger.debug("Persistent %s changed; dropping cached cookie jar", key.option_name)
            self._jar = None

    # -- resource reuse ---------------------------------------------------------

    def _acquire_transport(self, options: Mapping[Opt, Any], reuse: bool) -> tuple[OptionTransport, bool]:
        """Return ``(transport, one_off)``; one-off transports are closed after the call."""
        if self._transport is not None and reuse:
            return self._transport, False
        transport = build_transport(options, factory=self._transport_factory)
        if reuse:
            self._transport = transport
            return transport, False
        logger.debug("Staged transport options present; using a one-off transport")
        return transport, True

    def _acquire_jar(self, options: Mapping[Opt, Any], reuse: bool) -> CookieJar | None:
        if self._jar is not None and reuse:
            return self._jar
        jar = build_cookie_jar(options)
        if reuse:
            self._jar = jar
        return jar

    # -- execution --------------------------------------------------------------

    def do(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str] | None = None,
        body: RequestBody | None = None,
        *,
        files: MultipartFields | None = None,
    ) -> httpx.Response:
        """Send one request and return the engine's response.

        Per-call ``headers`` win over staged and persistent headers. ``files``
        takes httpx multipart entries and is ignored when ``body`` is given.
        Engine errors (``httpx.HTTPError``) propagate unchanged.
        """
        self.begin()
        try:
            resolved = resolve(
                self._defaults,
                self._options,
                self._staged,
                self._headers,
                _normalize_headers(headers),
            )
            transport, one_off = self._acquire_transport(resolved.options, self._staged.reuse_transport)
            try:
                jar = self._acquire_jar(resolved.options, self._staged.reuse_jar)
            except BaseException:
                if one_off:
                    transport.close()
                raise
        finally:
            self._reset()

        try:
            return self._execute(method, url, resolved, transport, jar, body, files)
        finally:
            if one_off:
                transport.close()

    def _execute(
        self,
        method: str,
        url: str,
        resolved: ResolvedRequest,
        transport: OptionTransport,
        jar: CookieJar | None,
        body: RequestBody | None,
        files: MultipartFields | None,
    ) -> httpx.Response:
        policy = build_redirect_policy(resolved.options)
        client = httpx.Client(transport=transport, cookies=jar, follow_redirects=False, trust_env=False)
        request = self._build_request(client, method, url, resolved, body, files)
        logger.debug(
            "Sending %s %s headers=%s",
            request.method,
            request.url,
            sanitize_headers(request.headers),
        )
        return self._send(client, request, policy, resolved)

    @staticmethod
    def _build_request(
        client: httpx.Client,
        method: str,
        url: str,
        resolved: ResolvedRequest,
        body: RequestBody | None,
        files: MultipartFields | None = None,
    ) -> httpx.Request:
        headers = httpx.Headers()
        referer = _string_option(resolved.options, Opt.REFERER)
        if referer is not None:
            headers["Referer"] = referer
        user_agent = _string_option(resolved.options, Opt.USERAGENT)
        if user_agent is not None:
            headers["User-Agent"] = user_agent
        headers.update(resolved.headers)

        try:
            request = client.build_request(method.upper(), url, headers=headers, content=body, files=files)
        except httpx.InvalidURL as exc:
            raise URLParseError(f"invalid URL {url!r}: {exc}", cause=exc) from exc
        if request.url.scheme not in {"http", "https"} or not request.url.host:
            raise URLParseError(f"URL {url!r} must be absolute with an http or https scheme")

        _append_cookies(request, resolved.cookies)
        return request

    @staticmethod
    def _send(
        client: httpx.Client,
        request: httpx.Request,
        policy: RedirectPolicy,
        resolved: ResolvedRequest,
    ) -> httpx.Response:
        auto_referer = resolved.options.get(Opt.AUTOREFERER) is True
        via: list[httpx.Request] = [request]
        history: list[httpx.Response] = []

        response = client.send(request)
        while response.next_request is not None:
            next_request = response.next_request
            try:
                policy(next_request, list(via))
            except UseLastResponse:
                break
            except RedirectRefused as exc:
                exc.response = response
                raise
            except Exception as exc:
                raise RedirectRefused(str(exc) or type(exc).__name__, response=response, cause=exc) from exc

            if auto_referer:
                referer = _referer_for(response.request.url, next_request.url)
                if referer is not None:
                    next_request.headers["Referer"] = referer
            # httpx drops the Cookie header on redirect; the jar's cookies are re-added by the client
            if _same_site(request.url, next_request.url):
                _append_cookies(next_request, resolved.cookies)
            logger.debug("Following redirect %s -> %s", response.request.url, next_request.url)

            history.append(response)
            via.append(next_request)
            response = client.send(next_request)
            response.history = list(history)
        return response

    # -- helpers ------------------------------------------------------------------

    def get(self, url: str, params: Mapping[str, str] | None = None) -> httpx.Response:
        return self.do("GET", add_params(url, params))

    def post(self, url: str, params: Mapping[str, str] | None = None) -> httpx.Response:
        """POST ``params`` as a urlencoded form, or as multipart when any key starts with ``@``."""
        if has_file_params(params):
            return self.post_multipart(url, params)
        return self.do("POST", url, {"Content-Type": FORM_CONTENT_TYPE}, encode_params(params or {}))

    def post_multipart(self, url: str, params: Mapping[str, str] | None = None) -> httpx.Response:
        """POST ``params`` as ``multipart/form-data``; ``@key`` values are file paths.

        Files are streamed by httpx while the request is sent.
        """
        with ExitStack() as stack:
            try:
                fields = stack.enter_context(open_multipart(params or {}))
            except CurlishError:
                self.discard()
                raise
            return self.do("POST", url, files=fields)
