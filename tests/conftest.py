from __future__ import annotations

import threading
from typing import Callable

import httpx
import pytest


class RecordingFactory:
    """Transport factory handing out mock transports and recording each build."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.handler = handler
        self.calls: list[tuple[str | None, str | None]] = []
        self.requests: list[httpx.Request] = []
        self._lock = threading.Lock()

    def __call__(self, proxy: str | None, local_address: str | None) -> httpx.BaseTransport:
        with self._lock:
            self.calls.append((proxy, local_address))
        return httpx.MockTransport(self._record)

    def _record(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.requests.append(request)
        return self.handler(request)


def echo(request: httpx.Request) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "url": str(request.url),
            "method": request.method,
            "headers": dict(request.headers),
            "body": request.content.decode("latin-1"),
        },
    )


@pytest.fixture
def factory() -> RecordingFactory:
    return RecordingFactory(echo)
