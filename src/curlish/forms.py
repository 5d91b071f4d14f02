"""Query-string and form body encoding for the request helpers."""

from __future__ import annotations

import os
from contextlib import ExitStack, closing, contextmanager
from typing import IO, Iterator, Mapping
from urllib.parse import urlencode

from .exceptions import FileAccessError, StreamIOError

# parameter keys carrying this prefix name a local file to upload
FILE_MARKER = "@"

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
FILE_CONTENT_TYPE = "application/octet-stream"


def encode_params(params: Mapping[str, str]) -> str:
    """URL-encode ``params`` sorted by key."""
    return urlencode(sorted((str(k), str(v)) for k, v in params.items()))


def add_params(url: str, params: Mapping[str, str] | None) -> str:
    """Append ``params`` to the query string of ``url``, keeping any fragment last."""
    if not params:
        return url
    url, hash_mark, fragment = url.partition("#")
    if "?" not in url:
        url += "?"
    if not url.endswith(("?", "&")):
        url += "&"
    return url + encode_params(params) + hash_mark + fragment


def has_file_params(params: Mapping[str, str] | None) -> bool:
    return any(key.startswith(FILE_MARKER) for key in params or {})


class UploadFile:
    """Binary file handed to httpx as a multipart part.

    httpx streams the part straight from the file while sending; read failures
    surface as ``StreamIOError``.
    """

    def __init__(self, source: IO[bytes], path: str, field: str) -> None:
        self._source = source
        self.path = path
        self.field = field

    @property
    def name(self) -> str:
        return self.path

    def fileno(self) -> int:
        return self._source.fileno()

    def tell(self) -> int:
        return self._source.tell()

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        return self._source.seek(offset, whence)

    def read(self, size: int = -1) -> bytes:
        try:
            return self._source.read(size)
        except OSError as exc:
            raise StreamIOError(f"failed to read {self.path!r} into field {self.field!r}", cause=exc) from exc

    def close(self) -> None:
        self._source.close()


MultipartFields = list[tuple[str, tuple]]


@contextmanager
def open_multipart(params: Mapping[str, str]) -> Iterator[MultipartFields]:
    """Open the files named by ``params`` and yield httpx ``files=`` entries.

    Keys starting with ``FILE_MARKER`` become file parts named after the key
    without the marker, read from the path in the value; other keys become
    plain form fields. Order is preserved. Files are closed on exit.
    """
    with ExitStack() as stack:
        fields: MultipartFields = []
        for key, value in params.items():
            if not key.startswith(FILE_MARKER):
                fields.append((str(key), (None, str(value))))
                continue
            name = key[len(FILE_MARKER) :]
            try:
                source = open(value, "rb")
            except OSError as exc:
                raise FileAccessError(f"cannot open {value!r} for field {name!r}", cause=exc) from exc
            upload = stack.enter_context(closing(UploadFile(source, value, name)))
            fields.append((name, (os.path.basename(value), upload, FILE_CONTENT_TYPE)))
        yield fields
