"""Command-line front end for ad-hoc requests."""

from __future__ import annotations

import argparse
import sys
from typing import Any, Sequence

import httpx

from curlish.client import HttpClient
from curlish.exceptions import CurlishError
from curlish.options import options_from_names


def _coerce_value(raw: str) -> Any:
    lowered = raw.lower()
    if lowered in {"true", "yes", "on"}:
        return True
    if lowered in {"false", "no", "off"}:
        return False
    try:
        return int(raw)
    except ValueError:
        return raw


def _split_pairs(pairs: Sequence[str], separator: str, flag: str) -> dict[str, str]:
    parsed: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition(separator)
        if not sep or not key.strip():
            raise ValueError(f"{flag} expects KEY{separator}VALUE, got {pair!r}")
        parsed[key.strip()] = value.strip() if separator == ":" else value
    return parsed


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="curlish")
    parser.add_argument("method", type=str.upper, choices=["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"])
    parser.add_argument("url")
    parser.add_argument("-H", "--header", action="append", default=[], help="header as 'Name: value'")
    parser.add_argument(
        "-d",
        "--data",
        action="append",
        default=[],
        help="parameter as key=value; a key starting with @ uploads the file at value",
    )
    parser.add_argument(
        "-o",
        "--option",
        action="append",
        default=[],
        help="client option as name=value, e.g. timeout=5 or followlocation=false",
    )
    parser.add_argument("-i", "--include", action="store_true", help="print the status line and headers")
    return parser


def _main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    try:
        headers = _split_pairs(args.header, ":", "--header")
        params = _split_pairs(args.data, "=", "--data")
        raw_options = _split_pairs(args.option, "=", "--option")
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return 2

    options = options_from_names({name: _coerce_value(value) for name, value in raw_options.items()})
    try:
        with HttpClient(options, headers=headers) as client:
            if args.method == "GET":
                response = client.get(args.url, params)
            elif args.method == "POST":
                response = client.post(args.url, params)
            else:
                response = client.do(args.method, args.url)
    except (CurlishError, httpx.HTTPError) as exc:
        print(f"{type(exc).__name__}: {exc}", file=sys.stderr)
        return 2

    if args.include:
        print(f"{response.http_version} {response.status_code} {response.reason_phrase}")
        for key, value in response.headers.items():
            print(f"{key}: {value}")
        print()
    print(response.text)
    return 0 if response.status_code < 400 else 1


def main() -> None:
    raise SystemExit(_main())
