"""Command line front end for one-off requests."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Sequence

from fluentrest.builder import RestBuilder, build
from fluentrest.exceptions import FluentRestValidationError


HTTP_METHODS = {"get", "post", "put", "patch", "delete", "head", "options"}


def _split_pair(raw: str, separator: str) -> tuple[str, str]:
    key, found, value = raw.partition(separator)
    if not found or not key:
        raise argparse.ArgumentTypeError(f"expected KEY{separator}VALUE, got {raw!r}")
    return key.strip(), value.strip()


def _param(raw: str) -> tuple[str, str]:
    return _split_pair(raw, "=")


def _header(raw: str) -> tuple[str, str]:
    return _split_pair(raw, ":")


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fluentrest", description="Send a single HTTP request.")
    parser.add_argument("method", help="HTTP method, e.g. GET or POST")
    parser.add_argument("url", help="endpoint, e.g. https://api.example.com")
    parser.add_argument("-c", "--command", action="append", default=[], help="path segment (repeatable)")
    parser.add_argument("-p", "--param", action="append", default=[], type=_param, help="query KEY=VALUE")
    parser.add_argument("-H", "--header", action="append", default=[], type=_header, help="header KEY:VALUE")
    parser.add_argument("-d", "--data", help="JSON payload to send")
    parser.add_argument("--xml", action="store_true", help="send and receive XML")
    parser.add_argument("--timeout", type=float, help="timeout in seconds")
    parser.add_argument("--gzip", action="store_true", help="accept gzip-compressed responses")
    parser.add_argument("-v", "--verbose", action="store_true", help="log request details to stderr")
    return parser


def _configure(args: argparse.Namespace) -> RestBuilder:
    builder = build().url(args.url)
    for segment in args.command:
        builder = builder.command(segment)
    if args.param:
        builder = builder.parameters(args.param)
    if args.header:
        headers = list(args.header)

        def apply(target) -> None:
            for key, value in headers:
                target[key] = value

        builder = builder.header(apply)
    if args.data is not None:
        builder = builder.payload(json.loads(args.data))
    if args.xml:
        builder = builder.xml()
    if args.timeout is not None:
        builder = builder.timeout(args.timeout)
    if args.gzip:
        builder = builder.enable_gzip_compression()
    return builder


def _main(argv: Sequence[str] | None = None) -> int:
    args = _parser().parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, stream=sys.stderr)

    if args.method.lower() not in HTTP_METHODS:
        print(f"Unsupported method: {args.method}", file=sys.stderr)
        return 2
    try:
        builder = _configure(args)
    except (FluentRestValidationError, json.JSONDecodeError) as exc:
        print(f"Invalid request: {exc}", file=sys.stderr)
        return 2

    result = builder.send(args.method)
    if result.exception is not None:
        print(f"Request failed: {result.exception}", file=sys.stderr)
        return 2

    print(f"{result.status_code} {result.reason_phrase}")
    if result.string_content:
        print(result.string_content)
    return 0 if result.is_success else 1


def main() -> None:
    raise SystemExit(_main())
