from __future__ import annotations

import json

import httpx
import pytest

import fluentrest.cli as cli
from fluentrest import RestBuilder


def _use_transport(monkeypatch, handler) -> None:
    monkeypatch.setattr(cli, "build", lambda: RestBuilder().transport(httpx.MockTransport(handler)))


def test_cli_prints_status_and_body(monkeypatch, capsys) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, text='{"id":1}')

    _use_transport(monkeypatch, handler)

    code = cli._main(
        ["get", "https://api.example.com", "-c", "users", "-c", "1", "-p", "expand=true", "-H", "X-Trace: abc"]
    )

    assert code == 0
    output = capsys.readouterr().out
    assert "200 OK" in output
    assert '{"id":1}' in output
    assert str(seen[0].url) == "https://api.example.com/users/1?expand=true"
    assert seen[0].headers["X-Trace"] == "abc"


def test_cli_posts_json_payload(monkeypatch, capsys) -> None:
    bodies: list[object] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(201, text="")

    _use_transport(monkeypatch, handler)

    assert cli._main(["POST", "https://api.example.com", "-d", '{"name": "ada"}']) == 0
    assert bodies == [{"name": "ada"}]
    assert "201 Created" in capsys.readouterr().out


def test_cli_returns_one_for_error_status(monkeypatch, capsys) -> None:
    _use_transport(monkeypatch, lambda request: httpx.Response(500, text="boom"))

    assert cli._main(["get", "https://api.example.com"]) == 1
    assert "500 Internal Server Error" in capsys.readouterr().out


def test_cli_rejects_unsupported_method(capsys) -> None:
    assert cli._main(["fetch", "https://api.example.com"]) == 2
    assert "Unsupported method" in capsys.readouterr().err


@pytest.mark.parametrize(
    "argv",
    [
        ["get", "not-a-url"],
        ["post", "https://api.example.com", "-d", "{broken"],
    ],
)
def test_cli_rejects_invalid_input(monkeypatch, capsys, argv: list[str]) -> None:
    _use_transport(monkeypatch, lambda request: httpx.Response(200))

    assert cli._main(argv) == 2
    assert "Invalid request" in capsys.readouterr().err


def test_cli_reports_transport_failure(monkeypatch, capsys) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    _use_transport(monkeypatch, handler)

    assert cli._main(["get", "https://api.example.com"]) == 2
    assert "Request failed" in capsys.readouterr().err
