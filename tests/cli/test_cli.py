import io
import json

import pytest

from apps.cli import main as cli_main
from apps.cli.client import HttpError, _error_detail, _join_url
from apps.cli.main import ContextFileError, build_parser, load_context
from apps.cli.output import format_table


class FakeClient:
    def __init__(self, *, fail: bool = False):
        self.fail = fail
        self.calls = []

    def answer(self, query, context, *, generation=None):
        self.calls.append((query, context, generation))
        if self.fail:
            raise HttpError("HTTP error", status_code=502)
        return {"answer": "Paris", "finish_reason": "stop"}

    def health(self):
        return {"status": "ok", "model": "phi-2", "loaded": False}

    def list_models(self):
        return [
            {"id": "phi-2", "repo_id": "cognitivecomputations/dolphin-2_6-phi-2", "active": True},
            {"id": "mixtral-8x7b", "repo_id": "cognitivecomputations/dolphin-2.6-mixtral-8x7b", "active": False},
        ]


def test_parser_global_url_and_ask_options():
    parser = build_parser()
    args = parser.parse_args(
        ["--url", "http://example.invalid:8000", "ask", "why?", "--snippet", "a", "--snippet", "b", "--seed", "3"]
    )
    assert args.url == "http://example.invalid:8000"
    assert args.command == "ask"
    assert args.question == "why?"
    assert args.snippet == ["a", "b"]
    assert args.seed == 3


def test_load_context_from_file_then_inline(tmp_path):
    path = tmp_path / "ctx.json"
    path.write_text(json.dumps([{"content": "saved note", "metadata": {"id": 9}}]), encoding="utf-8")

    items = load_context(str(path), ["inline text"])

    assert items == [
        {"content": "saved note", "metadata": {"id": 9}},
        {"content": "inline text", "metadata": {"source": "inline", "index": 0}},
    ]


def test_load_context_from_stdin():
    stdin = io.StringIO('[{"content": "from stdin"}]')
    assert load_context("-", [], stdin=stdin) == [{"content": "from stdin", "metadata": None}]


@pytest.mark.parametrize("raw", ["not json", '{"content": "x"}', '[{"content": 1}]'])
def test_load_context_rejects_bad_input(tmp_path, raw):
    path = tmp_path / "ctx.json"
    path.write_text(raw, encoding="utf-8")
    with pytest.raises(ContextFileError):
        load_context(str(path), [])


def test_load_context_missing_file(tmp_path):
    with pytest.raises(ContextFileError):
        load_context(str(tmp_path / "missing.json"), [])


def test_ask_sends_overrides_and_prints_answer(capsys):
    client = FakeClient()
    args = build_parser().parse_args(["ask", "capital?", "--snippet", "Paris", "--temperature", "0", "--max-new-tokens", "5"])

    assert cli_main.cmd_ask(client, args) == 0

    query, context, generation = client.calls[0]
    assert query == "capital?"
    assert context == [{"content": "Paris", "metadata": {"source": "inline", "index": 0}}]
    assert generation == {"temperature": None, "max_new_tokens": 5}
    assert capsys.readouterr().out.strip() == "Paris"


def test_ask_without_overrides_sends_none():
    client = FakeClient()
    args = build_parser().parse_args(["ask", "capital?"])
    cli_main.cmd_ask(client, args)
    assert client.calls[0] == ("capital?", [], None)


def test_models_table(capsys):
    args = build_parser().parse_args(["models"])
    assert cli_main.cmd_models(FakeClient(), args) == 0

    lines = capsys.readouterr().out.splitlines()
    assert lines[0].split() == ["MODEL", "REPO", "ACTIVE"]
    assert lines[2].split() == ["phi-2", "cognitivecomputations/dolphin-2_6-phi-2", "*"]
    assert lines[3].split() == ["mixtral-8x7b", "cognitivecomputations/dolphin-2.6-mixtral-8x7b"]


def test_health_human_output(capsys):
    args = build_parser().parse_args(["health"])
    assert cli_main.cmd_health(FakeClient(), args) == 0
    assert capsys.readouterr().out.strip() == "ok: model=phi-2 (not loaded)"


def test_main_without_command_returns_2(capsys):
    assert cli_main.main([]) == 2
    assert "usage" in capsys.readouterr().out


def test_main_reports_http_errors(monkeypatch, capsys):
    monkeypatch.setattr(cli_main, "TeraClient", lambda base_url: FakeClient(fail=True))

    assert cli_main.main(["ask", "q", "--snippet", "s"]) == 1
    assert "status=502" in capsys.readouterr().err


def test_join_url_and_table_helpers():
    assert _join_url("http://host:1/", "/health") == "http://host:1/health"
    assert _join_url("http://host:1/api", "v1/answer") == "http://host:1/api/v1/answer"
    assert format_table(["A", "BB"], [["xyz", "1"]]) == "A    BB\n---  --\nxyz  1"


def test_error_detail_prefers_fastapi_detail():
    assert _error_detail(b'{"detail": "Server is busy"}') == "Server is busy"
    assert _error_detail(b"<html>bad gateway</html>") == "<html>bad gateway</html>"
    assert _error_detail(b"") is None
    assert str(HttpError("HTTP error", status_code=429, detail="Server is busy")) == (
        "HTTP error status=429 detail=Server is busy"
    )
