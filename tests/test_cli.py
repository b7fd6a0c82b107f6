from __future__ import annotations

import json
from pathlib import Path

import pytest

import playground_sandbox.cli as cli
from playground_sandbox.browsers import BrowserPool


def _result_line(out: str) -> dict:
    lines = [line for line in out.splitlines() if line.startswith(cli.RESULT_PREFIX)]
    assert len(lines) == 1
    return json.loads(lines[0][len(cli.RESULT_PREFIX) :])


@pytest.fixture
def fake_pool(monkeypatch: pytest.MonkeyPatch, tmp_path: Path, playwright_manager):
    monkeypatch.setenv("PLAYGROUND_PUBLIC_DIR", str(tmp_path / "public"))
    monkeypatch.setenv("PLAYGROUND_WORKSPACE_DIR", str(tmp_path / "workspace"))

    def from_settings(settings):
        return BrowserPool(settings.engines, playwright_factory=playwright_manager)

    monkeypatch.setattr(cli.BrowserPool, "from_settings", staticmethod(from_settings))


@pytest.mark.asyncio
async def test_cli_prints_result_json(fake_pool, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    snippet = tmp_path / "snippet.py"
    snippet.write_text("page = await browser.new_page()\nawait page.screenshot(path='cli.png')\nprint('ok')\n")

    rc = await cli._amain(["--snippet-file", str(snippet), "--engine", "firefox"])

    assert rc == 0
    payload = _result_line(capsys.readouterr().out)
    assert payload["logs"] == [{"mode": "log", "args": ["ok"]}]
    assert [f["filename"] for f in payload["files"]] == ["cli.png"]
    assert (tmp_path / payload["files"][0]["publicURL"]).is_file()


@pytest.mark.asyncio
async def test_cli_reports_errors(fake_pool, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    snippet = tmp_path / "snippet.py"
    snippet.write_text("import os\n")

    rc = await cli._amain(["--snippet-file", str(snippet)])

    assert rc == 2
    assert _result_line(capsys.readouterr().out)["error"]["code"] == "invalid_input"
