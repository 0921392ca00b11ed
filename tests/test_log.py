"""Tests for log.py — timestamped output + GA formatting."""

import re

import pytest

from release_tags import log


@pytest.fixture(autouse=True)
def _stdout(monkeypatch):
    monkeypatch.delenv("GITHUB_ACTIONS", raising=False)
    log.use_stderr(False)
    yield
    log.use_stderr(False)


def test_info(capsys):
    log.info("test message")
    out = capsys.readouterr().out
    assert re.match(r"\[\d{2}:\d{2}:\d{2}\] test message\n", out)


def test_header(capsys):
    log.header("deploy production")
    out = capsys.readouterr().out
    assert "── deploy production " in out
    assert "─" in out


def test_footer(capsys):
    log.footer("complete")
    out = capsys.readouterr().out
    assert "── complete " in out


def test_step(capsys):
    log.step("reading tags...")
    out = capsys.readouterr().out
    assert "  reading tags..." in out


def test_success(capsys):
    log.success("created v1.0.0")
    out = capsys.readouterr().out
    assert "✓ created v1.0.0" in out


def test_failure(capsys):
    log.failure("production: no version tag")
    out = capsys.readouterr().out
    assert "✗ production: no version tag" in out


def test_warn(capsys):
    log.warn("retrying")
    out = capsys.readouterr().out
    assert "! retrying" in out
    assert "::warning::" not in out


def test_debug_silent_by_default(capsys, monkeypatch):
    monkeypatch.delenv("RELEASE_TAGS_DEBUG", raising=False)
    log.debug("hidden")
    assert capsys.readouterr().out == ""


def test_debug_enabled(capsys, monkeypatch):
    monkeypatch.setenv("RELEASE_TAGS_DEBUG", "1")
    log.debug("shown")
    assert "· shown" in capsys.readouterr().out


def test_github_actions_header(capsys, monkeypatch):
    monkeypatch.setenv("GITHUB_ACTIONS", "true")
    log.header("deploy")
    out = capsys.readouterr().out
    assert "::group::deploy" in out


def test_github_actions_footer(capsys, monkeypatch):
    monkeypatch.setenv("GITHUB_ACTIONS", "true")
    log.footer("done")
    out = capsys.readouterr().out
    assert "::endgroup::" in out


def test_github_actions_failure(capsys, monkeypatch):
    monkeypatch.setenv("GITHUB_ACTIONS", "true")
    log.failure("deploy failed")
    out = capsys.readouterr().out
    assert "::error::deploy failed" in out


def test_github_actions_warn(capsys, monkeypatch):
    monkeypatch.setenv("GITHUB_ACTIONS", "true")
    log.warn("conflict")
    out = capsys.readouterr().out
    assert "::warning::conflict" in out


def test_error(capsys):
    log.error("something broke")
    err = capsys.readouterr().err
    assert "ERROR: something broke" in err


def test_use_stderr(capsys):
    log.use_stderr(True)
    log.info("progress")
    captured = capsys.readouterr()
    assert captured.out == ""
    assert "progress" in captured.err


def test_output_noop_without_github_output(monkeypatch):
    monkeypatch.delenv("GITHUB_OUTPUT", raising=False)
    log.output("tag_name", "production")  # Should not raise


def test_output_appends(tmp_path, monkeypatch):
    path = tmp_path / "out"
    monkeypatch.setenv("GITHUB_OUTPUT", str(path))
    log.output("tag_name", "api/production")
    log.output("changed", True)
    log.output("previous_commit", None)
    assert path.read_text() == "tag_name=api/production\nchanged=true\nprevious_commit=\n"
