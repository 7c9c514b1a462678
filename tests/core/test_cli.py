from __future__ import annotations

import io
import json

import pytest
import requests

from voiceflow import cli, config_paths
from voiceflow.downloader import FamilyDownloader
from voiceflow.host import HostCapabilities
from voiceflow.orchestrator import ProgressEvent, Stage

pytestmark = pytest.mark.core_headless


@pytest.fixture
def run(catalog, models_root, fake_http):
    def _run(*flags, host=HostCapabilities(8, False)):
        args = cli.parse_cli_args(["voiceflow-setup", "--models-dir", str(models_root), *flags])
        downloader = FamilyDownloader(models_root, session_factory=fake_http.session_factory, chunk_size=16)
        return cli.run_setup(args, catalog=catalog, host=host, downloader=downloader)

    return _run


def test_parse_cli_args_defaults_and_unknown_flags():
    args = cli.parse_cli_args(["voiceflow-setup", "--profile", "quality", "--psn_0_12345"])
    assert args.profile == "quality"
    assert args.auto is False
    assert args.yes is False
    assert args.stt is None and args.llm is None


def test_profile_and_auto_are_mutually_exclusive():
    with pytest.raises(SystemExit):
        cli.parse_cli_args(["voiceflow-setup", "--profile", "quality", "--auto"])


def test_profile_setup_writes_settings(run, capsys):
    assert run("--profile", "lightweight") == cli.EXIT_OK

    out = capsys.readouterr().out
    assert "Restart VoiceFlow" in out
    saved = json.loads(config_paths.get_config_file_path().read_text(encoding="utf-8"))
    assert saved["stt_engine"] == "moonshine"
    assert saved["stt_model"] == "test"
    assert saved["llm_model"] == "tiny-llm"
    assert saved["setup_complete"] is True

    assert run("--profile", "lightweight") == cli.EXIT_OK
    assert "already active" in capsys.readouterr().out


def test_status_reports_active_models(run, capsys):
    assert run("--status") == cli.EXIT_OK
    assert "No models have been activated yet." in capsys.readouterr().out

    run("--stt", "ms-test", "--llm", "tiny-llm")
    capsys.readouterr()
    assert run("--status") == cli.EXIT_OK
    out = capsys.readouterr().out
    assert "moonshine (test)" in out
    assert "tiny-llm" in out


def test_list_shows_local_status(run, catalog, models_root, install, capsys):
    install(catalog.llm_asset("tiny-llm"), models_root)

    assert run("--list") == cli.EXIT_OK

    lines = capsys.readouterr().out.splitlines()
    assert any(line.strip().startswith("tiny-llm") and "[installed]" in line for line in lines)
    assert any(line.strip().startswith("ms-test") and "[missing]" in line for line in lines)
    assert any(line.strip().startswith("lightweight") for line in lines)


def test_missing_selection_is_a_usage_error(run, fake_http):
    assert run() == cli.EXIT_USAGE
    assert run("--stt", "ms-test") == cli.EXIT_USAGE
    assert run("--profile", "ultra") == cli.EXIT_USAGE
    assert fake_http.calls == []


def test_download_failure_exit_code(run, fake_http, capsys):
    fake_http.failures["a.onnx"] = requests.ConnectionError("offline")

    assert run("--profile", "lightweight") == cli.EXIT_FAILED
    out = capsys.readouterr().out
    assert "offline" in out
    assert "retry" in out


def test_missing_runtime_prompt(run, monkeypatch, fake_http):
    monkeypatch.setattr("builtins.input", lambda prompt="": "n")
    assert run("--profile", "recommended") == cli.EXIT_DECLINED
    assert fake_http.calls == []

    assert run("--profile", "recommended", "--yes") == cli.EXIT_OK
    assert fake_http.calls


def test_auto_picks_profile_from_memory(run, capsys):
    assert run("--auto", host=HostCapabilities(24, True)) == cli.EXIT_OK
    assert "Selected profile 'quality'" in capsys.readouterr().out


def test_main_lists_default_catalog(capsys):
    assert cli.main(["voiceflow-setup", "--list"]) == cli.EXIT_OK
    out = capsys.readouterr().out
    assert "qwen3-1.7b" in out
    assert "moonshine-tiny" in out


def test_console_reporter_shows_speed_and_eta():
    stream = io.StringIO()
    reporter = cli._ConsoleReporter(stream)

    reporter(ProgressEvent(Stage.DOWNLOADING_LLM, 0.0, asset_id="qwen3-4b"))
    reporter(ProgressEvent(Stage.DOWNLOADING_LLM, 0.5, asset_id="qwen3-4b", speed_bps=2048.0, eta_s=125))
    reporter(ProgressEvent(Stage.DOWNLOADING_STT, 0.25, asset_id="moonshine-tiny", speed_bps=1024.0))

    out = stream.getvalue()
    assert " 50%  2.0 KB/s  ETA 2m05s" in out
    assert " 25%  1.0 KB/s" in out
    assert out.count("ETA") == 1
