from __future__ import annotations

import pytest

from cine_cast import cli
from cine_cast.version import APP_VERSION


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "CINECAST_RELAY_URL",
        "CINECAST_ICE_SERVERS",
        "CINECAST_CONNECT_TIMEOUT",
        "CINECAST_RECEIVE_AUDIO",
        "CINECAST_CAMERA",
        "CINECAST_FPS",
    ):
        monkeypatch.delenv(name, raising=False)


def test_parser_defaults() -> None:
    args = cli.build_parser().parse_args(["join", "--name", "lobby"])

    assert args.action == "join"
    assert args.name == "lobby"
    assert args.source == "camera"
    assert args.file is None
    assert args.no_audio is False


def test_parser_rejects_unknown_action() -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.build_parser().parse_args(["publish", "--name", "x"])

    assert excinfo.value.code == 2


def test_version_flag(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--version"])

    assert excinfo.value.code == 0
    assert APP_VERSION in capsys.readouterr().out


def test_blank_stream_name_exits_with_usage_error(capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = cli.main(["join", "--name", "   "])

    assert exit_code == 2
    captured = capsys.readouterr()
    assert "Please enter a stream name." in captured.err
    assert "Please enter a stream name." in captured.out


def test_file_broadcast_requires_a_file() -> None:
    assert cli.main(["broadcast", "--name", "studio", "--source", "file"]) == 2


def test_invalid_relay_url_is_rejected() -> None:
    assert cli.main(["join", "--name", "lobby", "--url", "http://relay.example.org"]) == 2


def test_invalid_environment_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CINECAST_RECEIVE_AUDIO", "sometimes")

    assert cli.main(["join", "--name", "lobby"]) == 2


def test_unreachable_relay_exits_with_failure(capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = cli.main(["join", "--name", "lobby", "--url", "ws://127.0.0.1:9/ws"])

    assert exit_code == 1
    assert "relay" in capsys.readouterr().err
