"""
Tests for the command-line entry point.
"""

import json

import pytest

from conftest import TOPIC, requires_git

from gitbroker.cli import main, parse_args


class TestParseArgs:
    """Test argument parsing."""

    def test_produce(self):
        args = parse_args(["--topic", TOPIC, "produce", "--event", "PING", "--body", "{}"])

        assert args.command == "produce"
        assert args.event == "PING"
        assert args.body == "{}"

    def test_consume(self):
        args = parse_args(["consume", "--polls", "3", "--ack"])

        assert args.command == "consume"
        assert args.polls == 3
        assert args.ack

    def test_command_required(self):
        with pytest.raises(SystemExit):
            parse_args([])

    def test_missing_remote(self, monkeypatch):
        monkeypatch.delenv("GITBROKER_REMOTE", raising=False)

        with pytest.raises(SystemExit):
            main(["--topic", TOPIC, "--node", "PING-NODE", "produce", "--event", "PING"])


@requires_git
class TestMain:
    """Test running commands against a local bare repository."""

    def test_produce_then_consume(self, bare_remote, tmp_path, monkeypatch, capsys):
        monkeypatch.setenv("GITBROKER_WORK_DIR", str(tmp_path / "work"))
        common = ["--remote", bare_remote, "--topic", TOPIC, "--log-level", "ERROR"]

        assert main([*common, "--node", "PING-NODE", "produce", "--event", "PING", "--body", "hello"]) == 0
        published = capsys.readouterr().out.strip().splitlines()[-1]
        assert published.endswith("_PING-NODE_PING.json")

        assert main([*common, "--node", "PONG-NODE", "consume", "--interval", "0"]) == 0
        lines = [json.loads(line) for line in capsys.readouterr().out.splitlines() if line.startswith("{")]
        delivered = [line for line in lines if line.get("body") == "hello"]

        assert len(delivered) == 1
        assert delivered[0]["node"] == "PING-NODE"
        assert delivered[0]["event"] == "PING"
