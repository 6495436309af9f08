import json

import pytest

from googlebot_verifier import cli
from googlebot_verifier.errors import RangeSourceError
from googlebot_verifier.snapshot import write_snapshot


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    monkeypatch.setattr(cli, "setup_logging", lambda config: None)


@pytest.fixture
def config_arg(tmp_path):
    return ["--config", str(tmp_path / "missing.json")]


@pytest.fixture
def snapshot_file(tmp_path):
    path = tmp_path / "googlebot_ranges.json"
    write_snapshot(str(path), ["66.249.64.0/27", "66.249.66.0/27"], ["2001:4860:4801:10::/64"], sources=["test"])
    return str(path)


class TestFetchRanges:
    def test_writes_snapshot(self, monkeypatch, tmp_path, config_arg, capsys):
        requested = {}

        def fake_fetch(urls, timeout):
            requested.update(urls=urls, timeout=timeout)
            return ["66.249.64.0/27"], ["2001:4860:4801:10::/64"], {"sources": urls, "creationTimes": {}}

        monkeypatch.setattr(cli, "fetch_prefixes", fake_fetch)
        output = tmp_path / "out" / "ranges.json"

        code = cli.main(config_arg + ["fetch-ranges", "-o", str(output), "--url", "https://ranges.example/g.json"])

        assert code == 0
        assert requested == {"urls": ["https://ranges.example/g.json"], "timeout": 0.5}
        payload = json.loads(output.read_text())
        assert payload["ipv4Prefixes"] == ["66.249.64.0/27"]
        assert payload["sources"] == ["https://ranges.example/g.json"]
        assert "1 IPv4 prefixes" in capsys.readouterr().out

    def test_fetch_failure_writes_nothing(self, monkeypatch, tmp_path, config_arg):
        def failing_fetch(urls, timeout):
            raise RangeSourceError("unreachable")

        monkeypatch.setattr(cli, "fetch_prefixes", failing_fetch)
        output = tmp_path / "ranges.json"

        assert cli.main(config_arg + ["fetch-ranges", "-o", str(output)]) == 1
        assert not output.exists()

    def test_empty_documents_write_nothing(self, monkeypatch, tmp_path, config_arg):
        monkeypatch.setattr(cli, "fetch_prefixes", lambda urls, timeout: ([], [], {"sources": urls}))
        output = tmp_path / "ranges.json"

        assert cli.main(config_arg + ["fetch-ranges", "-o", str(output)]) == 1
        assert not output.exists()


class TestCheckRange:
    def test_all_addresses_match(self, snapshot_file, config_arg, capsys):
        code = cli.main(config_arg + ["check-range", "66.249.66.1", "2001:4860:4801:10::1", "--snapshot", snapshot_file])

        out = capsys.readouterr().out
        assert code == 0
        assert "66.249.66.1: 66.249.66.0/27" in out
        assert "2001:4860:4801:10::1: 2001:4860:4801:10::/64" in out

    def test_miss_sets_exit_code(self, snapshot_file, config_arg, capsys):
        code = cli.main(config_arg + ["check-range", "66.249.66.1", "8.8.8.8", "--snapshot", snapshot_file])

        assert code == 1
        assert "8.8.8.8: no match" in capsys.readouterr().out

    def test_missing_snapshot(self, tmp_path, config_arg):
        assert cli.main(config_arg + ["check-range", "66.249.66.1", "--snapshot", str(tmp_path / "none.json")]) == 1


class TestVerify:
    def test_address_in_snapshot(self, snapshot_file, config_arg, capsys):
        code = cli.main(config_arg + ["verify", "66.249.64.10", "--snapshot", snapshot_file, "--no-dns"])

        assert code == 0
        assert "66.249.64.10: verified" in capsys.readouterr().out

    def test_address_outside_snapshot_without_dns(self, snapshot_file, config_arg, capsys):
        code = cli.main(config_arg + ["verify", "203.0.113.7", "--snapshot", snapshot_file, "--no-dns"])

        assert code == 1
        assert "203.0.113.7: not verified" in capsys.readouterr().out

    def test_non_crawler_user_agent(self, snapshot_file, config_arg):
        args = ["verify", "66.249.64.10", "--snapshot", snapshot_file, "--no-dns", "--user-agent", "curl/8.0"]
        assert cli.main(config_arg + args) == 1


def test_command_is_required(config_arg):
    with pytest.raises(SystemExit):
        cli.main(config_arg)
