"""Tests for argument parsing and CLI exit codes."""

import pytest

from wardscan import cli
from wardscan.directory import ChainDirectory
from wardscan.harvest import HarvestInterrupted, RunCancelled


@pytest.fixture
def clean_env(monkeypatch, temp_dir):
    for name in ("ETH_RPC_URL", "ETHERSCAN_API_KEY", "WARDSCAN_BATCH_SIZE", "WARDSCAN_MAX_RETRIES"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(temp_dir)
    return temp_dir


def test_default_mode_without_contracts_is_full():
    args = cli.parse_args([])
    assert args.mode == "full"
    assert args.level == 0
    assert args.cached == []


def test_default_mode_with_contracts_is_authorities():
    args = cli.parse_args(["MCD_VAT", "-l", "2", "-c", "chainlog", "logs"])
    assert args.mode == "authorities"
    assert args.contracts == ["MCD_VAT"]
    assert args.level == 2
    assert args.cached == ["chainlog", "logs"]


def test_permissions_without_contract_rejected():
    with pytest.raises(SystemExit):
        cli.parse_args(["-m", "permissions"])


def test_unknown_cache_choice_rejected():
    with pytest.raises(SystemExit):
        cli.parse_args(["-c", "everything"])


def test_negative_level_rejected():
    with pytest.raises(SystemExit):
        cli.parse_args(["-l", "-1"])


def test_missing_endpoint_exits_with_configuration_error(clean_env, capsys):
    assert cli.main(["-m", "full"]) == 2
    assert "ETH_RPC_URL" in capsys.readouterr().err


def test_invalid_batch_size_exits_with_configuration_error(clean_env, monkeypatch, capsys):
    monkeypatch.setenv("ETH_RPC_URL", "http://localhost:8545")
    monkeypatch.setenv("WARDSCAN_BATCH_SIZE", "lots")
    assert cli.main(["-m", "full"]) == 2
    assert "WARDSCAN_BATCH_SIZE" in capsys.readouterr().err


@pytest.fixture
def offline_run(clean_env, monkeypatch, restore_signals):
    monkeypatch.setenv("ETH_RPC_URL", "http://localhost:8545")
    monkeypatch.setattr(cli, "load_directory", lambda *args, **kwargs: ChainDirectory({}))


@pytest.mark.parametrize("error", [RunCancelled("run cancelled during profiling"), HarvestInterrupted(42)])
def test_cancelled_run_exits_130(offline_run, monkeypatch, error):
    def cancelled(*args, **kwargs):
        raise error

    monkeypatch.setattr(cli, "run_mode", cancelled)
    assert cli.main(["-m", "full"]) == 130


def test_forced_abort_exits_130(offline_run, monkeypatch):
    def aborted(*args, **kwargs):
        raise KeyboardInterrupt

    monkeypatch.setattr(cli, "run_mode", aborted)
    assert cli.main(["-m", "full"]) == 130
