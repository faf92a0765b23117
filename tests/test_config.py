import pytest

from raffle_watcher.config import MOONBAGS_STAKE_EVENT, load_config


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml")


def test_partial_file_uses_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv("BLOCKBERRY_API_KEY", raising=False)
    path = tmp_path / "config.yaml"
    path.write_text(
        "watcher:\n"
        "  poll_interval_s: 5\n"
        "classifier:\n"
        "  exchange_packages: ['0xdex']\n"
        "database:\n"
        "  path: /tmp/x.db\n"
    )

    config = load_config(path)

    assert config.watcher.poll_interval_s == 5
    assert config.watcher.failure_threshold == 3
    assert config.classifier.exchange_packages == ["0xdex"]
    assert config.classifier.function_keywords == ["swap", "trade", "exchange"]
    assert config.staking.stake_event_type == MOONBAGS_STAKE_EVENT
    assert config.database.path == "/tmp/x.db"
    assert config.indexer.api_key == ""


def test_api_key_falls_back_to_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("BLOCKBERRY_API_KEY", "from-env")
    path = tmp_path / "config.yaml"
    path.write_text("indexer:\n  page_limit: 50\n")

    assert load_config(path).indexer.api_key == "from-env"


def test_file_api_key_wins(tmp_path, monkeypatch):
    monkeypatch.setenv("BLOCKBERRY_API_KEY", "from-env")
    path = tmp_path / "config.yaml"
    path.write_text("indexer:\n  api_key: from-file\n")

    assert load_config(path).indexer.api_key == "from-file"


def test_unknown_keys_are_rejected(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("worker:\n  threads: 4\n")

    with pytest.raises(TypeError):
        load_config(path)
