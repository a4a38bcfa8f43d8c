"""Tests for configuration loading."""

from pathlib import Path

from jot.config import DEFAULT_CONFIG, load_config


def test_defaults(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    cfg = load_config()
    assert cfg["classification"]["similarity_threshold"] == 0.7
    assert cfg["classification"]["merge_threshold"] == 0.85
    assert cfg["batch"]["batch_size"] == 30
    assert "claude_api_key" not in cfg
    assert Path(cfg["chroma_path"]).is_absolute()


def test_file_overrides_are_merged(tmp_path, monkeypatch):
    monkeypatch.delenv("DASHSCOPE_API_KEY", raising=False)
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "storage_backend: memory\n"
        "classification:\n"
        "  max_cluster_size: 10\n"
        "notes_path: ~/notes.json\n"
    )
    cfg = load_config(config_file)

    assert cfg["storage_backend"] == "memory"
    assert cfg["classification"]["max_cluster_size"] == 10
    assert cfg["classification"]["min_split_size"] == 4
    assert not cfg["notes_path"].startswith("~")
    assert DEFAULT_CONFIG["classification"]["max_cluster_size"] == 50


def test_env_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
    monkeypatch.setenv("DASHSCOPE_API_KEY", "ds-test")
    config_file = tmp_path / "config.yaml"
    config_file.write_text("{}\n")

    cfg = load_config(config_file)

    assert cfg["claude_api_key"] == "sk-test"
    assert cfg["dashscope"]["api_key"] == "ds-test"
    assert "api_key" not in DEFAULT_CONFIG["dashscope"]
