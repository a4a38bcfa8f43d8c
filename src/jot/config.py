"""Configuration management for jot."""

import os
from pathlib import Path
from typing import Any

import yaml


DEFAULT_CONFIG = {
    "data_path": "~/.jot/data",
    "notes_path": "~/.jot/notes.json",
    "chroma_path": "~/.jot/chroma",
    "storage_backend": "chromadb",
    "embedding_provider": "sentence_transformers",
    "embedding_model": "intfloat/e5-large-v2",
    "claude_model": "claude-sonnet-4-20250514",
    "classification": {
        "similarity_threshold": 0.7,
        "merge_threshold": 0.85,
        "max_cluster_size": 50,
        "min_split_size": 4,
        "task_delay": 0.1,
        "keep_completed_tasks": 100,
    },
    "embedding": {
        "timeout": 30,
        "batch_timeout": 60,
        "batch_size": 20,
        "max_text_length": 2048,
        "fallback_delay": 0.05,
        "batch_delay": 0.2,
    },
    "dashscope": {
        "base_url": "https://dashscope.aliyuncs.com/api/v1/services/embeddings/text-embedding/text-embedding",
        "model": "text-embedding-v3",
    },
    "batch": {
        "batch_size": 30,
        "max_retries": 3,
        "retry_delay": 2.0,
        "preview_length": 100,
        "min_topic_size": 2,
        "catch_all_tag": "Other",
        "max_tokens": 2000,
        "temperature": 0.3,
    },
}

PATH_KEYS = ("data_path", "notes_path", "chroma_path")


def _find_config_file() -> Path | None:
    """Look for config.yaml in standard locations."""
    candidates = [
        Path.cwd() / "config" / "config.yaml",
        Path.cwd() / "config.yaml",
        Path.home() / ".jot" / "config.yaml",
    ]
    for p in candidates:
        if p.exists():
            return p
    return None


def load_config(config_path: str | Path | None = None) -> dict[str, Any]:
    """Load configuration, merging defaults with file and env vars."""
    cfg = _copy(DEFAULT_CONFIG)

    path = Path(config_path) if config_path else _find_config_file()
    if path and path.exists():
        with open(path) as f:
            file_cfg = yaml.safe_load(f) or {}
        _deep_merge(cfg, file_cfg)

    # Env overrides
    if api_key := os.environ.get("ANTHROPIC_API_KEY"):
        cfg["claude_api_key"] = api_key
    if api_key := os.environ.get("DASHSCOPE_API_KEY"):
        cfg["dashscope"]["api_key"] = api_key

    # Expand paths
    for key in PATH_KEYS:
        cfg[key] = str(Path(cfg[key]).expanduser().resolve())

    return cfg


def _copy(cfg: dict) -> dict:
    """Copy nested sections so merging never mutates DEFAULT_CONFIG."""
    return {k: _copy(v) if isinstance(v, dict) else v for k, v in cfg.items()}


def _deep_merge(base: dict, override: dict) -> None:
    """Merge override into base in-place."""
    for k, v in override.items():
        if k in base and isinstance(base[k], dict) and isinstance(v, dict):
            _deep_merge(base[k], v)
        else:
            base[k] = v
