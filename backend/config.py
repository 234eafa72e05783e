"""Global app configuration (model connection, summarisation, compaction)."""

import json
from pathlib import Path
from typing import Any

from world_tavern.llm import EchoLLM, HttpLLM, LLM

_CONFIG_DEFAULTS: dict[str, Any] = {
    "llm_connection": {
        "provider_url": "",
        "api_key": "",
        "provider_format": "openai",
        "model": "",
    },
    "summary_model": "",
    "default_max_context": 8192,
    "compaction_threshold": 0.8,
    "keep_recent_messages": 10,
}

_SCALAR_KEYS = ("summary_model", "default_max_context", "compaction_threshold", "keep_recent_messages")


def _config_path(data_dir: Path) -> Path:
    return data_dir / "config.json"


def get_config(data_dir: Path) -> dict[str, Any]:
    """Read config, returning defaults merged with stored values."""
    config: dict[str, Any] = json.loads(json.dumps(_CONFIG_DEFAULTS))
    path = _config_path(data_dir)
    if path.is_file():
        stored = json.loads(path.read_text())
        if isinstance(stored.get("llm_connection"), dict):
            config["llm_connection"].update(stored["llm_connection"])
        for key in _SCALAR_KEYS:
            if key in stored:
                config[key] = stored[key]
    return config


def update_config(data_dir: Path, fields: dict[str, Any]) -> dict[str, Any]:
    """Merge fields into config and persist. Returns full config.

    llm_connection is merged key by key; scalars are overwritten; unknown
    keys are ignored.
    """
    config = get_config(data_dir)
    if isinstance(fields.get("llm_connection"), dict):
        config["llm_connection"].update(
            {k: v for k, v in fields["llm_connection"].items() if k in _CONFIG_DEFAULTS["llm_connection"]}
        )
    for key in _SCALAR_KEYS:
        if key in fields:
            config[key] = fields[key]
    data_dir.mkdir(parents=True, exist_ok=True)
    _config_path(data_dir).write_text(json.dumps(config, indent=2))
    return config


def public_config(config: dict[str, Any]) -> dict[str, Any]:
    """Config as returned by the API: the API key is masked."""
    masked = json.loads(json.dumps(config))
    if masked["llm_connection"].get("api_key"):
        masked["llm_connection"]["api_key"] = "********"
    return masked


def build_llm(config: dict[str, Any]) -> LLM:
    """HttpLLM for the configured connection; EchoLLM when none is set."""
    conn = config["llm_connection"]
    if not conn.get("provider_url"):
        return EchoLLM()
    return HttpLLM(
        provider_url=conn["provider_url"],
        api_key=conn.get("api_key", ""),
        provider_format=conn.get("provider_format", "openai"),
        model=conn.get("model", ""),
    )
