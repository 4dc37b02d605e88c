"""CLI settings stored as YAML under ~/.hubjobs (or $HUBJOBS_CONFIG_DIR)"""

import copy
import os
from pathlib import Path
from typing import Any

import yaml
from rich.console import Console

console = Console()

DEFAULT_CONFIG: dict[str, Any] = {
    "api": {
        "base_url": "http://localhost:8000",
        "timeout": 30,
    },
    "display": {
        "jobs_per_page": 20,
        "queues": ["emailQueue", "fileProcessingQueue", "exportQueue"],
    },
}


def coerce_value(raw: str) -> Any:
    """Turn a command-line string into the YAML value it spells (int, bool, list...)."""
    if "," in raw:
        return [part.strip() for part in raw.split(",") if part.strip()]
    value = yaml.safe_load(raw)
    return raw if isinstance(value, (dict, list)) or value is None else value


class ConfigManager:
    """Dotted-key access to the CLI configuration file"""

    def __init__(self, config_dir: Path | None = None):
        self.config_dir = config_dir or Path(
            os.getenv("HUBJOBS_CONFIG_DIR", Path.home() / ".hubjobs")
        )
        self.config_file = self.config_dir / "config.yaml"

    def get_default_config(self) -> dict[str, Any]:
        defaults = copy.deepcopy(DEFAULT_CONFIG)
        if api_url := os.getenv("HUBJOBS_API_URL"):
            defaults["api"]["base_url"] = api_url
        return defaults

    def load_config(self) -> dict[str, Any]:
        config = self.get_default_config()
        if not self.config_file.exists():
            return config

        try:
            stored = yaml.safe_load(self.config_file.read_text()) or {}
        except (OSError, yaml.YAMLError) as e:
            console.print(f"[red]Error loading config: {e}[/red]")
            return config

        # Section-level merge keeps defaults added after the file was written
        for section, values in stored.items():
            if isinstance(values, dict) and isinstance(config.get(section), dict):
                config[section].update(values)
            else:
                config[section] = values
        return config

    def save_config(self, config: dict[str, Any]) -> None:
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.config_file.write_text(yaml.safe_dump(config, default_flow_style=False))

    def get(self, key: str, default: Any = None) -> Any:
        """Look up a dotted key such as 'api.base_url'"""
        node: Any = self.load_config()
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def set(self, key: str, value: Any) -> None:
        config = self.load_config()
        *parents, leaf = key.split(".")

        node = config
        for part in parents:
            node = node.setdefault(part, {})
        node[leaf] = value

        self.save_config(config)

    def reset(self) -> None:
        self.save_config(self.get_default_config())
        console.print("[green]Configuration reset to defaults[/green]")

    def show_all(self) -> None:
        console.print(yaml.safe_dump(self.load_config(), default_flow_style=False))


config = ConfigManager()
