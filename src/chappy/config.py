"""Configuration for the chappy server and CLI.

Server settings come from environment variables, optionally layered over a
YAML file named by CHAPPY_CONFIG (environment wins):

    store: sqlite            # CHAPPY_STORE: "memory" or "sqlite"
    db_path: chappy.db       # CHAPPY_DB
    public_channel: general  # CHAPPY_PUBLIC_CHANNEL
    guest_name: Guest        # CHAPPY_GUEST_NAME

The CLI keeps its own client config in ~/.config/chappy/config.yaml with the
server URL and a bearer token.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

DEFAULT_SERVER_URL = "http://localhost:1338"

_ENV_OVERRIDES = {
    "store": "CHAPPY_STORE",
    "db_path": "CHAPPY_DB",
    "public_channel": "CHAPPY_PUBLIC_CHANNEL",
    "guest_name": "CHAPPY_GUEST_NAME",
}


def _load_yaml(path: Path) -> dict[str, Any]:
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    return data


@dataclass
class ServerSettings:
    """Settings for the HTTP server and its store."""

    store: str = "memory"
    db_path: str = "chappy.db"
    public_channel: str = "general"
    guest_name: str = "Guest"

    @classmethod
    def load(cls, path: str | Path | None = None) -> "ServerSettings":
        """Load settings from an optional YAML file plus the environment."""
        data: dict[str, Any] = {}

        config_path = path or os.environ.get("CHAPPY_CONFIG")
        if config_path:
            data.update(_load_yaml(Path(config_path)))

        for name, env_var in _ENV_OVERRIDES.items():
            value = os.environ.get(env_var)
            if value:
                data[name] = value

        known = {k: str(v) for k, v in data.items() if k in _ENV_OVERRIDES}
        settings = cls(**known)
        if settings.store not in ("memory", "sqlite"):
            raise ValueError(f"Unknown store kind: {settings.store!r}")
        return settings


# --- CLI client config ---


def get_config_dir() -> Path:
    """Get the configuration directory path."""
    config_home = os.environ.get("XDG_CONFIG_HOME", os.path.expanduser("~/.config"))
    return Path(config_home) / "chappy"


def get_client_config_path() -> Path:
    return get_config_dir() / "config.yaml"


@dataclass
class ClientConfig:
    """Where the CLI sends requests and which token it presents."""

    url: str = DEFAULT_SERVER_URL
    token: str | None = None

    @classmethod
    def exists(cls) -> bool:
        return get_client_config_path().exists()

    @classmethod
    def load(cls) -> "ClientConfig":
        """Load from file; defaults if the file is missing."""
        path = get_client_config_path()
        if not path.exists():
            return cls()
        data = _load_yaml(path)
        return cls(
            url=data.get("url", DEFAULT_SERVER_URL),
            token=data.get("token"),
        )

    def save(self) -> None:
        path = get_client_config_path()
        path.parent.mkdir(parents=True, exist_ok=True)

        data: dict[str, Any] = {"url": self.url}
        if self.token:
            data["token"] = self.token

        with open(path, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
