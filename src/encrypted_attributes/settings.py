from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .models import DEFAULT_DEPENDENCY, EncryptedAttributesConfig
from .node_store import validate_node_name

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


@dataclass(frozen=True)
class RuntimeSettings:
    """Runtime settings loaded from environment with fail-fast validation."""

    local_mode: bool = False
    node_store_root: str = "nodes"
    node_name: str = "localhost"
    dependency: str = DEFAULT_DEPENDENCY
    client_search: str | None = None
    secret_key: str = ""

    @classmethod
    def from_env(cls, env_file: Path | None = None) -> "RuntimeSettings":
        """Build settings from ``ENCATTR_*`` variables.

        A ``.env`` file (``env_file`` or ``./.env``) is loaded first; variables
        already present in the environment take precedence over it.
        """
        dotenv_path = env_file if env_file is not None else Path.cwd() / ".env"
        if dotenv_path.is_file():
            load_dotenv(dotenv_path)

        client_search = os.getenv("ENCATTR_CLIENT_SEARCH")
        return cls(
            local_mode=_get_env_bool("ENCATTR_LOCAL_MODE", default=False),
            node_store_root=os.getenv("ENCATTR_NODE_STORE_ROOT", "nodes"),
            node_name=os.getenv("ENCATTR_NODE_NAME", "localhost"),
            dependency=os.getenv("ENCATTR_DEPENDENCY", DEFAULT_DEPENDENCY),
            client_search=client_search if client_search and client_search.strip() else None,
            secret_key=os.getenv("ENCATTR_SECRET_KEY", ""),
        ).normalized()

    def normalized(self) -> "RuntimeSettings":
        """Validate and normalize all fields. Raises ValueError on invalid configuration."""
        node_store_root = self.node_store_root.strip()
        if not node_store_root:
            raise ValueError("ENCATTR_NODE_STORE_ROOT must be non-empty")
        node_name = self.node_name.strip()
        try:
            validate_node_name(node_name)
        except ValueError as exc:
            raise ValueError(f"ENCATTR_NODE_NAME is invalid: {exc}") from exc
        dependency = self.dependency.strip()
        if not dependency:
            raise ValueError("ENCATTR_DEPENDENCY must be non-empty")
        client_search = self.client_search.strip() if self.client_search is not None else None
        return RuntimeSettings(
            local_mode=self.local_mode,
            node_store_root=node_store_root,
            node_name=node_name,
            dependency=dependency,
            client_search=client_search or None,
            secret_key=self.secret_key.strip(),
        )

    def node_store_path(self, base: Path) -> Path:
        path = Path(self.node_store_root)
        return path if path.is_absolute() else base / path

    def to_config(self) -> EncryptedAttributesConfig:
        return EncryptedAttributesConfig(
            local_mode=self.local_mode,
            client_search=self.client_search,
            dependency=self.dependency,
        )


def _get_env_bool(name: str, default: bool) -> bool:
    """Parse a boolean environment variable.

    Raises:
        ValueError: If the value is not one of the accepted spellings.
    """
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean (true/false, yes/no, on/off, 1/0), got: {raw!r}")
