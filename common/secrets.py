import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

__all__ = ["SecretsManager", "secrets", "get_secret", "jwt_secret", "api_tokens"]

# Secret keys that may also be supplied directly through the environment.
_ENV_FALLBACK = {"JWT_SECRET": "CLASSROOM_JWT_SECRET"}


class SecretsManager:
    """Classroom secrets read from the JSON file at ``SECRETS_PATH``.

    ``JWT_SECRET`` signs identity tokens; ``API_TOKENS`` maps a teacher id to
    a static bearer token used by teacher tooling and the market-data feed.
    The file is read once. Tests swap the cache with :meth:`set_override`.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(
            path or os.getenv("SECRETS_PATH", "/var/run/secrets/classroom.json")
        )
        self._cache: dict[str, Any] | None = None

    def _load(self) -> dict[str, Any]:
        if self._cache is None:
            try:
                with self._path.open("r", encoding="utf-8") as fh:
                    self._cache = json.load(fh)
            except FileNotFoundError:
                self._cache = {}
        return self._cache

    def get(self, key: str, default: Optional[Any] = None) -> Any:
        value = self._load().get(key)
        if value is None and key in _ENV_FALLBACK:
            value = os.getenv(_ENV_FALLBACK[key])
        return default if value is None else value

    def set_override(self, data: dict[str, Any]) -> None:
        """Replace the entire secret cache (test helper)."""

        self._cache = dict(data)


secrets = SecretsManager()


def get_secret(key: str, default: Optional[Any] = None) -> Any:
    return secrets.get(key, default)


def jwt_secret() -> Optional[str]:
    return get_secret("JWT_SECRET")


def api_tokens() -> Dict[str, str]:
    """Teacher id -> static token; malformed entries are ignored."""
    raw = get_secret("API_TOKENS", {})
    if not isinstance(raw, dict):
        return {}
    return {str(teacher): str(token) for teacher, token in raw.items() if token}
