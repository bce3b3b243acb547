"""Config schema and accessor."""

from __future__ import annotations

import os
from typing import Any

from hipchat.core.constants import (
    AUTH_MODES,
    DEFAULT_CONFERENCE_HOST,
    DEFAULT_HOST,
    DEFAULT_PORT,
    KEEPALIVE_MODES,
)
from hipchat.core.errors import ConfigurationError

# Env keys that override config (loaded once per Config)
_ENV_OVERRIDE_KEYS = (
    "HIPCHAT_USERNAME",
    "HIPCHAT_PASSWORD",
    "HIPCHAT_HOST",
    "HIPCHAT_TLS_VERIFY",
)


def _load_env_overrides() -> dict[str, str]:
    return {k: os.environ.get(k, "") for k in _ENV_OVERRIDE_KEYS}


def _parse_bool_env(val: str) -> bool | None:
    """Parse env string to bool; None if not a recognized bool."""
    v = val.lower()
    if v in ("1", "true", "yes"):
        return True
    if v in ("0", "false", "no"):
        return False
    return None


class Config:
    """Config accessor with attribute-style access for client settings.

    Passed explicitly to ``Client``; there is no module-level instance.
    """

    def __init__(self, data: dict[str, Any] | None = None, *, validate: bool = True) -> None:
        self._data = data or {}
        self._env: dict[str, str] = _load_env_overrides()
        if validate:
            self._validate()

    def _validate(self) -> None:
        """Validate config values; raise ConfigurationError on failure."""
        if not self.username:
            raise ConfigurationError("username is required", code="missing_username")
        if not self.password:
            raise ConfigurationError("password is required", code="missing_password")
        if self.auth_mode not in AUTH_MODES:
            raise ConfigurationError(
                f"auth_mode must be one of {', '.join(AUTH_MODES)}",
                code="invalid_auth_mode",
                details={"auth_mode": self.auth_mode},
            )
        if self.keepalive_mode not in KEEPALIVE_MODES:
            raise ConfigurationError(
                f"keepalive_mode must be one of {', '.join(KEEPALIVE_MODES)}",
                code="invalid_keepalive_mode",
                details={"keepalive_mode": self.keepalive_mode},
            )
        for key in ("message_queue_size", "room_queue_size", "reconnect_max_attempts"):
            value = self._int(key, 1)
            if value < 1:
                raise ConfigurationError(
                    f"{key} must be at least 1",
                    code="invalid_value",
                    details={"key": key, "value": value},
                )

    def _int(self, key: str, default: int) -> int:
        try:
            return int(self._data.get(key, default))
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(
                f"{key} must be an integer",
                code="invalid_value",
                details={"key": key, "value": self._data.get(key)},
                original_error=exc,
            ) from exc

    def _float(self, key: str, default: float) -> float:
        try:
            return float(self._data.get(key, default))
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(
                f"{key} must be a number",
                code="invalid_value",
                details={"key": key, "value": self._data.get(key)},
                original_error=exc,
            ) from exc

    def get(self, key: str, default: Any = None) -> Any:
        """Get value by dot-separated path (e.g. 'bot.room')."""
        parts = key.split(".")
        obj: Any = self._data
        for part in parts:
            if isinstance(obj, dict) and part in obj:
                obj = obj[part]
            else:
                return default
        return obj

    @property
    def username(self) -> str:
        return self._env.get("HIPCHAT_USERNAME") or str(self._data.get("username") or "")

    @property
    def password(self) -> str:
        return self._env.get("HIPCHAT_PASSWORD") or str(self._data.get("password") or "")

    @property
    def resource(self) -> str:
        return str(self._data.get("resource") or "bot")

    @property
    def host(self) -> str:
        return self._env.get("HIPCHAT_HOST") or str(self._data.get("host") or DEFAULT_HOST)

    @property
    def conference_host(self) -> str:
        return str(self._data.get("conference_host") or DEFAULT_CONFERENCE_HOST)

    @property
    def port(self) -> int:
        return self._int("port", DEFAULT_PORT)

    @property
    def auth_mode(self) -> str:
        """'sasl' (SASL PLAIN + bind + session) or 'iq' (legacy jabber:iq:auth)."""
        return str(self._data.get("auth_mode", "sasl")).lower()

    @property
    def tls_verify(self) -> bool:
        parsed = _parse_bool_env(self._env.get("HIPCHAT_TLS_VERIFY", ""))
        if parsed is not None:
            return parsed
        return bool(self._data.get("tls_verify", False))

    @property
    def connect_timeout(self) -> float:
        return self._float("connect_timeout", 30)

    @property
    def message_queue_size(self) -> int:
        return self._int("message_queue_size", 20)

    @property
    def room_queue_size(self) -> int:
        return self._int("room_queue_size", 10)

    @property
    def keepalive_mode(self) -> str:
        return str(self._data.get("keepalive_mode", "ping")).lower()

    @property
    def keepalive_interval(self) -> float:
        """Seconds between keep-alives; 0 disables them."""
        return self._float("keepalive_interval", 120)

    @property
    def keepalive_room(self) -> str:
        val = self._data.get("keepalive_room")
        if val and isinstance(val, str) and val.strip():
            return val.strip()
        return f"1_default@{self.conference_host}"

    @property
    def keepalive_nick(self) -> str:
        return str(self._data.get("keepalive_nick") or self.resource)

    @property
    def liveness_timeout(self) -> float:
        """Seconds of inbound silence before the transport is force-closed; 0 disables."""
        return self._float("liveness_timeout", 300)

    @property
    def reconnect_delay(self) -> float:
        return self._float("reconnect_delay", 5)

    @property
    def reconnect_max_delay(self) -> float:
        return self._float("reconnect_max_delay", 60)

    @property
    def reconnect_max_attempts(self) -> int:
        return self._int("reconnect_max_attempts", 10)

    @property
    def rejoin_rooms(self) -> bool:
        return bool(self._data.get("rejoin_rooms", True))

    @property
    def history_limit(self) -> int:
        return self._int("history_limit", 50)

    @property
    def mention_cache_ttl_seconds(self) -> int:
        return self._int("mention_cache_ttl_seconds", 3600)
