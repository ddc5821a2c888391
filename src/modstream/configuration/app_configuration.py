from __future__ import annotations
from pathlib import Path
import fcntl
from typing import Any, Dict
import yaml

from modstream.util.logger import get_logger

logger = get_logger("app_configuration")


CONFIG_PATH = Path("./config/app_config.yml").resolve()


class AppConfig:
    """File-lock based accessor around the YAML application configuration.

    The class caches the contents of ``./config/app_config.yml`` and exposes
    typed properties for every tunable the moderation runtime reads. Missing
    sections or malformed values fall back to the built-in defaults.
    """

    def __init__(self, config_path: Path) -> None:
        self.config_path = config_path
        self._data: Dict[str, Any] = {}
        self.reload()

    # --------------------------
    # Private helpers
    # --------------------------
    def load_from_disk(self) -> Dict[str, Any]:
        try:
            with self.config_path.open("r", encoding="utf-8") as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_SH)
                try:
                    data = yaml.safe_load(f)
                finally:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)
                if data is None:
                    return {}
                if not isinstance(data, dict):
                    logger.error("[APP CONFIGURATION] Config %s is not a mapping; ignoring it.", self.config_path)
                    return {}
                return data
        except FileNotFoundError:
            logger.error("[APP CONFIGURATION] Config file %s not found.", self.config_path)
        except Exception as exc:
            logger.error("[APP CONFIGURATION] Failed to load config %s: %s", self.config_path, exc)
        return {}

    def _section(self, name: str) -> Dict[str, Any]:
        section = self._data.get(name, {})
        return section if isinstance(section, dict) else {}

    def _number(self, section: str, key: str, default: float, cast=float, minimum: float = 0) -> Any:
        raw = self._section(section).get(key, default)
        try:
            value = cast(raw)
        except (TypeError, ValueError):
            logger.warning("[APP CONFIGURATION] %s.%s=%r is not a number; using %r", section, key, raw, default)
            return cast(default)
        if value < minimum:
            logger.warning("[APP CONFIGURATION] %s.%s=%r is below %r; using %r", section, key, raw, minimum, default)
            return cast(default)
        return value

    # --------------------------
    # Public API
    # --------------------------
    def reload(self) -> Dict[str, Any]:
        """Reload configuration from disk and return the loaded mapping."""
        self._data = self.load_from_disk()
        return self._data

    @property
    def data(self) -> Dict[str, Any]:
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        """Safe lookup for top-level configuration keys."""
        return self._data.get(key, default)

    # --------------------------
    # High-level shortcuts
    # --------------------------
    @property
    def database_path(self) -> Path:
        """Location of the SQLite database file, relative to the working directory."""
        raw = self._section("database").get("path") or "./data/modstream.db"
        return Path(str(raw)).resolve()

    @property
    def spam_sweep_interval(self) -> float:
        """Seconds between spam window sweeps. Default is 30."""
        return self._number("spam_tracker", "sweep_interval_seconds", 30.0, minimum=1)

    @property
    def spam_stale_after_ms(self) -> int:
        """Idle time after which a sliding window is dropped. Default is 60 000 ms."""
        return self._number("spam_tracker", "stale_after_ms", 60_000, cast=int, minimum=1)

    @property
    def spam_max_tracked(self) -> int:
        """Hard ceiling on tracked (guild, author) pairs. Default is 10 000."""
        return self._number("spam_tracker", "max_tracked_pairs", 10_000, cast=int, minimum=1)

    @property
    def spam_timeout_minutes(self) -> int:
        """Length of the automatic timeout applied on a spam trigger."""
        return self._number("spam_tracker", "timeout_minutes", 5, cast=int, minimum=1)

    @property
    def policy_sync_interval(self) -> float:
        """Seconds between checks for policies changed by another writer."""
        return self._number("policy_sync", "interval_seconds", 60.0, minimum=1)

    @property
    def event_history_size(self) -> int:
        """Depth of the replay buffer handed to new subscribers."""
        return self._number("event_log", "history_size", 100, cast=int, minimum=1)

    @property
    def event_query_default_page_size(self) -> int:
        return self._number("event_log", "default_page_size", 50, cast=int, minimum=1)

    @property
    def event_query_max_page_size(self) -> int:
        return self._number("event_log", "max_page_size", 500, cast=int, minimum=1)

    @property
    def enforcement_timeout_seconds(self) -> float:
        """Upper bound on any single platform call made during enforcement."""
        return self._number("enforcement", "timeout_seconds", 10.0, minimum=0.1)

    @property
    def channel_idle_seconds(self) -> float:
        """How long a channel worker waits for a message before it exits."""
        return self._number("pipeline", "channel_idle_seconds", 300.0, minimum=1)

    @property
    def webhook_timeout_seconds(self) -> float:
        return self._number("webhooks", "timeout_seconds", 5.0, minimum=0.1)


# Shared application-wide configuration instance
app_config = AppConfig(CONFIG_PATH)
