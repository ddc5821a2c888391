"""
Construction and lifecycle of the moderation core.

:class:`ModerationRuntime` owns one instance of every component, wires the
broadcaster to the event log, and runs the two maintenance tasks (spam
window sweep and policy cache sync). Nothing here is a module-level
singleton, so tests can build as many isolated runtimes as they like.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from modstream.configuration.app_configuration import AppConfig
from modstream.database.db_connection import ConnectionManager
from modstream.database.db_schema import SchemaManager
from modstream.events.event_broadcaster import EventBroadcaster
from modstream.events.event_log import EventLog
from modstream.moderation.enforcement import EnforcementExecutor, PlatformAdapter
from modstream.moderation.filter_pipeline import FilterPipeline
from modstream.moderation.moderation_pipeline import ModerationPipeline
from modstream.moderation.policy_store import PolicyStore
from modstream.moderation.spam_tracker import SpamTracker
from modstream.moderation.warning_ledger import WarningLedger
from modstream.notifications.webhook_notifier import WebhookNotifier
from modstream.scheduler.periodic_task import PeriodicTask
from modstream.util.logger import get_logger

logger = get_logger("runtime")


class ModerationRuntime:
    """Every moderation component for one bot process."""

    def __init__(self, config: AppConfig, adapter: PlatformAdapter, db: Optional[ConnectionManager] = None) -> None:
        self.config = config
        self.db = db or ConnectionManager()
        self.policies = PolicyStore(self.db)
        self.filters = FilterPipeline()
        self.spam_tracker = SpamTracker(
            stale_after_ms=config.spam_stale_after_ms,
            max_tracked=config.spam_max_tracked,
        )
        self.warnings = WarningLedger(self.db)
        self.executor = EnforcementExecutor(
            adapter,
            self.warnings,
            action_timeout=config.enforcement_timeout_seconds,
            spam_timeout_minutes=config.spam_timeout_minutes,
        )
        self.event_log = EventLog(
            self.db,
            default_page_size=config.event_query_default_page_size,
            max_page_size=config.event_query_max_page_size,
        )
        self.broadcaster = EventBroadcaster(history_size=config.event_history_size)
        self.notifier = WebhookNotifier(self.db, timeout_seconds=config.webhook_timeout_seconds)
        self.pipeline = ModerationPipeline(
            self.policies,
            self.filters,
            self.spam_tracker,
            self.executor,
            self.event_log,
            self.notifier,
            channel_idle_seconds=config.channel_idle_seconds,
        )
        self.spam_sweep = PeriodicTask("SPAM SWEEP", self.spam_tracker.sweep, lambda: config.spam_sweep_interval)
        self.policy_sync = PeriodicTask("POLICY SYNC", self.policies.sync_stale, lambda: config.policy_sync_interval)

    async def open(self, database_path: Optional[Path] = None) -> None:
        """Open the database, prepare the schema and warm the replay buffer."""
        path = database_path or self.config.database_path
        await self.db.open(path)
        await SchemaManager.initialize_schema(self.db.connection)
        await self.event_log.open()
        self.broadcaster.rehydrate(await self.event_log.recent(self.broadcaster.history_size))
        self.event_log.add_listener(self.broadcaster.publish)
        logger.info("[RUNTIME] Moderation core ready (database %s)", path)

    def start(self) -> None:
        """Start the background maintenance tasks. Requires a running loop."""
        self.spam_sweep.start()
        self.policy_sync.start()

    async def shutdown(self) -> None:
        """Stop workers and tasks, flush notifications and close the database."""
        for step, closer in (
            ("spam sweep", self.spam_sweep.shutdown),
            ("policy sync", self.policy_sync.shutdown),
            ("pipeline", self.pipeline.shutdown),
            ("enforcement notices", self.executor.shutdown),
            ("webhook notifier", self.notifier.shutdown),
            ("database", self.db.close),
        ):
            try:
                await closer()
            except Exception:
                logger.exception("[RUNTIME] Error shutting down %s", step)
        logger.info("[RUNTIME] Moderation core shut down")
