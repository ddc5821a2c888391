"""
Moderation pipeline: the single entry point for messages and commands.

Message path::

    PolicyStore.resolve -> FilterPipeline.evaluate ─┐
                           SpamTracker.observe ─────┴> EnforcementExecutor.apply
                           -> EventLog.append (broadcast via listener) -> WebhookNotifier.notify

Command path::

    ModerationCommand.validate -> EnforcementExecutor.apply -> EventLog.append -> notify

The gateway adapter hands messages to :meth:`ModerationPipeline.submit`,
which queues them per channel so delivery order inside a channel is kept
while channels proceed independently. Each channel gets a lazily started
worker; a worker that died or went idle is restarted by the next message.
An idle worker drops its queue on exit, so only active channels hold state.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from modstream.datatypes.discord_datatypes import ChannelID
from modstream.datatypes.event_datatypes import ModerationEvent
from modstream.datatypes.moderation_datatypes import (
    EnforcementResult,
    InboundMessage,
    ModerationCommand,
    Violation,
)
from modstream.errors import SequenceError, StorageError
from modstream.events.event_log import EventLog
from modstream.moderation.enforcement import EnforcementExecutor
from modstream.moderation.filter_pipeline import FilterPipeline
from modstream.moderation.policy_store import PolicyStore
from modstream.moderation.spam_tracker import SpamTracker
from modstream.notifications.webhook_notifier import WebhookNotifier
from modstream.util.logger import get_logger

logger = get_logger("moderation_pipeline")


@dataclass(slots=True)
class CommandOutcome:
    """What an explicit command produced. ``event`` is None if the append failed."""

    result: EnforcementResult
    event: Optional[ModerationEvent]


class ModerationPipeline:
    """Wires the moderation components into the message and command paths."""

    def __init__(
        self,
        policies: PolicyStore,
        filters: FilterPipeline,
        spam_tracker: SpamTracker,
        executor: EnforcementExecutor,
        event_log: EventLog,
        notifier: Optional[WebhookNotifier] = None,
        *,
        channel_idle_seconds: float = 300.0,
    ) -> None:
        self._policies = policies
        self._filters = filters
        self._spam = spam_tracker
        self._executor = executor
        self._log = event_log
        self._notifier = notifier
        self._idle_seconds = channel_idle_seconds
        self._queues: Dict[ChannelID, asyncio.Queue[InboundMessage]] = {}
        self._workers: Dict[ChannelID, asyncio.Task] = {}
        self._fatal: Optional[SequenceError] = None

    # ------------------------------------------------------
    # Public API
    # ------------------------------------------------------

    async def process_message(self, message: InboundMessage) -> List[ModerationEvent]:
        """Run one message through automod and return the events it produced.

        A filter hit and a spam trigger on the same message are both
        enforced, filter first.

        Raises:
            SequenceError: If the event log lost its ordering guarantee.
        """
        policy = await self._policies.resolve(message.guild_id)
        if not policy.enabled:
            return []

        violations: List[Violation] = []
        violation = self._filters.evaluate(message, policy)
        if violation is not None:
            violations.append(violation)
        spam = self._spam.observe_message(message, policy)
        if spam is not None:
            violations.append(spam)

        produced: List[ModerationEvent] = []
        for item in violations:
            result = await self._executor.apply(item)
            event = await self._record(result)
            if event is not None:
                produced.append(event)
        return produced

    async def execute_command(self, command: ModerationCommand) -> CommandOutcome:
        """Validate and run an explicit moderator command.

        Raises:
            ValidationError: If the command is malformed; nothing is executed.
            SequenceError: If the event log lost its ordering guarantee.
        """
        command.validate()
        logger.info(
            "[PIPELINE] %s requested by %s against %s in guild %s",
            command.action, command.moderator_id, command.target_id, command.guild_id,
        )
        result = await self._executor.apply(command)
        event = await self._record(result)
        return CommandOutcome(result=result, event=event)

    def submit(self, message: InboundMessage) -> None:
        """Queue a message for processing without waiting for the outcome.

        Raises:
            SequenceError: If an earlier append hit a fatal ordering failure.
        """
        if self._fatal is not None:
            raise self._fatal

        channel_id = message.channel_id
        queue = self._queues.get(channel_id)
        if queue is None:
            queue = asyncio.Queue()
            self._queues[channel_id] = queue
        queue.put_nowait(message)

        worker = self._workers.get(channel_id)
        if worker is None or worker.done():
            self._workers[channel_id] = asyncio.create_task(
                self._channel_worker(channel_id, queue),
                name=f"modstream-channel-{channel_id}",
            )
            logger.debug("[PIPELINE] Started worker for channel %s", channel_id)

    async def drain(self) -> None:
        """Wait until every queued message has been processed."""
        await asyncio.gather(*(queue.join() for queue in list(self._queues.values())))

    async def shutdown(self) -> None:
        """Cancel all channel workers."""
        for task in self._workers.values():
            if not task.done():
                task.cancel()
        if self._workers:
            await asyncio.gather(*self._workers.values(), return_exceptions=True)
        self._workers.clear()
        self._queues.clear()
        logger.info("[PIPELINE] All channel workers shut down.")

    # -------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------

    async def _record(self, result: EnforcementResult) -> Optional[ModerationEvent]:
        """Append the result's draft and hand the event to the notifier.

        A storage failure drops this one event and is logged; the caller
        carries on with its next item.
        """
        try:
            event = await self._log.append(result.draft)
        except SequenceError:
            raise
        except StorageError as exc:
            logger.error(
                "[PIPELINE] Lost %s event for %s in guild %s: %s",
                result.draft.type, result.draft.subject_id, result.draft.guild_id, exc,
            )
            return None

        if self._notifier is not None:
            self._notifier.notify(event.guild_id, event)
        return event

    async def _channel_worker(self, channel_id: ChannelID, queue: asyncio.Queue[InboundMessage]) -> None:
        while True:
            try:
                message = await asyncio.wait_for(queue.get(), self._idle_seconds)
            except asyncio.TimeoutError:
                if queue.empty():
                    self._retire(channel_id, queue)
                    return
                continue
            except asyncio.CancelledError:
                logger.debug("[PIPELINE] Worker cancelled for channel %s", channel_id)
                return

            try:
                await self.process_message(message)
            except SequenceError as exc:
                logger.critical("[PIPELINE] Event ordering broken, refusing further messages: %s", exc)
                self._fatal = exc
                while not queue.empty():
                    queue.get_nowait()
                    queue.task_done()
                return
            except asyncio.CancelledError:
                return
            except Exception:
                logger.exception("[PIPELINE] Failed to process message %s", message.message_id)
            finally:
                queue.task_done()

    def _retire(self, channel_id: ChannelID, queue: asyncio.Queue[InboundMessage]) -> None:
        if self._queues.get(channel_id) is queue:
            del self._queues[channel_id]
        if self._workers.get(channel_id) is asyncio.current_task():
            del self._workers[channel_id]
        logger.debug("[PIPELINE] Worker for channel %s exited after %.0fs idle", channel_id, self._idle_seconds)
