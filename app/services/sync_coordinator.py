from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, TypeVar

from app.core.config import Settings, get_settings
from app.core.errors import ConcurrencyConflictError
from app.schemas.meeting import Meeting
from app.schemas.notification import Notification
from app.schemas.sync import (
    QueuedUpdate,
    SyncEntityType,
    TaskWithContext,
    Team,
    UserDataSnapshot,
)
from app.services.meeting_data_store import (
    MeetingDataStore,
    SnapshotCallback,
    Unsubscribe,
    create_meeting_data_store,
)
from app.services.task_service import TaskService

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT")
SubscriptionKey = tuple[SyncEntityType, str]
ReplayHandler = Callable[[QueuedUpdate], Awaitable[None]]

_EPOCH = datetime.min.replace(tzinfo=UTC)


@dataclass(eq=False)
class SyncSubscription:
    key: SubscriptionKey
    unsubscribe: Unsubscribe


class SyncCoordinator:
    """Keeps live per-entity subscriptions and replays updates missed offline.

    At most one upstream subscription exists per ``(entity type, id)`` key.
    Subscribing again to a live key releases the previous upstream handle
    first. Registry, queue and single-flight state are guarded by one lock.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        store: MeetingDataStore | None = None,
        task_service: TaskService | None = None,
        replay_handler: ReplayHandler | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store or create_meeting_data_store(self.settings)
        self.task_service = task_service or TaskService(self.store)
        self.replay_handler = replay_handler or _log_replayed_update

        self._lock = threading.RLock()
        self._subscriptions: dict[SubscriptionKey, SyncSubscription] = {}
        self._update_queue: list[QueuedUpdate] = []
        self._is_online = True
        self._sync_in_progress = False

    def subscribe_meeting_updates(
        self,
        user_id: str,
        callback: Callable[[list[Meeting]], None],
    ) -> Unsubscribe:
        return self._subscribe(
            (SyncEntityType.user_meetings, user_id),
            self.store.subscribe_to_user_meetings,
            callback,
        )

    def subscribe_team_meetings(
        self,
        team_id: str,
        callback: Callable[[list[Meeting]], None],
    ) -> Unsubscribe:
        return self._subscribe(
            (SyncEntityType.team_meetings, team_id),
            self.store.subscribe_to_team_meetings,
            callback,
        )

    def subscribe_task_updates(
        self,
        user_id: str,
        callback: Callable[[list[TaskWithContext]], None],
    ) -> Unsubscribe:
        return self._subscribe(
            (SyncEntityType.user_tasks, user_id),
            self.task_service.subscribe_to_user_tasks,
            callback,
        )

    def subscribe_team_updates(
        self,
        user_id: str,
        callback: Callable[[list[Team]], None],
    ) -> Unsubscribe:
        return self._subscribe(
            (SyncEntityType.user_teams, user_id),
            self.store.subscribe_to_user_teams,
            callback,
        )

    def subscribe_notifications(
        self,
        user_id: str,
        callback: Callable[[list[Notification]], None],
    ) -> Unsubscribe:
        return self._subscribe(
            (SyncEntityType.user_notifications, user_id),
            self.store.subscribe_to_user_notifications,
            callback,
        )

    def unsubscribe(self, entity_type: SyncEntityType, entity_id: str) -> None:
        key = (SyncEntityType(entity_type), entity_id)
        with self._lock:
            subscription = self._subscriptions.pop(key, None)
        if subscription:
            self._release(subscription)

    def active_subscription_keys(self) -> list[SubscriptionKey]:
        with self._lock:
            return list(self._subscriptions)

    async def sync_all_user_data(self, user_id: str) -> UserDataSnapshot:
        with self._lock:
            if self._sync_in_progress:
                raise ConcurrencyConflictError("Sync already in progress.")
            self._sync_in_progress = True

        try:
            logger.info("Starting full data sync for user %s", user_id)
            meetings, tasks, teams, notifications = await asyncio.gather(
                self.store.get_user_meetings(user_id),
                self.task_service.get_user_tasks(user_id),
                self.store.get_user_teams(user_id),
                self.store.get_user_notifications(user_id),
            )
            snapshot = UserDataSnapshot(
                meetings=sort_newest_first(meetings),
                tasks=sort_newest_first(tasks),
                teams=sort_newest_first(teams),
                notifications=sort_newest_first(notifications),
            )
            logger.info(
                "Full data sync completed for user %s meetings=%s tasks=%s teams=%s notifications=%s",
                user_id,
                len(snapshot.meetings),
                len(snapshot.tasks),
                len(snapshot.teams),
                len(snapshot.notifications),
            )
            return snapshot
        except Exception:
            logger.exception("Full data sync failed for user %s", user_id)
            raise
        finally:
            with self._lock:
                self._sync_in_progress = False

    async def handle_connection_state_change(self, is_online: bool) -> None:
        with self._lock:
            was_online = self._is_online
            self._is_online = is_online
        logger.info("Connection state changed: %s", "online" if is_online else "offline")

        if is_online and not was_online:
            await self._process_queued_updates()

    def get_connection_state(self) -> bool:
        with self._lock:
            return self._is_online

    def queue_update(self, update: QueuedUpdate) -> None:
        with self._lock:
            self._update_queue.append(update)
            if len(self._update_queue) > self.settings.sync_update_queue_limit:
                dropped_count = len(self._update_queue) - self.settings.sync_update_queue_retain
                self._update_queue = self._update_queue[-self.settings.sync_update_queue_retain :]
                logger.warning("Update queue over limit; dropped %s oldest updates", dropped_count)

    async def publish_update(self, update: QueuedUpdate) -> None:
        with self._lock:
            if not self._is_online:
                self.queue_update(update)
                return
        await self.replay_handler(update)

    def pending_updates(self) -> list[QueuedUpdate]:
        with self._lock:
            return list(self._update_queue)

    def cleanup(self) -> None:
        with self._lock:
            subscriptions = list(self._subscriptions.values())
            self._subscriptions.clear()
            self._update_queue = []
        logger.info("Cleaning up %s real-time subscriptions", len(subscriptions))
        for subscription in subscriptions:
            self._release(subscription)

    def _subscribe(
        self,
        key: SubscriptionKey,
        upstream_subscribe: Callable[[str, SnapshotCallback], Unsubscribe],
        callback: Callable[[list[Any]], None],
    ) -> Unsubscribe:
        entity_type, entity_id = key

        def deliver(records: list[Any]) -> None:
            try:
                callback(sort_newest_first(records))
                logger.debug("%s update for %s: %s records", entity_type, entity_id, len(records))
            except Exception:
                logger.exception("Error in %s subscription for %s", entity_type, entity_id)
                try:
                    callback([])
                except Exception:
                    logger.exception("Empty fallback for %s subscription %s failed", entity_type, entity_id)

        with self._lock:
            previous = self._subscriptions.pop(key, None)
            if previous:
                self._release(previous)
            subscription = SyncSubscription(key=key, unsubscribe=upstream_subscribe(entity_id, deliver))
            self._subscriptions[key] = subscription

        def unsubscribe() -> None:
            with self._lock:
                if self._subscriptions.get(key) is not subscription:
                    return
                del self._subscriptions[key]
            self._release(subscription)

        return unsubscribe

    def _release(self, subscription: SyncSubscription) -> None:
        try:
            subscription.unsubscribe()
        except Exception:
            logger.exception("Error cleaning up subscription %s", subscription.key)

    async def _process_queued_updates(self) -> None:
        with self._lock:
            queued_updates = sorted(self._update_queue, key=lambda update: update.timestamp)
            self._update_queue = []
        if not queued_updates:
            return

        logger.info("Processing %s queued updates", len(queued_updates))
        for update in queued_updates:
            try:
                await self.replay_handler(update)
            except Exception:
                logger.exception("Error processing queued %s %s update", update.type, update.action)
        logger.info("All queued updates processed")


def sort_newest_first(records: Sequence[RecordT]) -> list[RecordT]:
    return sorted(
        records,
        key=lambda record: getattr(record, "created_at", None) or _EPOCH,
        reverse=True,
    )


async def _log_replayed_update(update: QueuedUpdate) -> None:
    logger.info(
        "Replaying %s %s update for user %s from %s",
        update.type,
        update.action,
        update.user_id,
        update.timestamp.isoformat(),
    )
