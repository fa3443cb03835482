from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from functools import lru_cache
from itertools import count
from typing import Any

from pydantic import TypeAdapter

from app.core.config import Settings
from app.core.errors import NotFoundError
from app.schemas.meeting import ActionItem, ActionItemStatus, Meeting, ProcessedMeeting, TeamMember
from app.schemas.notification import NOTIFICATION_ADAPTER, Notification
from app.schemas.sync import Team

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[list[Any]], None]
Unsubscribe = Callable[[], None]

_DATETIME_ADAPTER: TypeAdapter[datetime] = TypeAdapter(datetime)


class MeetingDataStore(ABC):
    @abstractmethod
    async def get_team(self, team_id: str) -> Team | None:
        raise NotImplementedError

    @abstractmethod
    async def get_team_members(self, team_id: str) -> list[TeamMember]:
        raise NotImplementedError

    @abstractmethod
    async def save_team(self, team: Team) -> str:
        raise NotImplementedError

    @abstractmethod
    async def get_user_teams(self, user_id: str) -> list[Team]:
        raise NotImplementedError

    @abstractmethod
    async def save_meeting(self, user_id: str, meeting: ProcessedMeeting) -> str:
        raise NotImplementedError

    @abstractmethod
    async def get_meeting_by_id(self, meeting_id: str) -> Meeting | None:
        raise NotImplementedError

    @abstractmethod
    async def get_user_meetings(self, user_id: str) -> list[Meeting]:
        raise NotImplementedError

    @abstractmethod
    async def get_team_meetings(self, team_id: str) -> list[Meeting]:
        raise NotImplementedError

    @abstractmethod
    async def list_meetings_assigned_to(self, user_id: str) -> list[Meeting]:
        raise NotImplementedError

    @abstractmethod
    async def assign_task(
        self,
        meeting_id: str,
        task_id: str,
        assignee_id: str,
        assigned_by: str,
        *,
        assignee_name: str | None = None,
    ) -> ActionItem:
        raise NotImplementedError

    @abstractmethod
    async def update_task_status(
        self,
        meeting_id: str,
        task_id: str,
        status: ActionItemStatus,
    ) -> ActionItem:
        raise NotImplementedError

    @abstractmethod
    async def create_notification(self, notification: Notification) -> str:
        raise NotImplementedError

    @abstractmethod
    async def get_user_notifications(self, user_id: str) -> list[Notification]:
        raise NotImplementedError

    @abstractmethod
    def subscribe_to_user_meetings(self, user_id: str, callback: SnapshotCallback) -> Unsubscribe:
        raise NotImplementedError

    @abstractmethod
    def subscribe_to_team_meetings(self, team_id: str, callback: SnapshotCallback) -> Unsubscribe:
        raise NotImplementedError

    @abstractmethod
    def subscribe_to_user_teams(self, user_id: str, callback: SnapshotCallback) -> Unsubscribe:
        raise NotImplementedError

    @abstractmethod
    def subscribe_to_user_notifications(self, user_id: str, callback: SnapshotCallback) -> Unsubscribe:
        raise NotImplementedError

    @abstractmethod
    def subscribe_to_assigned_meetings(self, user_id: str, callback: SnapshotCallback) -> Unsubscribe:
        raise NotImplementedError

    async def ensure_indexes(self) -> None:
        return None


class InMemoryMeetingDataStore(MeetingDataStore):
    """Process-local store.

    Subscribers receive the current snapshot as soon as they subscribe and
    again after every mutation.
    """

    def __init__(self) -> None:
        self._next_meeting_id = 1
        self._next_team_id = 1
        self._next_notification_id = 1

        self._meetings_by_id: dict[str, Meeting] = {}
        self._teams_by_id: dict[str, Team] = {}
        self._notifications_by_id: dict[str, Notification] = {}

        self._listener_ids = count(1)
        self._listeners: dict[int, tuple[Callable[[], list[Any]], SnapshotCallback]] = {}

    async def get_team(self, team_id: str) -> Team | None:
        team = self._teams_by_id.get(team_id)
        if not team:
            return None
        return team.model_copy(deep=True)

    async def get_team_members(self, team_id: str) -> list[TeamMember]:
        team = await self.get_team(team_id)
        if not team:
            raise NotFoundError(f"Team {team_id} not found.")
        return team.members

    async def save_team(self, team: Team) -> str:
        team_id = team.id or f"memory-team-{self._next_team_id}"
        self._next_team_id += 1
        self._teams_by_id[team_id] = team.model_copy(update={"id": team_id}, deep=True)
        self._emit_changes()
        return team_id

    async def get_user_teams(self, user_id: str) -> list[Team]:
        return self._list_user_teams(user_id)

    async def save_meeting(self, user_id: str, meeting: ProcessedMeeting) -> str:
        meeting_id = f"memory-meeting-{self._next_meeting_id}"
        self._next_meeting_id += 1
        self._meetings_by_id[meeting_id] = _build_meeting(meeting_id, user_id, meeting)
        self._emit_changes()
        return meeting_id

    async def get_meeting_by_id(self, meeting_id: str) -> Meeting | None:
        meeting = self._meetings_by_id.get(meeting_id)
        if not meeting:
            return None
        return meeting.model_copy(deep=True)

    async def get_user_meetings(self, user_id: str) -> list[Meeting]:
        return self._list_user_meetings(user_id)

    async def get_team_meetings(self, team_id: str) -> list[Meeting]:
        return self._list_team_meetings(team_id)

    async def list_meetings_assigned_to(self, user_id: str) -> list[Meeting]:
        return self._list_assigned_meetings(user_id)

    async def assign_task(
        self,
        meeting_id: str,
        task_id: str,
        assignee_id: str,
        assigned_by: str,
        *,
        assignee_name: str | None = None,
    ) -> ActionItem:
        meeting = self._meetings_by_id.get(meeting_id)
        if not meeting:
            raise NotFoundError(f"Meeting {meeting_id} not found.")
        for index, item in enumerate(meeting.action_items):
            if item.id != task_id:
                continue
            updated_item = _apply_assignment(
                item,
                assignee_id=assignee_id,
                assignee_name=assignee_name,
                assigned_by=assigned_by,
            )
            meeting.action_items[index] = updated_item
            meeting.updated_at = datetime.now(UTC)
            self._emit_changes()
            return updated_item.model_copy(deep=True)
        raise NotFoundError(f"Action item {task_id} not found in meeting {meeting_id}.")

    async def update_task_status(
        self,
        meeting_id: str,
        task_id: str,
        status: ActionItemStatus,
    ) -> ActionItem:
        meeting = self._meetings_by_id.get(meeting_id)
        if not meeting:
            raise NotFoundError(f"Meeting {meeting_id} not found.")
        for index, item in enumerate(meeting.action_items):
            if item.id != task_id:
                continue
            updated_item = item.model_copy(update={"status": ActionItemStatus(status)})
            meeting.action_items[index] = updated_item
            meeting.updated_at = datetime.now(UTC)
            self._emit_changes()
            return updated_item.model_copy(deep=True)
        raise NotFoundError(f"Action item {task_id} not found in meeting {meeting_id}.")

    async def create_notification(self, notification: Notification) -> str:
        notification_id = f"memory-notification-{self._next_notification_id}"
        self._next_notification_id += 1
        self._notifications_by_id[notification_id] = notification.model_copy(
            update={"id": notification_id},
            deep=True,
        )
        self._emit_changes()
        return notification_id

    async def get_user_notifications(self, user_id: str) -> list[Notification]:
        return self._list_user_notifications(user_id)

    def subscribe_to_user_meetings(self, user_id: str, callback: SnapshotCallback) -> Unsubscribe:
        return self._subscribe(lambda: self._list_user_meetings(user_id), callback)

    def subscribe_to_team_meetings(self, team_id: str, callback: SnapshotCallback) -> Unsubscribe:
        return self._subscribe(lambda: self._list_team_meetings(team_id), callback)

    def subscribe_to_user_teams(self, user_id: str, callback: SnapshotCallback) -> Unsubscribe:
        return self._subscribe(lambda: self._list_user_teams(user_id), callback)

    def subscribe_to_user_notifications(self, user_id: str, callback: SnapshotCallback) -> Unsubscribe:
        return self._subscribe(lambda: self._list_user_notifications(user_id), callback)

    def subscribe_to_assigned_meetings(self, user_id: str, callback: SnapshotCallback) -> Unsubscribe:
        return self._subscribe(lambda: self._list_assigned_meetings(user_id), callback)

    def _list_user_meetings(self, user_id: str) -> list[Meeting]:
        return [
            meeting.model_copy(deep=True)
            for meeting in self._meetings_by_id.values()
            if meeting.created_by == user_id
        ]

    def _list_team_meetings(self, team_id: str) -> list[Meeting]:
        return [
            meeting.model_copy(deep=True)
            for meeting in self._meetings_by_id.values()
            if meeting.team_id == team_id
        ]

    def _list_assigned_meetings(self, user_id: str) -> list[Meeting]:
        return [
            meeting.model_copy(deep=True)
            for meeting in self._meetings_by_id.values()
            if any(item.assignee_id == user_id for item in meeting.action_items)
        ]

    def _list_user_teams(self, user_id: str) -> list[Team]:
        return [
            team.model_copy(deep=True)
            for team in self._teams_by_id.values()
            if any(member.user_id == user_id for member in team.members)
        ]

    def _list_user_notifications(self, user_id: str) -> list[Notification]:
        return [
            notification.model_copy(deep=True)
            for notification in self._notifications_by_id.values()
            if notification.user_id == user_id
        ]

    def _subscribe(self, fetch: Callable[[], list[Any]], callback: SnapshotCallback) -> Unsubscribe:
        listener_id = next(self._listener_ids)
        self._listeners[listener_id] = (fetch, callback)
        callback(fetch())

        def unsubscribe() -> None:
            self._listeners.pop(listener_id, None)

        return unsubscribe

    def _emit_changes(self) -> None:
        for listener_id, (fetch, callback) in list(self._listeners.items()):
            try:
                callback(fetch())
            except Exception:
                logger.exception("Snapshot listener %s failed", listener_id)


class MongoMeetingDataStore(MeetingDataStore):
    def __init__(
        self,
        *,
        uri: str,
        db_name: str,
        meetings_collection_name: str,
        teams_collection_name: str,
        notifications_collection_name: str,
        connect_timeout_ms: int = 2000,
    ) -> None:
        from pymongo import AsyncMongoClient

        self._client = AsyncMongoClient(
            uri,
            serverSelectionTimeoutMS=connect_timeout_ms,
            connectTimeoutMS=connect_timeout_ms,
        )
        database = self._client[db_name]
        self._meetings = database[meetings_collection_name]
        self._teams = database[teams_collection_name]
        self._notifications = database[notifications_collection_name]
        self._watch_tasks: set[asyncio.Task[None]] = set()

    async def ensure_indexes(self) -> None:
        from pymongo import DESCENDING

        await self._meetings.create_index([("created_by", 1), ("created_at", DESCENDING)])
        await self._meetings.create_index([("team_id", 1), ("created_at", DESCENDING)])
        await self._meetings.create_index("action_items.assignee_id")
        await self._teams.create_index("members.user_id")
        await self._notifications.create_index([("user_id", 1), ("created_at", DESCENDING)])

    async def get_team(self, team_id: str) -> Team | None:
        object_id = _to_object_id(team_id)
        if not object_id:
            return None
        record = await self._teams.find_one({"_id": object_id})
        payload = _serialize_record(record)
        if not payload:
            return None
        return Team.model_validate(payload)

    async def get_team_members(self, team_id: str) -> list[TeamMember]:
        team = await self.get_team(team_id)
        if not team:
            raise NotFoundError(f"Team {team_id} not found.")
        return team.members

    async def save_team(self, team: Team) -> str:
        payload = team.model_dump(mode="json", exclude={"id"})
        insert_result = await self._teams.insert_one(payload)
        return str(insert_result.inserted_id)

    async def get_user_teams(self, user_id: str) -> list[Team]:
        return await self._find_teams({"members.user_id": user_id})

    async def save_meeting(self, user_id: str, meeting: ProcessedMeeting) -> str:
        payload = _build_meeting("", user_id, meeting).model_dump(mode="json", exclude={"id"})
        insert_result = await self._meetings.insert_one(payload)
        return str(insert_result.inserted_id)

    async def get_meeting_by_id(self, meeting_id: str) -> Meeting | None:
        object_id = _to_object_id(meeting_id)
        if not object_id:
            return None
        record = await self._meetings.find_one({"_id": object_id})
        payload = _serialize_record(record)
        if not payload:
            return None
        return Meeting.model_validate(payload)

    async def get_user_meetings(self, user_id: str) -> list[Meeting]:
        return await self._find_meetings({"created_by": user_id})

    async def get_team_meetings(self, team_id: str) -> list[Meeting]:
        return await self._find_meetings({"team_id": team_id})

    async def list_meetings_assigned_to(self, user_id: str) -> list[Meeting]:
        return await self._find_meetings({"action_items.assignee_id": user_id})

    async def assign_task(
        self,
        meeting_id: str,
        task_id: str,
        assignee_id: str,
        assigned_by: str,
        *,
        assignee_name: str | None = None,
    ) -> ActionItem:
        meeting = await self.get_meeting_by_id(meeting_id)
        if not meeting:
            raise NotFoundError(f"Meeting {meeting_id} not found.")
        current_item = next((item for item in meeting.action_items if item.id == task_id), None)
        if not current_item:
            raise NotFoundError(f"Action item {task_id} not found in meeting {meeting_id}.")

        updated_item = _apply_assignment(
            current_item,
            assignee_id=assignee_id,
            assignee_name=assignee_name,
            assigned_by=assigned_by,
        )
        update_result = await self._meetings.update_one(
            {"_id": _to_object_id(meeting_id), "action_items.id": task_id},
            {
                "$set": {
                    "action_items.$": updated_item.model_dump(mode="json"),
                    "updated_at": _DATETIME_ADAPTER.dump_python(datetime.now(UTC), mode="json"),
                },
            },
        )
        if update_result.matched_count == 0:
            raise NotFoundError(f"Action item {task_id} not found in meeting {meeting_id}.")
        return updated_item

    async def update_task_status(
        self,
        meeting_id: str,
        task_id: str,
        status: ActionItemStatus,
    ) -> ActionItem:
        meeting = await self.get_meeting_by_id(meeting_id)
        if not meeting:
            raise NotFoundError(f"Meeting {meeting_id} not found.")
        current_item = next((item for item in meeting.action_items if item.id == task_id), None)
        if not current_item:
            raise NotFoundError(f"Action item {task_id} not found in meeting {meeting_id}.")

        updated_item = current_item.model_copy(update={"status": ActionItemStatus(status)})
        update_result = await self._meetings.update_one(
            {"_id": _to_object_id(meeting_id), "action_items.id": task_id},
            {
                "$set": {
                    "action_items.$.status": updated_item.status.value,
                    "updated_at": _DATETIME_ADAPTER.dump_python(datetime.now(UTC), mode="json"),
                },
            },
        )
        if update_result.matched_count == 0:
            raise NotFoundError(f"Action item {task_id} not found in meeting {meeting_id}.")
        return updated_item

    async def create_notification(self, notification: Notification) -> str:
        payload = NOTIFICATION_ADAPTER.dump_python(notification, mode="json")
        payload.pop("id", None)
        insert_result = await self._notifications.insert_one(payload)
        return str(insert_result.inserted_id)

    async def get_user_notifications(self, user_id: str) -> list[Notification]:
        cursor = self._notifications.find({"user_id": user_id}).sort("created_at", -1)
        records = await cursor.to_list()
        return [
            NOTIFICATION_ADAPTER.validate_python(_serialize_record(record))
            for record in records
        ]

    def subscribe_to_user_meetings(self, user_id: str, callback: SnapshotCallback) -> Unsubscribe:
        return self._watch(self._meetings, lambda: self.get_user_meetings(user_id), callback)

    def subscribe_to_team_meetings(self, team_id: str, callback: SnapshotCallback) -> Unsubscribe:
        return self._watch(self._meetings, lambda: self.get_team_meetings(team_id), callback)

    def subscribe_to_user_teams(self, user_id: str, callback: SnapshotCallback) -> Unsubscribe:
        return self._watch(self._teams, lambda: self.get_user_teams(user_id), callback)

    def subscribe_to_user_notifications(self, user_id: str, callback: SnapshotCallback) -> Unsubscribe:
        return self._watch(
            self._notifications,
            lambda: self.get_user_notifications(user_id),
            callback,
        )

    def subscribe_to_assigned_meetings(self, user_id: str, callback: SnapshotCallback) -> Unsubscribe:
        return self._watch(
            self._meetings,
            lambda: self.list_meetings_assigned_to(user_id),
            callback,
        )

    async def _find_meetings(self, query: dict[str, Any]) -> list[Meeting]:
        cursor = self._meetings.find(query).sort("created_at", -1)
        records = await cursor.to_list()
        return [Meeting.model_validate(_serialize_record(record)) for record in records]

    async def _find_teams(self, query: dict[str, Any]) -> list[Team]:
        cursor = self._teams.find(query).sort("created_at", -1)
        records = await cursor.to_list()
        return [Team.model_validate(_serialize_record(record)) for record in records]

    def _watch(
        self,
        collection: Any,
        fetch: Callable[[], Awaitable[list[Any]]],
        callback: SnapshotCallback,
    ) -> Unsubscribe:
        # Change streams need a replica set; must be called from a running event loop.
        task = asyncio.get_running_loop().create_task(
            self._run_watch(collection, fetch, callback),
        )
        self._watch_tasks.add(task)
        task.add_done_callback(self._watch_tasks.discard)

        def unsubscribe() -> None:
            task.cancel()

        return unsubscribe

    async def _run_watch(
        self,
        collection: Any,
        fetch: Callable[[], Awaitable[list[Any]]],
        callback: SnapshotCallback,
    ) -> None:
        try:
            callback(await fetch())
            async with await collection.watch() as stream:
                async for _change in stream:
                    callback(await fetch())
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Change stream watcher for %s stopped", collection.name)


def _build_meeting(meeting_id: str, user_id: str, meeting: ProcessedMeeting) -> Meeting:
    now = datetime.now(UTC)
    return Meeting(
        id=meeting_id,
        title=meeting.title,
        date=now,
        summary=meeting.summary,
        action_items=[item.model_copy(deep=True) for item in meeting.action_items],
        raw_transcript=meeting.raw_transcript,
        team_id=meeting.team_id,
        created_by=user_id,
        metadata=meeting.metadata,
        created_at=now,
        updated_at=now,
    )


def _apply_assignment(
    item: ActionItem,
    *,
    assignee_id: str,
    assignee_name: str | None,
    assigned_by: str,
) -> ActionItem:
    if assignee_name is None and item.assignee_id == assignee_id:
        assignee_name = item.assignee_name
    return item.model_copy(
        update={
            "assignee_id": assignee_id,
            "assignee_name": assignee_name,
            "assigned_by": assigned_by,
            "assigned_at": datetime.now(UTC),
        },
    )


def _to_object_id(record_id: str) -> Any | None:
    from bson import ObjectId
    from bson.errors import InvalidId

    try:
        return ObjectId(record_id)
    except (InvalidId, TypeError):
        return None


def _serialize_record(record: Any) -> dict[str, Any] | None:
    if not record:
        return None
    payload = dict(record)
    payload["id"] = str(payload.pop("_id", ""))
    return payload


def create_meeting_data_store(settings: Settings) -> MeetingDataStore:
    return _create_meeting_data_store_cached(
        meeting_data_store=settings.meeting_data_store,
        mongodb_uri=settings.mongodb_uri,
        mongodb_db_name=settings.mongodb_db_name,
        mongodb_meetings_collection=settings.mongodb_meetings_collection,
        mongodb_teams_collection=settings.mongodb_teams_collection,
        mongodb_notifications_collection=settings.mongodb_notifications_collection,
        mongodb_connect_timeout_ms=settings.mongodb_connect_timeout_ms,
    )


@lru_cache
def _create_meeting_data_store_cached(
    *,
    meeting_data_store: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_meetings_collection: str,
    mongodb_teams_collection: str,
    mongodb_notifications_collection: str,
    mongodb_connect_timeout_ms: int,
) -> MeetingDataStore:
    if meeting_data_store == "mongodb":
        return MongoMeetingDataStore(
            uri=mongodb_uri,
            db_name=mongodb_db_name,
            meetings_collection_name=mongodb_meetings_collection,
            teams_collection_name=mongodb_teams_collection,
            notifications_collection_name=mongodb_notifications_collection,
            connect_timeout_ms=mongodb_connect_timeout_ms,
        )

    return InMemoryMeetingDataStore()


def clear_meeting_data_store_cache() -> None:
    _create_meeting_data_store_cached.cache_clear()
