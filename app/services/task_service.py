from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from app.core.errors import InvalidInputError
from app.schemas.meeting import ActionItem, ActionItemStatus, Meeting
from app.schemas.sync import TaskWithContext
from app.services.meeting_data_store import MeetingDataStore, Unsubscribe

logger = logging.getLogger(__name__)


class TaskService:
    """Derives per-user task lists from the action items stored on meetings."""

    def __init__(self, store: MeetingDataStore) -> None:
        self.store = store

    async def get_user_tasks(self, user_id: str) -> list[TaskWithContext]:
        meetings = await self.store.list_meetings_assigned_to(user_id)
        return _collect_user_tasks(meetings, user_id)

    async def update_task_status(
        self,
        meeting_id: str,
        task_id: str,
        status: ActionItemStatus,
    ) -> ActionItem:
        normalized_meeting_id = meeting_id.strip()
        normalized_task_id = task_id.strip()
        if not normalized_meeting_id or not normalized_task_id:
            raise InvalidInputError("meeting_id and task_id are required.")

        updated_task = await self.store.update_task_status(
            normalized_meeting_id,
            normalized_task_id,
            status,
        )
        logger.info(
            "Updated task=%s meeting=%s status=%s",
            normalized_task_id,
            normalized_meeting_id,
            updated_task.status,
        )
        return updated_task

    def subscribe_to_user_tasks(
        self,
        user_id: str,
        callback: Callable[[list[TaskWithContext]], None],
    ) -> Unsubscribe:
        return self.store.subscribe_to_assigned_meetings(
            user_id,
            lambda meetings: callback(_collect_user_tasks(meetings, user_id)),
        )


def _collect_user_tasks(meetings: Iterable[Meeting], user_id: str) -> list[TaskWithContext]:
    return [
        TaskWithContext.from_meeting(meeting, item)
        for meeting in meetings
        for item in meeting.action_items
        if item.assignee_id == user_id
    ]
