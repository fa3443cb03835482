from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from app.schemas.meeting import ActionItem, Meeting, TeamMember
from app.schemas.notification import Notification


def _utc_now() -> datetime:
    return datetime.now(UTC)


class SyncEntityType(StrEnum):
    user_meetings = "meetings"
    team_meetings = "team-meetings"
    user_tasks = "tasks"
    user_teams = "teams"
    user_notifications = "notifications"


class UpdateType(StrEnum):
    meeting = "meeting"
    task = "task"
    team = "team"
    notification = "notification"


class UpdateAction(StrEnum):
    create = "create"
    update = "update"
    delete = "delete"


class Team(BaseModel):
    id: str = ""
    name: str
    description: str | None = None
    created_by: str
    members: list[TeamMember] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class TaskWithContext(ActionItem):
    meeting_id: str
    meeting_title: str
    meeting_date: datetime
    team_id: str | None = None
    created_at: datetime

    @classmethod
    def from_meeting(cls, meeting: Meeting, item: ActionItem) -> "TaskWithContext":
        return cls(
            **item.model_dump(),
            meeting_id=meeting.id,
            meeting_title=meeting.title,
            meeting_date=meeting.date,
            team_id=meeting.team_id,
            created_at=meeting.created_at,
        )


class QueuedUpdate(BaseModel):
    type: UpdateType
    action: UpdateAction
    payload: dict[str, Any] = Field(default_factory=dict)
    user_id: str
    timestamp: datetime = Field(default_factory=_utc_now)


class UserDataSnapshot(BaseModel):
    meetings: list[Meeting] = Field(default_factory=list)
    tasks: list[TaskWithContext] = Field(default_factory=list)
    teams: list[Team] = Field(default_factory=list)
    notifications: list[Notification] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=_utc_now)


class ConnectionStateRequest(BaseModel):
    is_online: bool


class ConnectionStateResponse(BaseModel):
    is_online: bool
    pending_updates: int
