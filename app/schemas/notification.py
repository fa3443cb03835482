from datetime import UTC, datetime
from typing import Annotated, Literal

from pydantic import BaseModel, Field, TypeAdapter


def _utc_now() -> datetime:
    return datetime.now(UTC)


class TaskAssignmentData(BaseModel):
    task_id: str
    task_description: str
    meeting_id: str
    meeting_title: str
    team_id: str | None = None
    team_name: str | None = None


class MeetingAssignmentData(BaseModel):
    meeting_id: str
    meeting_title: str
    team_id: str
    team_name: str | None = None


class TeamInvitationData(BaseModel):
    team_id: str
    team_name: str
    invited_by: str
    invited_by_name: str | None = None


class _NotificationBase(BaseModel):
    id: str = ""
    user_id: str
    title: str
    message: str
    read: bool = False
    created_at: datetime = Field(default_factory=_utc_now)


class TaskAssignmentNotification(_NotificationBase):
    type: Literal["task_assignment"] = "task_assignment"
    data: TaskAssignmentData


class MeetingAssignmentNotification(_NotificationBase):
    type: Literal["meeting_assignment"] = "meeting_assignment"
    data: MeetingAssignmentData


class TeamInvitationNotification(_NotificationBase):
    type: Literal["team_invitation"] = "team_invitation"
    data: TeamInvitationData


Notification = Annotated[
    TaskAssignmentNotification | MeetingAssignmentNotification | TeamInvitationNotification,
    Field(discriminator="type"),
]

NOTIFICATION_ADAPTER: TypeAdapter[Notification] = TypeAdapter(Notification)
