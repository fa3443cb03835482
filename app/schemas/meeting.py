from datetime import UTC, date, datetime
from enum import StrEnum

from pydantic import BaseModel, Field


def _utc_now() -> datetime:
    return datetime.now(UTC)


class TeamMemberRole(StrEnum):
    admin = "admin"
    member = "member"


class TeamMemberStatus(StrEnum):
    active = "active"
    invited = "invited"
    inactive = "inactive"


class ActionItemPriority(StrEnum):
    high = "high"
    medium = "medium"
    low = "low"


class ActionItemStatus(StrEnum):
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"


class TeamMember(BaseModel):
    user_id: str
    email: str = ""
    display_name: str
    role: TeamMemberRole = TeamMemberRole.member
    status: TeamMemberStatus = TeamMemberStatus.active
    joined_at: datetime = Field(default_factory=_utc_now)


class ActionItem(BaseModel):
    id: str
    description: str
    owner: str | None = None
    assignee_id: str | None = None
    assignee_name: str | None = None
    priority: ActionItemPriority = ActionItemPriority.medium
    status: ActionItemStatus = ActionItemStatus.pending
    deadline: date | None = None
    assigned_by: str | None = None
    assigned_at: datetime | None = None


class MeetingMetadata(BaseModel):
    file_name: str
    file_size: int
    uploaded_at: datetime = Field(default_factory=_utc_now)
    processing_time_ms: int | None = None


class ProcessedMeeting(BaseModel):
    title: str
    summary: str
    action_items: list[ActionItem] = Field(default_factory=list)
    raw_transcript: str
    team_id: str | None = None
    metadata: MeetingMetadata


class Meeting(BaseModel):
    id: str = ""
    title: str
    date: datetime = Field(default_factory=_utc_now)
    summary: str
    action_items: list[ActionItem] = Field(default_factory=list)
    raw_transcript: str
    team_id: str | None = None
    created_by: str = ""
    metadata: MeetingMetadata | None = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class SummarizedActionItem(BaseModel):
    description: str
    owner: str | None = None
    deadline: date | None = None
    priority: ActionItemPriority = ActionItemPriority.medium


class SummarizerResult(BaseModel):
    summary: str
    action_items: list[SummarizedActionItem] = Field(default_factory=list)
    confidence: float | None = None


class TeamAwareProcessingOptions(BaseModel):
    user_id: str
    team_id: str | None = None
    file_name: str | None = None
    file_size: int | None = None


class AssignmentSummary(BaseModel):
    total_tasks: int
    auto_assigned: int
    unassigned: int
    speaker_matches: dict[str, TeamMember | None] = Field(default_factory=dict)


class ProcessingResult(BaseModel):
    meeting: Meeting
    unassigned_tasks: list[ActionItem] = Field(default_factory=list)
    assignment_summary: AssignmentSummary


class AssigneeSuggestion(BaseModel):
    task: ActionItem
    suggestions: list[TeamMember] = Field(default_factory=list)


class ProcessTranscriptRequest(BaseModel):
    transcript: str
    user_id: str
    team_id: str | None = None
    file_name: str | None = None
    file_size: int | None = None


class ProcessTranscriptResponse(ProcessingResult):
    suggestions: list[AssigneeSuggestion] = Field(default_factory=list)


class ManualAssignmentRequest(BaseModel):
    assignee_id: str
    assigned_by: str


class TaskStatusUpdateRequest(BaseModel):
    status: ActionItemStatus
