from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence
from time import perf_counter
from typing import Protocol
from uuid import uuid4

from app.core.config import Settings, get_settings
from app.core.errors import InvalidInputError, MeetingAssistError, NotFoundError, UpstreamFailureError
from app.schemas.meeting import (
    ActionItem,
    AssigneeSuggestion,
    AssignmentSummary,
    Meeting,
    MeetingMetadata,
    ProcessedMeeting,
    ProcessingResult,
    SummarizerResult,
    TeamAwareProcessingOptions,
    TeamMember,
    TeamMemberStatus,
)
from app.schemas.notification import TaskAssignmentData, TaskAssignmentNotification
from app.services.gemini_summarizer_client import create_transcript_summarizer
from app.services.meeting_data_store import MeetingDataStore, create_meeting_data_store
from app.services.name_matcher import match_team_members
from app.services.speaker_extractor import extract_speaker_names
from app.services.task_assignment import auto_assign_action_items, suggest_assignees

logger = logging.getLogger(__name__)

_MAX_TITLE_LENGTH = 100
_MARKDOWN_HEADING_PREFIX = re.compile(r"^#+\s*")
_FILE_EXTENSION_SUFFIX = re.compile(r"\.[^/.]+$")


class TranscriptSummarizer(Protocol):
    async def summarize(
        self,
        transcript: str,
        roster: Sequence[TeamMember],
    ) -> SummarizerResult: ...


class TeamAwareMeetingProcessor:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        store: MeetingDataStore | None = None,
        summarizer: TranscriptSummarizer | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store or create_meeting_data_store(self.settings)
        self.summarizer = summarizer or create_transcript_summarizer(self.settings)

    async def process_transcript(
        self,
        transcript: str,
        options: TeamAwareProcessingOptions,
    ) -> ProcessingResult:
        if not transcript or not transcript.strip():
            raise InvalidInputError("Transcript content is required.")
        user_id = options.user_id.strip()
        if not user_id:
            raise InvalidInputError("user_id is required.")
        team_id = (options.team_id or "").strip() or None

        started_at = perf_counter()
        try:
            roster = await self._load_roster(team_id)
            summary = await self._summarize(transcript, roster)

            speaker_names = sorted(extract_speaker_names(transcript))
            speaker_matches = match_team_members(speaker_names, roster)

            action_items = [
                ActionItem(
                    id=f"action-{uuid4().hex[:12]}-{index}",
                    description=summarized_item.description,
                    owner=summarized_item.owner,
                    priority=summarized_item.priority,
                    deadline=summarized_item.deadline,
                )
                for index, summarized_item in enumerate(summary.action_items)
            ]
            partition = auto_assign_action_items(
                action_items,
                speaker_matches,
                roster,
                assigned_by=user_id,
            )

            meeting = Meeting(
                title=extract_meeting_title(
                    transcript,
                    options.file_name or self.settings.default_meeting_title,
                ),
                summary=summary.summary,
                action_items=[*partition.assigned, *partition.unassigned],
                raw_transcript=transcript,
                team_id=team_id,
                created_by=user_id,
            )
            meeting.metadata = MeetingMetadata(
                file_name=options.file_name or "transcript.txt",
                file_size=options.file_size if options.file_size is not None else len(transcript),
                processing_time_ms=int((perf_counter() - started_at) * 1000),
            )
            meeting.id = await self.store.save_meeting(
                user_id,
                ProcessedMeeting(
                    title=meeting.title,
                    summary=meeting.summary,
                    action_items=meeting.action_items,
                    raw_transcript=meeting.raw_transcript,
                    team_id=meeting.team_id,
                    metadata=meeting.metadata,
                ),
            )
        except MeetingAssistError as exc:
            raise type(exc)(f"Team-aware processing failed: {exc}") from exc
        except Exception as exc:
            raise UpstreamFailureError(f"Team-aware processing failed: {exc}") from exc

        await self._send_task_assignment_notifications(partition.assigned, meeting, user_id)
        logger.info(
            "Processed meeting id=%s team_id=%s tasks=%s auto_assigned=%s speakers=%s",
            meeting.id,
            team_id,
            len(meeting.action_items),
            len(partition.assigned),
            len(speaker_matches),
        )

        return ProcessingResult(
            meeting=meeting,
            unassigned_tasks=partition.unassigned,
            assignment_summary=AssignmentSummary(
                total_tasks=len(meeting.action_items),
                auto_assigned=len(partition.assigned),
                unassigned=len(partition.unassigned),
                speaker_matches=speaker_matches,
            ),
        )

    async def manually_assign_task(
        self,
        meeting_id: str,
        task_id: str,
        assignee_id: str,
        assigned_by: str,
    ) -> ActionItem:
        normalized_meeting_id = meeting_id.strip()
        normalized_task_id = task_id.strip()
        normalized_assignee_id = assignee_id.strip()
        normalized_assigned_by = assigned_by.strip()
        if not all(
            (normalized_meeting_id, normalized_task_id, normalized_assignee_id, normalized_assigned_by),
        ):
            raise InvalidInputError("meeting_id, task_id, assignee_id and assigned_by are required.")

        try:
            meeting = await self.store.get_meeting_by_id(normalized_meeting_id)
            if not meeting:
                raise NotFoundError(f"Meeting {normalized_meeting_id} not found.")
            task = next((item for item in meeting.action_items if item.id == normalized_task_id), None)
            if not task:
                raise NotFoundError(
                    f"Action item {normalized_task_id} not found in meeting {normalized_meeting_id}.",
                )

            assignee_name = None
            if meeting.team_id:
                assignee_name = await self._resolve_member_name(meeting.team_id, normalized_assignee_id)

            updated_task = await self.store.assign_task(
                normalized_meeting_id,
                normalized_task_id,
                normalized_assignee_id,
                normalized_assigned_by,
                assignee_name=assignee_name,
            )
        except MeetingAssistError as exc:
            raise type(exc)(f"Failed to manually assign task: {exc}") from exc
        except Exception as exc:
            raise UpstreamFailureError(f"Failed to manually assign task: {exc}") from exc

        logger.info(
            "Manually assigned task=%s meeting=%s assignee=%s by=%s",
            normalized_task_id,
            normalized_meeting_id,
            normalized_assignee_id,
            normalized_assigned_by,
        )
        if normalized_assignee_id != normalized_assigned_by:
            await self._notify_assignee(
                updated_task,
                meeting,
                title="Task Assigned",
            )
        return updated_task

    def get_suggestions_for_unassigned_tasks(
        self,
        unassigned_tasks: Sequence[ActionItem],
        roster: Sequence[TeamMember],
        speaker_matches: Mapping[str, TeamMember | None],
    ) -> list[AssigneeSuggestion]:
        return suggest_assignees(unassigned_tasks, roster, speaker_matches)

    async def load_active_roster(self, team_id: str | None) -> list[TeamMember]:
        return await self._load_roster((team_id or "").strip() or None)

    async def _load_roster(self, team_id: str | None) -> list[TeamMember]:
        if not team_id:
            return []
        members = await self.store.get_team_members(team_id)
        return [member for member in members if member.status == TeamMemberStatus.active]

    async def _summarize(self, transcript: str, roster: Sequence[TeamMember]) -> SummarizerResult:
        if not self.summarizer:
            raise UpstreamFailureError("GEMINI_API_KEY or GEMINI_MODEL is missing.")
        return await self.summarizer.summarize(transcript, roster)

    async def _resolve_member_name(self, team_id: str, user_id: str) -> str | None:
        try:
            members = await self.store.get_team_members(team_id)
        except NotFoundError:
            return None
        for member in members:
            if member.user_id == user_id:
                return member.display_name
        return None

    async def _send_task_assignment_notifications(
        self,
        assigned_tasks: Sequence[ActionItem],
        meeting: Meeting,
        assigned_by: str,
    ) -> None:
        for task in assigned_tasks:
            if not task.assignee_id or task.assignee_id == assigned_by:
                continue
            await self._notify_assignee(task, meeting, title="New Task Assigned")

    async def _notify_assignee(self, task: ActionItem, meeting: Meeting, *, title: str) -> None:
        notification = TaskAssignmentNotification(
            user_id=task.assignee_id or "",
            title=title,
            message=f'You have been assigned a task from "{meeting.title}"',
            data=TaskAssignmentData(
                task_id=task.id,
                task_description=task.description,
                meeting_id=meeting.id,
                meeting_title=meeting.title,
                team_id=meeting.team_id,
                team_name="Team Meeting" if meeting.team_id else None,
            ),
        )
        try:
            await self.store.create_notification(notification)
        except Exception:
            logger.exception("Failed to send notification for task %s", task.id)


def extract_meeting_title(transcript: str, fallback_name: str) -> str:
    lines = [line.strip() for line in transcript.split("\n") if line.strip()]
    if lines:
        first_line = lines[0]
        if first_line.startswith("#"):
            return _MARKDOWN_HEADING_PREFIX.sub("", first_line).strip()
        if len(first_line) <= _MAX_TITLE_LENGTH:
            return first_line
    return _FILE_EXTENSION_SUFFIX.sub("", fallback_name)
