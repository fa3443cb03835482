import logging

from fastapi import APIRouter, Depends, status

from app.api.dependencies import get_task_service, get_team_aware_processor
from app.schemas.meeting import (
    ActionItem,
    ManualAssignmentRequest,
    ProcessTranscriptRequest,
    ProcessTranscriptResponse,
    TaskStatusUpdateRequest,
    TeamAwareProcessingOptions,
)
from app.services.task_service import TaskService
from app.services.team_aware_processor import TeamAwareMeetingProcessor

router = APIRouter(prefix="/meetings", tags=["meetings"])
logger = logging.getLogger(__name__)


@router.post(
    "/process",
    response_model=ProcessTranscriptResponse,
    status_code=status.HTTP_201_CREATED,
)
async def process_meeting_transcript(
    payload: ProcessTranscriptRequest,
    processor: TeamAwareMeetingProcessor = Depends(get_team_aware_processor),
) -> ProcessTranscriptResponse:
    logger.info(
        "Transcript received user_id=%s team_id=%s chars=%s",
        payload.user_id,
        payload.team_id,
        len(payload.transcript),
    )
    result = await processor.process_transcript(
        payload.transcript,
        TeamAwareProcessingOptions(
            user_id=payload.user_id,
            team_id=payload.team_id,
            file_name=payload.file_name,
            file_size=payload.file_size,
        ),
    )

    suggestions = []
    if result.unassigned_tasks:
        roster = await processor.load_active_roster(payload.team_id)
        suggestions = processor.get_suggestions_for_unassigned_tasks(
            result.unassigned_tasks,
            roster,
            result.assignment_summary.speaker_matches,
        )

    return ProcessTranscriptResponse(
        meeting=result.meeting,
        unassigned_tasks=result.unassigned_tasks,
        assignment_summary=result.assignment_summary,
        suggestions=suggestions,
    )


@router.post(
    "/{meeting_id}/action-items/{task_id}/assignment",
    response_model=ActionItem,
)
async def assign_action_item(
    meeting_id: str,
    task_id: str,
    payload: ManualAssignmentRequest,
    processor: TeamAwareMeetingProcessor = Depends(get_team_aware_processor),
) -> ActionItem:
    return await processor.manually_assign_task(
        meeting_id,
        task_id,
        payload.assignee_id,
        payload.assigned_by,
    )


@router.patch(
    "/{meeting_id}/action-items/{task_id}/status",
    response_model=ActionItem,
)
async def update_action_item_status(
    meeting_id: str,
    task_id: str,
    payload: TaskStatusUpdateRequest,
    task_service: TaskService = Depends(get_task_service),
) -> ActionItem:
    return await task_service.update_task_status(meeting_id, task_id, payload.status)
