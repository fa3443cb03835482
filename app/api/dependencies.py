from fastapi import Depends, Request

from app.core.config import Settings, get_settings
from app.services.meeting_data_store import MeetingDataStore, create_meeting_data_store
from app.services.sync_coordinator import SyncCoordinator
from app.services.task_service import TaskService
from app.services.team_aware_processor import TeamAwareMeetingProcessor


def get_meeting_store(settings: Settings = Depends(get_settings)) -> MeetingDataStore:
    return create_meeting_data_store(settings)


def get_team_aware_processor(
    settings: Settings = Depends(get_settings),
    store: MeetingDataStore = Depends(get_meeting_store),
) -> TeamAwareMeetingProcessor:
    return TeamAwareMeetingProcessor(settings, store=store)


def get_task_service(store: MeetingDataStore = Depends(get_meeting_store)) -> TaskService:
    return TaskService(store)


def get_sync_coordinator(
    request: Request,
    settings: Settings = Depends(get_settings),
    store: MeetingDataStore = Depends(get_meeting_store),
) -> SyncCoordinator:
    # One coordinator per application; its registry and queue outlive requests.
    coordinator = getattr(request.app.state, "sync_coordinator", None)
    if coordinator is None:
        coordinator = SyncCoordinator(settings, store=store)
        request.app.state.sync_coordinator = coordinator
    return coordinator
