from fastapi import APIRouter, Depends

from app.api.dependencies import get_sync_coordinator
from app.schemas.sync import ConnectionStateRequest, ConnectionStateResponse, UserDataSnapshot
from app.services.sync_coordinator import SyncCoordinator

router = APIRouter(prefix="/sync", tags=["sync"])


@router.get(
    "/users/{user_id}/snapshot",
    response_model=UserDataSnapshot,
)
async def get_user_data_snapshot(
    user_id: str,
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
) -> UserDataSnapshot:
    return await coordinator.sync_all_user_data(user_id)


@router.post(
    "/connection",
    response_model=ConnectionStateResponse,
)
async def update_connection_state(
    payload: ConnectionStateRequest,
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
) -> ConnectionStateResponse:
    await coordinator.handle_connection_state_change(payload.is_online)
    return ConnectionStateResponse(
        is_online=coordinator.get_connection_state(),
        pending_updates=len(coordinator.pending_updates()),
    )
