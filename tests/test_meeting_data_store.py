import asyncio

import pytest

from app.core.config import Settings
from app.core.errors import InvalidInputError, NotFoundError
from app.schemas.meeting import ActionItem, MeetingMetadata, ProcessedMeeting
from app.services.meeting_data_store import (
    InMemoryMeetingDataStore,
    clear_meeting_data_store_cache,
    create_meeting_data_store,
)
from app.services.task_service import TaskService


@pytest.fixture(autouse=True)
def reset_store_cache() -> None:
    clear_meeting_data_store_cache()
    yield
    clear_meeting_data_store_cache()


def _processed_meeting(*items: ActionItem, team_id: str | None = None) -> ProcessedMeeting:
    return ProcessedMeeting(
        title="Planning",
        summary="We planned.",
        action_items=list(items),
        raw_transcript="Sarah: plan",
        team_id=team_id,
        metadata=MeetingMetadata(file_name="planning.txt", file_size=11),
    )


def test_create_meeting_data_store_uses_memory_backend() -> None:
    settings = Settings(meeting_data_store=" Memory ")

    store = create_meeting_data_store(settings)

    assert isinstance(store, InMemoryMeetingDataStore)
    assert create_meeting_data_store(settings) is store


def test_save_and_query_meetings() -> None:
    store = InMemoryMeetingDataStore()
    meeting_id = asyncio.run(
        store.save_meeting(
            "u1",
            _processed_meeting(ActionItem(id="a1", description="Plan"), team_id="team-1"),
        ),
    )

    meeting = asyncio.run(store.get_meeting_by_id(meeting_id))

    assert meeting is not None
    assert meeting.created_by == "u1"
    assert meeting.metadata.file_name == "planning.txt"
    assert [item.id for item in meeting.action_items] == ["a1"]
    assert [m.id for m in asyncio.run(store.get_user_meetings("u1"))] == [meeting_id]
    assert [m.id for m in asyncio.run(store.get_team_meetings("team-1"))] == [meeting_id]
    assert asyncio.run(store.get_user_meetings("u2")) == []
    assert asyncio.run(store.get_meeting_by_id("unknown")) is None


def test_returned_meetings_are_copies() -> None:
    store = InMemoryMeetingDataStore()
    processed = _processed_meeting(ActionItem(id="a1", description="Plan"))
    meeting_id = asyncio.run(store.save_meeting("u1", processed))

    meeting = asyncio.run(store.get_meeting_by_id(meeting_id))
    meeting.action_items[0].assignee_id = "intruder"

    stored = asyncio.run(store.get_meeting_by_id(meeting_id))
    assert stored.action_items[0].assignee_id is None


def test_assign_task_updates_single_item() -> None:
    store = InMemoryMeetingDataStore()
    meeting_id = asyncio.run(
        store.save_meeting(
            "u1",
            _processed_meeting(
                ActionItem(id="a1", description="Plan"),
                ActionItem(id="a2", description="Ship"),
            ),
        ),
    )

    updated = asyncio.run(store.assign_task(meeting_id, "a2", "u2", "u1", assignee_name="Mike Chen"))

    assert updated.assignee_id == "u2"
    assert updated.assignee_name == "Mike Chen"
    assert updated.assigned_by == "u1"
    meeting = asyncio.run(store.get_meeting_by_id(meeting_id))
    assert [item.assignee_id for item in meeting.action_items] == [None, "u2"]
    assert [m.id for m in asyncio.run(store.list_meetings_assigned_to("u2"))] == [meeting_id]


def test_assign_task_reports_missing_records() -> None:
    store = InMemoryMeetingDataStore()
    meeting_id = asyncio.run(store.save_meeting("u1", _processed_meeting()))

    with pytest.raises(NotFoundError):
        asyncio.run(store.assign_task("unknown", "a1", "u2", "u1"))
    with pytest.raises(NotFoundError):
        asyncio.run(store.assign_task(meeting_id, "a1", "u2", "u1"))


def test_get_team_members_requires_existing_team() -> None:
    with pytest.raises(NotFoundError):
        asyncio.run(InMemoryMeetingDataStore().get_team_members("missing"))


def test_subscriptions_receive_initial_and_changed_snapshots() -> None:
    store = InMemoryMeetingDataStore()
    received: list[int] = []

    unsubscribe = store.subscribe_to_user_meetings("u1", lambda meetings: received.append(len(meetings)))
    asyncio.run(store.save_meeting("u1", _processed_meeting()))
    unsubscribe()
    asyncio.run(store.save_meeting("u1", _processed_meeting()))

    assert received == [0, 1]


def test_task_service_collects_assigned_items_with_context() -> None:
    store = InMemoryMeetingDataStore()
    meeting_id = asyncio.run(
        store.save_meeting(
            "u1",
            _processed_meeting(
                ActionItem(id="a1", description="Plan", assignee_id="u2"),
                ActionItem(id="a2", description="Ship", assignee_id="u3"),
            ),
        ),
    )

    tasks = asyncio.run(TaskService(store).get_user_tasks("u2"))

    assert [task.id for task in tasks] == ["a1"]
    assert tasks[0].meeting_id == meeting_id
    assert tasks[0].meeting_title == "Planning"


def test_update_task_status_notifies_task_subscribers() -> None:
    store = InMemoryMeetingDataStore()
    meeting_id = asyncio.run(
        store.save_meeting(
            "u1",
            _processed_meeting(ActionItem(id="a1", description="Plan", assignee_id="u2")),
        ),
    )
    received: list[list[str]] = []
    TaskService(store).subscribe_to_user_tasks(
        "u2",
        lambda tasks: received.append([task.status for task in tasks]),
    )

    updated = asyncio.run(TaskService(store).update_task_status(meeting_id, "a1", "in_progress"))

    assert updated.status == "in_progress"
    assert received[0] == ["pending"]
    assert received[-1] == ["in_progress"]
    stored = asyncio.run(store.get_meeting_by_id(meeting_id))
    assert stored.action_items[0].status == "in_progress"


def test_update_task_status_reports_missing_records() -> None:
    store = InMemoryMeetingDataStore()
    meeting_id = asyncio.run(store.save_meeting("u1", _processed_meeting()))

    with pytest.raises(NotFoundError):
        asyncio.run(store.update_task_status("unknown", "a1", "completed"))
    with pytest.raises(NotFoundError):
        asyncio.run(store.update_task_status(meeting_id, "a1", "completed"))
    with pytest.raises(InvalidInputError):
        asyncio.run(TaskService(store).update_task_status(meeting_id, " ", "completed"))
