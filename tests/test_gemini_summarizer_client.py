import io
import json
from datetime import date
from urllib import error

import pytest

from app.core.config import Settings
from app.schemas.meeting import TeamMember, TeamMemberStatus
from app.services.gemini_summarizer_client import (
    GeminiSummarizerClient,
    GeminiSummarizerError,
    create_transcript_summarizer,
)


class _FakeResponse:
    def __init__(self, payload: dict[str, object]) -> None:
        self._body = json.dumps(payload).encode("utf-8")

    def __enter__(self) -> "_FakeResponse":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> bool:
        return False

    def read(self) -> bytes:
        return self._body


def _gemini_payload(text: str) -> dict[str, object]:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def _client() -> GeminiSummarizerClient:
    return GeminiSummarizerClient(
        api_key="fake-api-key",
        model="gemini-3-flash-preview",
        timeout_seconds=0.1,
    )


def test_summarize_retries_timeout_then_succeeds(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = {"count": 0}
    response_text = json.dumps(
        {
            "summary": "Release planning.",
            "actionItems": [
                {
                    "description": "Fix login",
                    "owner": " Sarah ",
                    "deadline": "2024-05-10",
                    "priority": "HIGH",
                },
                {"description": "Write notes", "owner": None, "deadline": None},
            ],
            "confidence": 0.95,
        },
    )

    def fake_urlopen(*args: object, **kwargs: object) -> _FakeResponse:
        calls["count"] += 1
        if calls["count"] < 3:
            raise TimeoutError("request timed out")
        return _FakeResponse(_gemini_payload(response_text))

    monkeypatch.setattr("app.services.gemini_summarizer_client.sleep", lambda _: None)
    monkeypatch.setattr("app.services.gemini_summarizer_client.request.urlopen", fake_urlopen)

    result = _client().summarize_sync("Sarah: I'll fix login.", [])

    assert calls["count"] == 3
    assert result.summary == "Release planning."
    assert result.confidence == 0.95
    first_item, second_item = result.action_items
    assert first_item.owner == "Sarah"
    assert first_item.priority == "high"
    assert first_item.deadline == date(2024, 5, 10)
    assert second_item.owner is None
    assert second_item.priority == "medium"
    assert second_item.deadline is None


def test_summarize_does_not_retry_client_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = {"count": 0}

    def fake_urlopen(*args: object, **kwargs: object) -> _FakeResponse:
        calls["count"] += 1
        raise error.HTTPError(
            "https://example.com",
            400,
            "Bad Request",
            hdrs=None,
            fp=io.BytesIO(b'{"error":"bad key"}'),
        )

    monkeypatch.setattr("app.services.gemini_summarizer_client.sleep", lambda _: None)
    monkeypatch.setattr("app.services.gemini_summarizer_client.request.urlopen", fake_urlopen)

    with pytest.raises(GeminiSummarizerError, match="HTTP 400"):
        _client().summarize_sync("Sarah: hello", [])
    assert calls["count"] == 1


def test_parse_summary_strips_code_fences_and_defaults_confidence() -> None:
    raw_text = '```json\n{"summary": "Short sync.", "actionItems": []}\n```'

    result = _client()._parse_summary(raw_text)

    assert result.summary == "Short sync."
    assert result.action_items == []
    assert result.confidence == 0.8


@pytest.mark.parametrize(
    "raw_text",
    [
        "not json at all",
        '{"actionItems": []}',
        '{"summary": "ok", "actionItems": "none"}',
        '{"summary": "ok", "actionItems": [{"owner": "Sarah"}]}',
        '{"summary": "ok", "actionItems": [{"description": "x", "priority": "urgent"}]}',
    ],
)
def test_parse_summary_rejects_malformed_responses(raw_text: str) -> None:
    with pytest.raises(GeminiSummarizerError):
        _client()._parse_summary(raw_text)


def test_build_prompt_lists_only_active_members() -> None:
    roster = [
        TeamMember(user_id="u1", display_name="Sarah Lee", email="sarah@example.com"),
        TeamMember(
            user_id="u2",
            display_name="Dana West",
            email="dana@example.com",
            status=TeamMemberStatus.invited,
        ),
    ]

    prompt = _client()._build_prompt("Sarah: hi", roster)

    assert "- Sarah Lee (sarah@example.com)" in prompt
    assert "Dana West" not in prompt
    assert prompt.endswith("Meeting Transcript:\nSarah: hi")


def test_create_transcript_summarizer_requires_api_key() -> None:
    assert create_transcript_summarizer(Settings(gemini_api_key="")) is None

    client = create_transcript_summarizer(Settings(gemini_api_key="key", gemini_max_attempts=5))
    assert client is not None
    assert client.max_attempts == 5
