import asyncio
import json
import logging
import re
from collections.abc import Mapping, Sequence
from datetime import date, datetime
from http.client import RemoteDisconnected
from time import sleep
from typing import Any
from urllib import error, parse, request

from app.core.config import Settings
from app.core.errors import UpstreamFailureError
from app.schemas.meeting import (
    ActionItemPriority,
    SummarizedActionItem,
    SummarizerResult,
    TeamMember,
    TeamMemberStatus,
)

logger = logging.getLogger(__name__)

_DEFAULT_CONFIDENCE = 0.8
_CODE_FENCE_PREFIX = re.compile(r"^```(?:json)?\s*")
_CODE_FENCE_SUFFIX = re.compile(r"\s*```$")


class GeminiSummarizerError(UpstreamFailureError):
    pass


class GeminiSummarizerClient:
    def __init__(
        self,
        api_key: str,
        model: str,
        timeout_seconds: float = 20.0,
        max_attempts: int = 3,
        api_base_url: str = "https://generativelanguage.googleapis.com/v1beta",
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max_attempts
        self.api_base_url = api_base_url.rstrip("/")

    async def summarize(
        self,
        transcript: str,
        roster: Sequence[TeamMember],
    ) -> SummarizerResult:
        return await asyncio.to_thread(self.summarize_sync, transcript, roster)

    def summarize_sync(
        self,
        transcript: str,
        roster: Sequence[TeamMember],
    ) -> SummarizerResult:
        if not transcript or not transcript.strip():
            raise GeminiSummarizerError("Transcript content is required.")

        prompt = self._build_prompt(transcript, roster)
        response_payload = self._generate(prompt)
        output_text = self._extract_text_response(response_payload)
        return self._parse_summary(output_text)

    def _generate(self, prompt: str) -> dict[str, Any]:
        query = parse.urlencode({"key": self.api_key})
        endpoint = f"{self.api_base_url}/models/{self.model}:generateContent?{query}"
        payload = {
            "system_instruction": {
                "parts": [
                    {
                        "text": (
                            "You are a meeting analyst. Summarize the meeting and extract "
                            "actionable follow-ups. Reply with valid JSON only."
                        ),
                    },
                ],
            },
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": 0.2,
                "responseMimeType": "application/json",
            },
        }
        req = request.Request(
            endpoint,
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        response_body: bytes | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                with request.urlopen(req, timeout=self.timeout_seconds) as response:
                    response_body = response.read()
                break
            except TimeoutError as exc:
                if attempt >= self.max_attempts:
                    raise GeminiSummarizerError("Gemini API request timed out.") from exc
            except RemoteDisconnected as exc:
                if attempt >= self.max_attempts:
                    raise GeminiSummarizerError(
                        "Gemini API connection was closed before sending a response.",
                    ) from exc
            except error.HTTPError as exc:
                body = exc.read().decode("utf-8", errors="ignore")
                is_retryable_status = exc.code in {429, 500, 502, 503, 504}
                if not is_retryable_status or attempt >= self.max_attempts:
                    raise GeminiSummarizerError(
                        f"Gemini API HTTP {exc.code}: {body or 'empty response body'}",
                    ) from exc
            except error.URLError as exc:
                if attempt >= self.max_attempts:
                    raise GeminiSummarizerError(
                        f"Gemini API connection error: {exc.reason}",
                    ) from exc

            logger.warning("Gemini request attempt %s/%s failed; retrying", attempt, self.max_attempts)
            sleep(0.5 * attempt)

        if response_body is None:
            raise GeminiSummarizerError("Gemini API request failed after multiple attempts.")

        try:
            parsed_body = json.loads(response_body.decode("utf-8"))
        except json.JSONDecodeError as exc:
            raise GeminiSummarizerError("Gemini API returned invalid JSON.") from exc

        if not isinstance(parsed_body, dict):
            raise GeminiSummarizerError("Gemini API response is not a JSON object.")
        return parsed_body

    def _extract_text_response(self, payload: Mapping[str, Any]) -> str:
        candidates = payload.get("candidates")
        if not isinstance(candidates, list) or not candidates:
            raise GeminiSummarizerError("Gemini API response missing candidates.")

        first_candidate = candidates[0]
        if not isinstance(first_candidate, Mapping):
            raise GeminiSummarizerError("Gemini API response candidate is invalid.")

        content = first_candidate.get("content")
        if not isinstance(content, Mapping):
            raise GeminiSummarizerError("Gemini API response missing content.")

        parts = content.get("parts")
        if not isinstance(parts, list):
            raise GeminiSummarizerError("Gemini API response missing content parts.")

        chunks: list[str] = []
        for part in parts:
            if not isinstance(part, Mapping):
                continue
            text = part.get("text")
            if isinstance(text, str) and text.strip():
                chunks.append(text.strip())

        if not chunks:
            raise GeminiSummarizerError("Gemini API response did not include text output.")
        return "\n".join(chunks)

    def _parse_summary(self, raw_text: str) -> SummarizerResult:
        cleaned_text = _CODE_FENCE_SUFFIX.sub("", _CODE_FENCE_PREFIX.sub("", raw_text.strip()))
        try:
            parsed = json.loads(cleaned_text)
        except json.JSONDecodeError as exc:
            raise GeminiSummarizerError(
                f"Failed to parse AI response as JSON: {exc.msg}. Response: {raw_text[:200]}...",
            ) from exc

        if not isinstance(parsed, dict):
            raise GeminiSummarizerError("Invalid response: expected a JSON object.")

        summary = parsed.get("summary")
        if not isinstance(summary, str) or not summary.strip():
            raise GeminiSummarizerError("Invalid response: summary is required and must be a string.")

        raw_items = parsed.get("actionItems")
        if not isinstance(raw_items, list):
            raise GeminiSummarizerError("Invalid response: actionItems must be an array.")

        action_items = [
            self._parse_action_item(raw_item, index)
            for index, raw_item in enumerate(raw_items)
        ]
        confidence = parsed.get("confidence")
        if isinstance(confidence, bool) or not isinstance(confidence, int | float) or not confidence:
            confidence = _DEFAULT_CONFIDENCE
        return SummarizerResult(
            summary=summary.strip(),
            action_items=action_items,
            confidence=float(confidence),
        )

    def _parse_action_item(self, raw_item: Any, index: int) -> SummarizedActionItem:
        if not isinstance(raw_item, Mapping):
            raise GeminiSummarizerError(f"Invalid action item at index {index}: expected an object.")

        description = raw_item.get("description")
        if not isinstance(description, str) or not description.strip():
            raise GeminiSummarizerError(f"Invalid action item at index {index}: description is required.")

        raw_priority = raw_item.get("priority")
        priority = raw_priority.strip().lower() if isinstance(raw_priority, str) else ""
        if priority and priority not in {choice.value for choice in ActionItemPriority}:
            raise GeminiSummarizerError(
                f"Invalid action item at index {index}: priority must be high, medium, or low.",
            )

        raw_owner = raw_item.get("owner")
        owner = raw_owner.strip() if isinstance(raw_owner, str) else ""
        return SummarizedActionItem(
            description=description.strip(),
            owner=owner or None,
            deadline=_parse_deadline(raw_item.get("deadline")),
            priority=priority or ActionItemPriority.medium,
        )

    def _build_prompt(self, transcript: str, roster: Sequence[TeamMember]) -> str:
        active_members = [member for member in roster if member.status == TeamMemberStatus.active]
        team_context = ""
        owner_guideline = ""
        if active_members:
            member_lines = "\n".join(
                f"- {member.display_name} ({member.email})" for member in active_members
            )
            team_context = (
                "\nTeam Members Context:\n"
                "The following team members participated in this meeting. When assigning action "
                "items, try to match speaker names to these team members:\n"
                f"{member_lines}\n"
                "When suggesting owners for action items, prefer using the exact display names "
                "from the team members list above.\n"
            )
            owner_guideline = "- When suggesting owners, try to match speaker names to the team members listed above\n"

        return (
            "Analyze this meeting transcript and provide a JSON response with:\n"
            "1. A comprehensive summary (2-3 paragraphs)\n"
            "2. Action items with suggested owners and deadlines\n"
            "3. Priority levels for each action item\n"
            f"{team_context}\n"
            "Format your response as valid JSON with this exact structure:\n"
            "{\n"
            '  "summary": "Comprehensive summary of the meeting in 2-3 paragraphs",\n'
            '  "actionItems": [\n'
            "    {\n"
            '      "description": "Clear description of the action item",\n'
            '      "owner": "Suggested person responsible (if mentioned in transcript)",\n'
            '      "deadline": "YYYY-MM-DD format if deadline mentioned, otherwise null",\n'
            '      "priority": "high|medium|low"\n'
            "    }\n"
            "  ]\n"
            "}\n\n"
            "Important guidelines:\n"
            "- Extract only actionable items that require follow-up\n"
            "- Infer priority based on urgency and importance mentioned in the transcript\n"
            '- Use "high" for urgent/critical items, "medium" for important items, '
            '"low" for nice-to-have items\n'
            "- If no specific owner is mentioned, leave the owner field as null\n"
            "- If no deadline is mentioned, leave the deadline field as null\n"
            f"{owner_guideline}"
            "- Ensure the response is valid JSON\n\n"
            f"Meeting Transcript:\n{transcript.strip()}"
        )


def _parse_deadline(value: Any) -> date | None:
    if not isinstance(value, str) or not value.strip():
        return None
    raw_value = value.strip()
    try:
        return date.fromisoformat(raw_value[:10])
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(raw_value).date()
    except ValueError:
        return None


def create_transcript_summarizer(settings: Settings) -> GeminiSummarizerClient | None:
    api_key = settings.gemini_api_key.strip()
    model = settings.gemini_model.strip()
    if not api_key or not model:
        return None
    return GeminiSummarizerClient(
        api_key=api_key,
        model=model,
        timeout_seconds=settings.gemini_api_timeout_seconds,
        max_attempts=settings.gemini_max_attempts,
    )
