from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime

from app.schemas.meeting import ActionItem, AssigneeSuggestion, TeamMember
from app.services.name_matcher import match_team_member

_CAPITALIZED_WORD_PATTERN = re.compile(r"[A-Z][a-z]+")
_NON_WORD_CHARACTERS = re.compile(r"[^\w]")


@dataclass
class AssignmentPartition:
    assigned: list[ActionItem] = field(default_factory=list)
    unassigned: list[ActionItem] = field(default_factory=list)


def auto_assign_action_items(
    items: Sequence[ActionItem],
    speaker_matches: Mapping[str, TeamMember | None],
    roster: Sequence[TeamMember],
    assigned_by: str,
) -> AssignmentPartition:
    """Pick an owner for each action item with an ordered strategy chain.

    Strategies, first hit wins: the AI-suggested owner, names mentioned in
    the description, then speakers whose first name appears in the
    description. Items keep their input order inside each partition.
    """
    partition = AssignmentPartition()
    roster_user_ids = {member.user_id for member in roster}
    for item in items:
        member = (
            _match_suggested_owner(item, roster)
            or _match_description_mentions(item, roster)
            or _match_speaker_context(item, speaker_matches, roster_user_ids)
        )
        if not member:
            partition.unassigned.append(item)
            continue
        partition.assigned.append(
            item.model_copy(
                update={
                    "assignee_id": member.user_id,
                    "assignee_name": member.display_name,
                    "assigned_by": assigned_by,
                    "assigned_at": datetime.now(UTC),
                },
            ),
        )
    return partition


def suggest_assignees(
    unassigned_items: Sequence[ActionItem],
    roster: Sequence[TeamMember],
    speaker_matches: Mapping[str, TeamMember | None],
) -> list[AssigneeSuggestion]:
    candidates: list[TeamMember] = []
    seen_user_ids: set[str] = set()
    for member in [*speaker_matches.values(), *roster]:
        if not member or member.user_id in seen_user_ids:
            continue
        seen_user_ids.add(member.user_id)
        candidates.append(member)
    return [
        AssigneeSuggestion(task=item, suggestions=list(candidates))
        for item in unassigned_items
    ]


def extract_names_from_text(text: str) -> list[str]:
    names: list[str] = []
    words = text.split()
    index = 0
    while index < len(words):
        word = _NON_WORD_CHARACTERS.sub("", words[index])
        if len(word) > 2 and _CAPITALIZED_WORD_PATTERN.fullmatch(word):
            if index + 1 < len(words):
                next_word = _NON_WORD_CHARACTERS.sub("", words[index + 1])
                if _CAPITALIZED_WORD_PATTERN.fullmatch(next_word):
                    names.append(f"{word} {next_word}")
                    index += 2
                    continue
            names.append(word)
        index += 1
    return names


def _match_suggested_owner(item: ActionItem, roster: Sequence[TeamMember]) -> TeamMember | None:
    if not item.owner:
        return None
    return match_team_member(item.owner, roster)


def _match_description_mentions(item: ActionItem, roster: Sequence[TeamMember]) -> TeamMember | None:
    if not item.description:
        return None
    for name in extract_names_from_text(item.description):
        member = match_team_member(name, roster)
        if member:
            return member
    return None


def _match_speaker_context(
    item: ActionItem,
    speaker_matches: Mapping[str, TeamMember | None],
    roster_user_ids: set[str],
) -> TeamMember | None:
    description = (item.description or "").lower()
    if not description:
        return None
    for speaker_name, member in speaker_matches.items():
        # Members outside the current roster must never be assigned.
        if not member or member.user_id not in roster_user_ids:
            continue
        first_name = speaker_name.lower().split(" ")[0]
        if first_name and first_name in description:
            return member
    return None
