from __future__ import annotations

import re
from collections.abc import Iterable, Sequence

from app.schemas.meeting import TeamMember

_NON_NAME_CHARACTERS = re.compile(r"[^\w\s]")
_NON_WORD_CHARACTERS = re.compile(r"[^\w]")


def normalize_name(name: str) -> str:
    return _NON_NAME_CHARACTERS.sub("", name.lower().strip())


def match_team_member(candidate_name: str, roster: Sequence[TeamMember]) -> TeamMember | None:
    """Resolve a free-text name to a roster member.

    Rules are tried as separate passes in priority order (exact name,
    containment, first name, email local part) and the first member
    satisfying the earliest rule wins. Never raises.
    """
    if not candidate_name or not candidate_name.strip() or not roster:
        return None

    normalized_candidate = normalize_name(candidate_name)
    if not normalized_candidate:
        return None

    normalized_names = [normalize_name(member.display_name or "") for member in roster]

    for member, member_name in zip(roster, normalized_names):
        if member_name == normalized_candidate:
            return member

    for member, member_name in zip(roster, normalized_names):
        if not member_name:
            continue
        if normalized_candidate in member_name or member_name in normalized_candidate:
            return member

    candidate_first_name = normalized_candidate.split(" ")[0]
    if len(candidate_first_name) > 2:
        for member, member_name in zip(roster, normalized_names):
            if member_name.split(" ")[0] == candidate_first_name:
                return member

    for member in roster:
        email_prefix = _email_local_part(member.email)
        if not email_prefix:
            continue
        if email_prefix in normalized_candidate or normalized_candidate in email_prefix:
            return member

    return None


def match_team_members(
    names: Iterable[str],
    roster: Sequence[TeamMember],
) -> dict[str, TeamMember | None]:
    return {name: match_team_member(name, roster) for name in names}


def _email_local_part(email: str | None) -> str:
    if not email:
        return ""
    return _NON_WORD_CHARACTERS.sub("", email.split("@")[0].lower())
