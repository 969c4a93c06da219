import re
from typing import Any

from errors import InvalidArgument, ValidationError

ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
VOTE_ID_RE = re.compile(r"^[a-fA-F0-9]{24}$")
PROPOSAL_ID_RE = re.compile(r"-?[0-9]+")
TITLE_MAX_LENGTH = 200
DESCRIPTION_MAX_LENGTH = 2000


def normalize_address(address: str) -> str:
    return address.strip().lower()


def parse_proposal_id(raw: Any) -> int:
    if isinstance(raw, bool) or raw is None:
        raise InvalidArgument("Proposal ID must be a valid number")
    if isinstance(raw, int):
        value = raw
    elif isinstance(raw, str) and PROPOSAL_ID_RE.fullmatch(raw.strip()):
        value = int(raw.strip())
    else:
        raise InvalidArgument("Proposal ID must be a valid number")
    if value < 0:
        raise InvalidArgument("Proposal ID must be a valid number")
    return value


def parse_voter_address(raw: Any) -> str:
    if not isinstance(raw, str) or not ADDRESS_RE.match(raw.strip()):
        raise InvalidArgument("Voter address must be a valid 0x-prefixed 40 hex digit address")
    return normalize_address(raw)


def parse_vote_id(raw: Any) -> str:
    if not isinstance(raw, str) or not VOTE_ID_RE.match(raw):
        raise InvalidArgument("Valid vote ID is required")
    return raw.lower()


def validate_title(title: Any) -> str:
    if not isinstance(title, str) or not title.strip():
        raise ValidationError("Title must be a non-empty string")
    if len(title) > TITLE_MAX_LENGTH:
        raise ValidationError(f"Title must be at most {TITLE_MAX_LENGTH} characters")
    return title


def validate_description(description: Any) -> str:
    if not isinstance(description, str) or not description.strip():
        raise ValidationError("Description must be a non-empty string")
    if len(description) > DESCRIPTION_MAX_LENGTH:
        raise ValidationError(f"Description must be at most {DESCRIPTION_MAX_LENGTH} characters")
    return description


def validate_deadline(deadline: Any) -> int:
    if deadline is None:
        return 0
    if isinstance(deadline, bool) or not isinstance(deadline, (int, float)) or deadline < 0:
        raise ValidationError("Deadline must be a non-negative number of epoch seconds")
    return int(deadline)


def parse_limit(raw: Any, default: int, maximum: int = 500) -> int:
    try:
        return max(1, min(maximum, int(raw)))
    except (TypeError, ValueError):
        return default
