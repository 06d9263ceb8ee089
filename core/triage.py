from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from core.active import ServiceKind
from core.utils import caps_first, status_texts

BLOCKED_STATES = ('importBlocked', 'importFailed', 'importPending')

# Checked in order, first hit names the reason
DELETE_MESSAGES = (
    'missing',
    'unsupported',
    'not a custom format upgrade',
    'title mismatch',
    'sample',
    'might need to be extracted',
)


class TriageOutcome(enum.Enum):
    IMPORTED = 'imported'
    DELETED = 'deleted'
    DEFERRED = 'deferred'
    UNHANDLED = 'unhandled'


@dataclass(frozen=True)
class TriageDecision:
    outcome: TriageOutcome
    reason: str = ''
    messages: List[str] = field(default_factory=list)

    @property
    def research(self) -> bool:
        return self.outcome is TriageOutcome.DELETED and 'upgrade' not in self.reason.lower()


def is_blocked(entry: Dict[str, Any]) -> bool:
    return entry.get('trackedDownloadState') in BLOCKED_STATES


def dedup_key(entry: Dict[str, Any]) -> str:
    for field_name in ('downloadId', 'title'):
        value = entry.get(field_name)
        if isinstance(value, str) and value.strip():
            return value.strip().lower()
    return f'missing-{entry.get("id")}'


def status_messages(entry: Dict[str, Any]) -> List[str]:
    out: List[str] = []
    for msg in entry.get('statusMessages') or []:
        if not isinstance(msg, dict):
            continue
        messages = msg.get('messages')
        if isinstance(messages, list):
            out.extend(str(m) for m in messages if m)
        elif messages:
            out.append(str(messages))
        if msg.get('message'):
            out.append(str(msg['message']))
    if entry.get('errorMessage'):
        out.append(str(entry['errorMessage']))
    if not out:
        out = [str(m.get('title')) for m in entry.get('statusMessages') or [] if isinstance(m, dict) and m.get('title')]
    return out


def message_check(texts: Sequence[str], candidates: Sequence[str]) -> str:
    lowered = [t.lower() for t in texts]
    for candidate in candidates:
        needle = candidate.lower()
        if any(needle in t for t in lowered):
            return f'{caps_first(candidate)}.'
    return ''


def id_conflict_message(kind: ServiceKind) -> str:
    return f'matched to {kind.content_name} by ID'


def classify(entry: Dict[str, Any], kind: ServiceKind) -> TriageDecision:
    texts = status_texts(entry)
    messages = status_messages(entry)
    id_conflict = message_check(messages, [id_conflict_message(kind)])

    if id_conflict and len(messages) < 2:
        return TriageDecision(TriageOutcome.IMPORTED, 'ID conflict.', messages)

    delete_reason = message_check(messages, DELETE_MESSAGES)
    if delete_reason:
        return TriageDecision(TriageOutcome.DELETED, delete_reason, messages)

    if id_conflict:
        return TriageDecision(TriageOutcome.DEFERRED, 'ID conflict with other errors.', messages)
    return TriageDecision(TriageOutcome.UNHANDLED, '; '.join(texts), messages)


def blocked_entries(queue: Optional[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    return [e for e in (queue or []) if isinstance(e, dict) and is_blocked(e)]
