"""
Editable rule tables for protected paths and command rewrite rules.

Each table keeps its confirmed rows followed by exactly one draft row, the
"add new" row the operator types into. Only confirmed rows are exported back
to the backend config.
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class RuleKind(str, Enum):
    PATH = "path"
    COMMAND = "command"


class RowState(str, Enum):
    DRAFT = "draft"
    CONFIRMED = "confirmed"


# Fields an operator may edit, per kind. The first one is required.
RULE_FIELDS: Dict[RuleKind, Tuple[str, ...]] = {
    RuleKind.PATH: ("path",),
    RuleKind.COMMAND: ("original", "replacement"),
}

COMMAND_SEPARATOR = ">"


def parse_command_rule(entry: str) -> Tuple[str, str]:
    """Split "original > replacement" on the first separator."""
    original, _, replacement = entry.partition(COMMAND_SEPARATOR)
    return original.strip(), replacement.strip()


def format_command_rule(original: str, replacement: str) -> str:
    """Encode a command rule; an empty replacement renders as "original >"."""
    original = original.strip()
    replacement = replacement.strip()
    if not replacement:
        return f"{original} {COMMAND_SEPARATOR}"
    return f"{original} {COMMAND_SEPARATOR} {replacement}"


@dataclass(eq=False)
class RuleRow:
    """One rule in a table, either a path or an original/replacement pair."""
    kind: RuleKind
    state: RowState = RowState.DRAFT
    path: str = ""
    original: str = ""
    replacement: str = ""
    ordinal: int = 0
    error: Optional[str] = None
    key: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    @property
    def is_draft(self) -> bool:
        return self.state == RowState.DRAFT

    @property
    def primary_field(self) -> str:
        return RULE_FIELDS[self.kind][0]

    def primary_value(self) -> str:
        return getattr(self, self.primary_field).strip()

    def encode(self) -> str:
        if self.kind == RuleKind.PATH:
            return self.path.strip()
        return format_command_rule(self.original, self.replacement)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "key": self.key,
            "kind": self.kind.value,
            "state": self.state.value,
            "ordinal": self.ordinal,
            "error": self.error,
        }
        for name in RULE_FIELDS[self.kind]:
            data[name] = getattr(self, name)
        return data


class RuleTable:
    """Ordered rows of a single rule kind with one trailing draft row."""

    def __init__(self, kind: RuleKind):
        self.kind = kind
        self._rows: List[RuleRow] = []

    @property
    def rows(self) -> List[RuleRow]:
        return list(self._rows)

    @property
    def draft(self) -> Optional[RuleRow]:
        for row in self._rows:
            if row.is_draft:
                return row
        return None

    def __len__(self) -> int:
        return len(self._rows)

    def find(self, key: str) -> Optional[RuleRow]:
        for row in self._rows:
            if row.key == key:
                return row
        return None

    def _build_row(self, entry: str) -> Optional[RuleRow]:
        entry = entry.strip()
        if not entry:
            return None
        if self.kind == RuleKind.PATH:
            return RuleRow(kind=self.kind, state=RowState.CONFIRMED, path=entry)
        original, replacement = parse_command_rule(entry)
        if not original:
            return None
        return RuleRow(
            kind=self.kind,
            state=RowState.CONFIRMED,
            original=original,
            replacement=replacement,
        )

    def _ensure_draft(self) -> None:
        if self.draft is None:
            self._rows.append(RuleRow(kind=self.kind))

    def _renumber(self) -> None:
        for index, row in enumerate(self._rows, start=1):
            row.ordinal = index

    def populate(self, entries: List[str]) -> None:
        """Replace all rows with confirmed rows built from backend entries."""
        self._rows = []
        for entry in entries or []:
            row = self._build_row(entry)
            if row is not None:
                self._rows.append(row)
        self._ensure_draft()
        self._renumber()

    def edit(self, row: RuleRow, **fields: str) -> bool:
        """Update fields of the draft row. Confirmed rows are read-only."""
        if row not in self._rows or not row.is_draft:
            return False
        allowed = RULE_FIELDS[self.kind]
        if any(name not in allowed for name in fields):
            return False
        for name, value in fields.items():
            setattr(row, name, value)
        row.error = None
        return True

    def confirm(self, row: RuleRow) -> bool:
        """
        Commit the draft row.

        A draft whose required field is blank stays a draft and gets its
        error flag set instead.
        """
        if row not in self._rows or not row.is_draft:
            return False

        if not row.primary_value():
            row.error = row.primary_field
            return False

        for name in RULE_FIELDS[self.kind]:
            setattr(row, name, getattr(row, name).strip())
        row.state = RowState.CONFIRMED
        row.error = None

        self._ensure_draft()
        self._renumber()
        return True

    def remove(self, row: RuleRow) -> bool:
        """Delete a confirmed row. Draft rows and unknown rows are ignored."""
        if row not in self._rows or row.is_draft:
            return False
        self._rows.remove(row)
        self._ensure_draft()
        self._renumber()
        return True

    def export(self) -> List[str]:
        """Backend string array for the confirmed rows, in table order."""
        return [
            row.encode()
            for row in self._rows
            if not row.is_draft and row.primary_value()
        ]

    def snapshot(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "rows": [row.to_dict() for row in self._rows],
        }
