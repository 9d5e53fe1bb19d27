from __future__ import annotations

from enum import Enum

from app.access.errors import InvalidAccessLevelError


class AccessLevel(str, Enum):
    VIEW = "VIEW"
    STREAM = "STREAM"
    DOWNLOAD = "DOWNLOAD"
    EDIT = "EDIT"
    ADMIN = "ADMIN"

    @property
    def rank(self) -> int:
        return ACCESS_LEVEL_RANK[self]

    def covers(self, required: AccessLevel) -> bool:
        return self.rank >= required.rank

    @classmethod
    def parse(cls, value: str | AccessLevel) -> AccessLevel:
        if isinstance(value, AccessLevel):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError as exc:
            raise InvalidAccessLevelError(value) from exc


ACCESS_LEVEL_RANK: dict[AccessLevel, int] = {
    AccessLevel.VIEW: 1,
    AccessLevel.STREAM: 2,
    AccessLevel.DOWNLOAD: 3,
    AccessLevel.EDIT: 4,
    AccessLevel.ADMIN: 5,
}


def highest_level(levels: list[AccessLevel]) -> AccessLevel | None:
    if not levels:
        return None
    return max(levels, key=lambda level: level.rank)
