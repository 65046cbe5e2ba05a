from __future__ import annotations

from dataclasses import dataclass

DEFAULT_STUDENT_NAME = "Student"


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated identity extracted from a validated JWT.

    user_id: subject from JWT; the student id for progress records
    name: display name passed on to certificate issuance
    roles: platform roles
    """

    user_id: str
    roles: frozenset[str]
    name: str = DEFAULT_STUDENT_NAME

    def has_role(self, role: str) -> bool:
        return role in self.roles
