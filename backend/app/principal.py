"""Principal abstraction for callers authenticated by the upstream gateway."""

from __future__ import annotations

from dataclasses import dataclass

from app.core.enums import RoleName
from app.core.exceptions import ForbiddenException


@dataclass(frozen=True)
class ActorPrincipal:
    """Actor id and role as supplied by the identity collaborator."""

    actor_id: str
    role: RoleName

    @property
    def id(self) -> str:
        return self.actor_id

    @property
    def is_admin(self) -> bool:
        return self.role == RoleName.ADMIN

    @property
    def is_tutor(self) -> bool:
        return self.role == RoleName.TUTOR

    @property
    def is_student(self) -> bool:
        return self.role == RoleName.STUDENT

    def acts_for_tutor(self, tutor_id: str) -> bool:
        return self.is_admin or (self.is_tutor and self.actor_id == tutor_id)

    def acts_for_student(self, student_id: str) -> bool:
        return self.is_admin or (self.is_student and self.actor_id == student_id)

    def require_tutor(self, tutor_id: str, action: str = "manage this resource") -> None:
        if not self.acts_for_tutor(tutor_id):
            raise ForbiddenException(
                f"Only the owning tutor can {action}",
                details={"tutor_id": tutor_id},
            )

    def require_party(self, tutor_id: str, student_id: str) -> None:
        if not (self.acts_for_tutor(tutor_id) or self.acts_for_student(student_id)):
            raise ForbiddenException("You are not a party to this resource")
