from __future__ import annotations

from ctp.domain.errors import UserNotFoundError, ValidationError
from ctp.domain.models import User


class UserService:
    def __init__(self, repo):
        self.repo = repo

    def list_users(self) -> list[User]:
        return self.repo.list_users()

    def get_user(self, user_id: int) -> User:
        user = self.repo.get_user(int(user_id))
        if not user:
            raise UserNotFoundError("User not found.")
        return user

    def add_user(self, name: str, role: str, hourly_rate: float) -> int:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Name is required.")
        if hourly_rate < 0:
            raise ValidationError("Hourly rate must be >= 0.")
        return self.repo.add_user(name, (role or "").strip(), float(hourly_rate))

    def update_user(
        self,
        user_id: int,
        name: str | None = None,
        role: str | None = None,
        hourly_rate: float | None = None,
    ) -> User:
        """Clock fields are owned by the time tracking service and never change here."""
        user = self.get_user(user_id)
        new_name = user.name if name is None else name.strip()
        new_rate = user.hourly_rate if hourly_rate is None else float(hourly_rate)
        if not new_name:
            raise ValidationError("Name is required.")
        if new_rate < 0:
            raise ValidationError("Hourly rate must be >= 0.")
        self.repo.update_user(user.id, new_name, user.role if role is None else role.strip(), new_rate)
        return self.get_user(user.id)
