from __future__ import annotations

from datetime import datetime
from typing import Optional

from ctp.domain.errors import NotFoundError, ValidationError
from ctp.domain.models import TASK_STATUSES, Task


class TaskService:
    def __init__(self, repo):
        self.repo = repo

    def add_task(
        self,
        title: str,
        project_id: int,
        description: str = "",
        assignee_id: Optional[int] = None,
        due_date: Optional[datetime] = None,
    ) -> int:
        title = (title or "").strip()
        if not title:
            raise ValidationError("Title is required.")
        if assignee_id is not None and not self.repo.get_user(int(assignee_id)):
            raise NotFoundError("Assignee not found.")
        return self.repo.add_task(title, (description or "").strip(), int(project_id), assignee_id, due_date)

    def update_task_status(self, task_id: int, status: str) -> Task:
        if status not in TASK_STATUSES:
            raise ValidationError(f"Unknown task status: {status}")
        if not self.repo.update_task_status(int(task_id), status):
            raise NotFoundError("Task not found.")
        return self.repo.get_task(int(task_id))

    def list_tasks(self, project_id: int | None = None) -> list[Task]:
        return self.repo.list_tasks(project_id)
