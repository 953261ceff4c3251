from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from ctp.domain.errors import NotFoundError, ProjectNotFoundError, ValidationError
from ctp.domain.models import PROJECT_STATUSES, PROJECT_TYPES, Project

log = logging.getLogger(__name__)


class ProjectService:
    def __init__(self, repo):
        self.repo = repo

    def list_projects(self) -> list[Project]:
        return self.repo.list_projects()

    def get_project(self, project_id: int) -> Project:
        project = self.repo.get_project(int(project_id))
        if not project:
            raise ProjectNotFoundError("Project not found.")
        return project

    def add_project(
        self,
        name: str,
        address: str = "",
        type: str = "Renovation",
        status: str = "In Progress",
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        budget: float = 0.0,
        markup_percent: float = 0.0,
    ) -> int:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Name is required.")
        if type not in PROJECT_TYPES:
            raise ValidationError(f"Unknown project type: {type}")
        if status not in PROJECT_STATUSES:
            raise ValidationError(f"Unknown project status: {status}")
        if budget < 0:
            raise ValidationError("Budget must be >= 0.")
        if markup_percent < 0:
            raise ValidationError("Markup must be >= 0.")
        if start_date and end_date and end_date < start_date:
            raise ValidationError("End date must be after start date.")
        return self.repo.add_project(
            name, (address or "").strip(), type, status, start_date, end_date, float(budget), float(markup_percent)
        )

    def delete_project(self, project_id: int) -> None:
        """
        Removes the project with its punch list and photos. Logs and invoices keep
        their ids. Refused while anyone is clocked in to the project.
        """
        if not self.repo.delete_project(int(project_id)):
            raise ProjectNotFoundError("Project not found.")
        log.info("project_deleted project_id=%s", project_id)

    def add_punch_list_item(self, project_id: int, text: str) -> int:
        text = (text or "").strip()
        if not text:
            raise ValidationError("Punch list text is required.")
        return self.repo.add_punch_list_item(int(project_id), text)

    def toggle_punch_list_item(self, project_id: int, item_id: int) -> None:
        if not self.repo.toggle_punch_list_item(int(project_id), int(item_id)):
            raise NotFoundError("Punch list item not found.")
