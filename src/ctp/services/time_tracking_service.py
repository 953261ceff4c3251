from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from ctp.domain.errors import InvalidTransitionError, ProjectNotFoundError, SameProjectError, UserNotFoundError
from ctp.domain.models import SwitchResult, TimeLog
from ctp.repositories.contracts import EntityRepository
from ctp.repositories.unit_of_work import RepositoryUnitOfWork, UnitOfWork
from ctp.services.location_service import LocationService
from ctp.timeutils import utcnow

log = logging.getLogger("ctp.timeclock")


class TimeTrackingService:
    """Per-user clock state machine: ClockedOut -> ClockedIn(project, start) -> ClockedOut."""

    def __init__(
        self,
        repo: EntityRepository,
        location: LocationService | None = None,
        clock: Callable[[], datetime] = utcnow,
        uow_factory: Callable[[], UnitOfWork] | None = None,
    ):
        self.repo = repo
        self.location = location or LocationService()
        self.clock = clock
        self.uow_factory = uow_factory or (lambda: RepositoryUnitOfWork(repo))

    def _require_user(self, user_id: int):
        user = self.repo.get_user(int(user_id))
        if not user:
            raise UserNotFoundError(f"User not found: {user_id}")
        return user

    def clock_in(self, user_id: int, project_id: Optional[int]) -> TimeLog:
        user = self._require_user(user_id)
        if user.is_clocked_in:
            raise InvalidTransitionError(f"{user.name} is already clocked in.")
        if project_id is None:
            raise InvalidTransitionError("A project is required to clock in.")
        if not self.repo.get_project(int(project_id)):
            raise ProjectNotFoundError(f"Project not found: {project_id}")

        location, map_image = self.location.capture()
        with self.uow_factory() as uow:
            time_log = uow.open_time_log(user.id, int(project_id), self.clock(), location, map_image)
        log.info(
            "clock_in user_id=%s project_id=%s log_id=%s located=%s",
            user.id, project_id, time_log.id, location is not None,
        )
        return time_log

    def clock_out(self, user_id: int) -> TimeLog:
        user = self._require_user(user_id)
        if not user.is_clocked_in:
            raise InvalidTransitionError(f"{user.name} is not clocked in.")

        location, map_image = self.location.capture()
        with self.uow_factory() as uow:
            time_log = uow.close_time_log(user.id, self.clock(), location, map_image)
        if time_log.clock_skew:
            log.warning("clock_skew user_id=%s log_id=%s clock_in=%s", user.id, time_log.id, time_log.clock_in.isoformat())
        log.info(
            "clock_out user_id=%s project_id=%s log_id=%s duration_ms=%s cost=%.2f",
            user.id, time_log.project_id, time_log.id, time_log.duration_ms, time_log.cost,
        )
        return time_log

    def switch_job(self, user_id: int, new_project_id: int) -> SwitchResult:
        user = self._require_user(user_id)
        if not user.is_clocked_in:
            raise InvalidTransitionError(f"{user.name} is not clocked in.")
        if user.current_project_id == int(new_project_id):
            raise SameProjectError("Already clocked in to this project.")
        if not self.repo.get_project(int(new_project_id)):
            raise ProjectNotFoundError(f"Project not found: {new_project_id}")

        out_location, out_map = self.location.capture()
        clock_out = self.clock()
        in_location, in_map = self.location.capture()
        clock_in = self.clock()

        with self.uow_factory() as uow:
            result = uow.switch_time_log(
                user.id,
                int(new_project_id),
                clock_out,
                clock_in,
                out_location=out_location,
                out_map_image=out_map,
                in_location=in_location,
                in_map_image=in_map,
            )
        log.info(
            "switch_job user_id=%s from_project=%s to_project=%s closed_log=%s opened_log=%s cost=%.2f",
            user.id,
            result.closed_log.project_id,
            result.opened_log.project_id,
            result.closed_log.id,
            result.opened_log.id,
            result.closed_log.cost,
        )
        return result

    def open_log_for(self, user_id: int) -> Optional[TimeLog]:
        return self.repo.get_open_time_log(int(user_id))

    def list_time_logs(self, user_id: int | None = None, project_id: int | None = None) -> list[TimeLog]:
        return self.repo.list_time_logs(user_id=user_id, project_id=project_id)
