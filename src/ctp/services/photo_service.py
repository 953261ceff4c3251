from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Callable, Iterable, Optional

from ctp.domain.errors import NotFoundError, ValidationError
from ctp.domain.models import ProjectPhoto
from ctp.repositories.sqlite_repo import punch_photo_key
from ctp.timeutils import utcnow

log = logging.getLogger(__name__)


class PhotoService:
    def __init__(self, repo, clock: Callable[[], datetime] = utcnow):
        self.repo = repo
        self.clock = clock

    @staticmethod
    def _images(images: Iterable[bytes]) -> list[bytes]:
        out = [bytes(img) for img in images]
        if not out:
            raise ValidationError("At least one image is required.")
        if any(len(img) == 0 for img in out):
            raise ValidationError("Empty image.")
        return out

    def add_project_photos(self, project_id: int, images: Iterable[bytes], description: str = "") -> list[ProjectPhoto]:
        # one timestamp for the whole batch
        photos = self.repo.add_photos(int(project_id), None, (description or "").strip(), self.clock(), self._images(images))
        log.info("photos_added project_id=%s count=%s", project_id, len(photos))
        return photos

    def add_punch_list_photos(
        self, project_id: int, punch_list_item_id: int, images: Iterable[bytes], description: str = ""
    ) -> list[ProjectPhoto]:
        photos = self.repo.add_photos(
            int(project_id), int(punch_list_item_id), (description or "").strip(), self.clock(), self._images(images)
        )
        log.info("punch_photos_added project_id=%s item_id=%s count=%s", project_id, punch_list_item_id, len(photos))
        return photos

    def update_punch_list_photo(self, project_id: int, punch_list_item_id: int, photo_id: int, image: bytes) -> None:
        """Replaces the stored image (e.g. after markup); metadata is unchanged."""
        meta = self.repo.get_photo_meta(int(photo_id))
        key = punch_photo_key(project_id, punch_list_item_id, photo_id)
        if not meta or meta.key != key:
            raise NotFoundError("Photo not found.")
        self.repo.put_photo(key, self._images([image])[0])

    def get_photo(self, key: str) -> Optional[bytes]:
        return self.repo.get_photo(key)

    def get_photos_for_project(self, project_id: int) -> list[tuple[ProjectPhoto, bytes]]:
        project = self.repo.get_project(int(project_id))
        if not project:
            return []
        out = []
        for meta in project.photos:
            data = self.repo.get_photo(meta.key)
            if data is None:
                log.warning("photo_blob_missing key=%s", meta.key)
                continue
            out.append((meta, data))
        return out

    def store_receipt(self, image: bytes) -> str:
        receipt_id = f"receipt-{uuid.uuid4().hex}"
        self.repo.put_photo(receipt_id, self._images([image])[0])
        return receipt_id
