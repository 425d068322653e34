import time
import uuid
import logging
from typing import List, Optional, Sequence

from ..storage import db
from ..storage.images import ImageStore, create_image_store, is_data_url
from .schemas import PartForm, PartRecord

logger = logging.getLogger(__name__)


class PartNotFound(Exception):
    def __init__(self, part_id: str):
        super().__init__(f"Part {part_id} not found")
        self.part_id = part_id


def now_ms() -> int:
    return int(time.time() * 1000)


def filter_parts(parts: Sequence[PartRecord], term: Optional[str]) -> List[PartRecord]:
    """Case-insensitive match on part number or part name"""
    if not term:
        return list(parts)
    needle = term.lower()
    return [p for p in parts if needle in p.part_number.lower() or needle in p.part_name.lower()]


class CatalogService:
    """Catalog operations on top of the parts table and the photo store"""

    def __init__(self, image_store: Optional[ImageStore] = None):
        self._image_store = image_store

    @property
    def image_store(self) -> ImageStore:
        if self._image_store is None:
            self._image_store = create_image_store()
        return self._image_store

    def initialize(self) -> None:
        db.get_engine()
        self.image_store.initialize()

    def list_parts(self, term: Optional[str] = None) -> List[PartRecord]:
        return filter_parts(db.list_parts(), term)

    def get_part(self, part_id: str) -> PartRecord:
        part = db.get_part(part_id)
        if part is None:
            raise PartNotFound(part_id)
        return part

    def save_part(self, part: PartRecord) -> PartRecord:
        """Upload inline photos, then insert or update the record"""
        uploaded = [
            self.image_store.upload(url, part.part_number) if is_data_url(url) else url
            for url in part.image_urls
        ]
        saved = part.model_copy(update={
            "image_urls": uploaded,
            "timestamp": part.timestamp or now_ms(),
        })
        db.upsert_part(saved)
        logger.info(f"Saved part {saved.id} ({saved.part_number}) with {len(uploaded)} photos")
        return saved

    def create_part(self, form: PartForm, captured_images: Sequence[str] = ()) -> PartRecord:
        record = PartRecord(
            id=str(uuid.uuid4()),
            image_urls=list(captured_images),
            timestamp=now_ms(),
            **form.model_dump(),
        )
        return self.save_part(record)

    def update_part(self, part_id: str, form: PartForm, captured_images: Sequence[str] = ()) -> PartRecord:
        existing = self.get_part(part_id)
        updated = existing.model_copy(update={
            **form.model_dump(),
            "image_urls": existing.image_urls + list(captured_images),
        })
        return self.save_part(updated)

    def add_photo(self, part_id: str, image: str) -> PartRecord:
        existing = self.get_part(part_id)
        updated = existing.model_copy(update={"image_urls": existing.image_urls + [image]})
        return self.save_part(updated)

    def delete_part(self, part_id: str) -> bool:
        removed = db.delete_part(part_id)
        if not removed:
            logger.info(f"Delete requested for unknown part {part_id}")
        return removed

    def import_records(self, records: Sequence[PartRecord]) -> int:
        n = 0
        for record in records:
            self.save_part(record)
            n += 1
        return n
