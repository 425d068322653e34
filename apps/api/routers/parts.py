import io
import logging
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from typing import List, Optional
from pydantic import BaseModel, Field

from packages.catalog.importer import import_workbook
from packages.catalog.schemas import PartForm, PartRecord
from packages.catalog.service import CatalogService, PartNotFound
from packages.storage.db import StorageError

from apps.api.dependencies import get_catalog_service

logger = logging.getLogger(__name__)

router = APIRouter()


class PartPayload(PartForm):
    # data: URLs captured by the client, uploaded on save
    captured_images: List[str] = Field(default_factory=list)


class PhotoPayload(BaseModel):
    image: str


def _dump(part: PartRecord) -> dict:
    return part.model_dump(mode="json", by_alias=True)


@router.get("")
def list_parts(q: Optional[str] = None, service: CatalogService = Depends(get_catalog_service)):
    try:
        items = service.list_parts(q)
    except StorageError as e:
        raise HTTPException(500, str(e))
    return {"items": [_dump(p) for p in items], "total": len(items)}


@router.get("/{part_id}")
def fetch_part(part_id: str, service: CatalogService = Depends(get_catalog_service)):
    try:
        return _dump(service.get_part(part_id))
    except PartNotFound as e:
        raise HTTPException(404, str(e))


@router.post("", status_code=201)
def create_part(payload: PartPayload, service: CatalogService = Depends(get_catalog_service)):
    form = PartForm(**payload.model_dump(exclude={"captured_images"}))
    try:
        return _dump(service.create_part(form, payload.captured_images))
    except StorageError as e:
        logger.error(f"Create failed: {e}")
        raise HTTPException(500, str(e))


@router.put("/{part_id}")
def update_part(part_id: str, payload: PartPayload, service: CatalogService = Depends(get_catalog_service)):
    form = PartForm(**payload.model_dump(exclude={"captured_images"}))
    try:
        return _dump(service.update_part(part_id, form, payload.captured_images))
    except PartNotFound as e:
        raise HTTPException(404, str(e))
    except StorageError as e:
        logger.error(f"Update failed: {e}")
        raise HTTPException(500, str(e))


@router.post("/{part_id}/photos")
def add_photo(part_id: str, payload: PhotoPayload, service: CatalogService = Depends(get_catalog_service)):
    try:
        return _dump(service.add_photo(part_id, payload.image))
    except PartNotFound as e:
        raise HTTPException(404, str(e))
    except StorageError as e:
        logger.error(f"Photo upload failed: {e}")
        raise HTTPException(500, str(e))


@router.delete("/{part_id}")
def delete_part(part_id: str, service: CatalogService = Depends(get_catalog_service)):
    try:
        removed = service.delete_part(part_id)
    except StorageError as e:
        raise HTTPException(500, str(e))
    return {"deleted": removed, "id": part_id}


@router.post("/import")
async def import_parts(file: UploadFile = File(...), service: CatalogService = Depends(get_catalog_service)):
    """Bulk import from a spreadsheet (partNumber, partName, color, workstation, models)"""
    content = await file.read()
    try:
        records = import_workbook(io.BytesIO(content), service=service, filename=file.filename)
    except StorageError as e:
        raise HTTPException(500, str(e))
    except Exception as e:
        logger.error(f"Import failed: {e}")
        raise HTTPException(400, f"Import failed: {str(e)}")
    return {"imported": len(records), "items": [_dump(p) for p in records]}
