import logging
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import JSONResponse
from typing import Union
from pydantic import BaseModel

from packages.ai.client import AnalysisError, CredentialError
from packages.catalog.service import CatalogService
from packages.recognition.matcher import SimilarityMatcher, resolve_matches
from packages.settings import Settings
from packages.storage.db import StorageError

from apps.api.dependencies import get_ai_client_override, get_app_settings, get_catalog_service

logger = logging.getLogger(__name__)

router = APIRouter()


class RecognizeRequest(BaseModel):
    # data: URL or bare base64 of the captured JPEG
    image: str


async def _recognize(image: Union[str, bytes], service: CatalogService, settings: Settings, client):
    try:
        catalog = service.list_parts()
    except StorageError as e:
        raise HTTPException(500, str(e))

    matcher = SimilarityMatcher(client=client, settings=settings, image_store=service.image_store)
    try:
        result = await matcher.analyze(image, catalog)
    except CredentialError as e:
        logger.warning(f"Recognition rejected: {e}")
        return JSONResponse(status_code=401, content={"code": "credential", "detail": str(e)})
    except AnalysisError as e:
        raise HTTPException(502, str(e))
    except ValueError as e:
        raise HTTPException(400, f"Invalid image: {str(e)}")

    matches = resolve_matches(result, catalog)
    return {
        "result": result.model_dump(by_alias=True),
        "matches": [
            {**m.model_dump(mode="json", exclude={"part"}), "part": m.part.model_dump(mode="json", by_alias=True)}
            for m in matches
        ],
        "message": None if matches else "No matching part found in the catalog.",
    }


@router.post("")
async def recognize(request: RecognizeRequest,
                    service: CatalogService = Depends(get_catalog_service),
                    settings: Settings = Depends(get_app_settings),
                    client=Depends(get_ai_client_override)):
    """Identify a captured part against the catalog's reference photos"""
    return await _recognize(request.image, service, settings, client)


@router.post("/upload")
async def recognize_upload(file: UploadFile = File(...),
                           service: CatalogService = Depends(get_catalog_service),
                           settings: Settings = Depends(get_app_settings),
                           client=Depends(get_ai_client_override)):
    return await _recognize(await file.read(), service, settings, client)
