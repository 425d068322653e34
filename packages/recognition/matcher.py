import time
import asyncio
import logging
from typing import Dict, List, Optional, Sequence, Tuple, Union

import httpx
from google.genai import types
from pydantic import ValidationError

from ..ai.client import AnalysisError, get_ai_client, translate_error
from ..catalog.schemas import MatchedPart, PartRecord, RecognitionResult
from ..settings import Settings, get_settings
from ..storage.images import ImageStore, create_image_store, decode_data_url, is_data_url
from .imaging import normalize_jpeg, read_image_input

logger = logging.getLogger(__name__)

NO_REFERENCES_MESSAGE = "No reference images available in the catalog."

SYSTEM_INSTRUCTION = """
You are an industrial machine-vision specialist. Compare the TARGET image with each REFERENCE image.
Look for similarity in shape, holes, surface relief, mounting features and proportions.
Ignore differences caused by lighting, background, camera angle or image quality.
Score every plausible reference from 0 (unrelated) to 100 (same part).
Use the reference IDs exactly as given. Write every reason and the detected features in {language}.

Return JSON:
{{
  "matches": [{{"id": "string", "score": number, "reason": "string"}}],
  "detectedFeatures": "technical features detected on the target part"
}}
"""

RESPONSE_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "matches": types.Schema(
            type=types.Type.ARRAY,
            items=types.Schema(
                type=types.Type.OBJECT,
                properties={
                    "id": types.Schema(type=types.Type.STRING),
                    "score": types.Schema(type=types.Type.NUMBER),
                    "reason": types.Schema(type=types.Type.STRING),
                },
                required=["id", "score", "reason"],
            ),
        ),
        "detectedFeatures": types.Schema(type=types.Type.STRING),
    },
    required=["matches", "detectedFeatures"],
)


def reference_label(part: PartRecord) -> str:
    return f"[ID: {part.id}] {part.part_name} ({part.part_number})"


def cache_busted(url: str) -> str:
    sep = "&" if "?" in url else "?"
    return f"{url}{sep}t={int(time.time() * 1000)}"


class SimilarityMatcher:
    def __init__(self,
                 client=None,
                 settings: Optional[Settings] = None,
                 image_store: Optional[ImageStore] = None,
                 http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings or get_settings()
        self._client = client
        self._image_store = image_store
        self._http_client = http_client

    @property
    def image_store(self) -> ImageStore:
        if self._image_store is None:
            self._image_store = create_image_store(self.settings)
        return self._image_store

    def select_candidates(self, catalog: Sequence[PartRecord]) -> List[PartRecord]:
        """Photographed records, capped to bound request size and latency"""
        with_photos = [p for p in catalog if p.has_photos]
        return with_photos[: self.settings.recognition_max_references]

    async def _fetch_bytes(self, http: httpx.AsyncClient, url: str) -> Optional[bytes]:
        if is_data_url(url):
            return decode_data_url(url)[1]
        stored = await asyncio.to_thread(self.image_store.read, url)
        if stored is not None:
            return stored
        if not url.startswith(("http://", "https://")):
            return None
        response = await http.get(cache_busted(url))
        if response.status_code != 200:
            logger.warning(f"Reference image fetch returned {response.status_code}: {url}")
            return None
        return response.content

    async def load_reference(self, http: httpx.AsyncClient, part: PartRecord) -> Optional[bytes]:
        """First photo of a part as JPEG, or None when it cannot be fetched or decoded"""
        url = part.image_urls[0]
        try:
            data = await self._fetch_bytes(http, url)
            if not data:
                return None
            return normalize_jpeg(data, self.settings.recognition_max_image_side)
        except (httpx.HTTPError, httpx.InvalidURL, ValueError, OSError) as e:
            logger.warning(f"Skipping reference {part.id}: {e}")
            return None

    async def load_references(self, candidates: Sequence[PartRecord]) -> List[Tuple[PartRecord, bytes]]:
        if self._http_client is not None:
            images = await asyncio.gather(*(self.load_reference(self._http_client, p) for p in candidates))
        else:
            async with httpx.AsyncClient(timeout=self.settings.image_fetch_timeout, follow_redirects=True) as http:
                images = await asyncio.gather(*(self.load_reference(http, p) for p in candidates))
        return [(part, img) for part, img in zip(candidates, images) if img]

    def build_contents(self, target_jpeg: bytes, references: Sequence[Tuple[PartRecord, bytes]]) -> List[types.Content]:
        parts = [
            types.Part.from_text(text="TARGET:"),
            types.Part.from_bytes(data=target_jpeg, mime_type="image/jpeg"),
            types.Part.from_text(text="REFERENCES:"),
        ]
        for part, image in references:
            parts.append(types.Part.from_text(text=reference_label(part)))
            parts.append(types.Part.from_bytes(data=image, mime_type="image/jpeg"))
        return [types.Content(role="user", parts=parts)]

    def build_config(self) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            system_instruction=SYSTEM_INSTRUCTION.format(language=self.settings.response_language),
            response_mime_type="application/json",
            response_schema=RESPONSE_SCHEMA,
        )

    @staticmethod
    def parse_response(text: Optional[str]) -> RecognitionResult:
        if not text or not text.strip():
            raise AnalysisError("Analysis failed: empty response from the model")
        try:
            return RecognitionResult.model_validate_json(text)
        except ValidationError as e:
            raise AnalysisError(f"Analysis failed: response does not match the expected schema ({e.error_count()} errors)") from e

    async def analyze(self, target_image: Union[str, bytes], catalog: Sequence[PartRecord]) -> RecognitionResult:
        """Compare a captured image against the photographed part of the catalog"""
        candidates = self.select_candidates(catalog)
        if not candidates:
            return RecognitionResult(matches=[], detected_features=NO_REFERENCES_MESSAGE)

        target_jpeg = normalize_jpeg(read_image_input(target_image), self.settings.recognition_max_image_side)
        client = self._client or get_ai_client(self.settings)

        references = await self.load_references(candidates)
        logger.info(f"Comparing target against {len(references)} of {len(candidates)} reference parts")

        try:
            response = await client.aio.models.generate_content(
                model=self.settings.vision_model,
                contents=self.build_contents(target_jpeg, references),
                config=self.build_config(),
            )
        except Exception as e:
            logger.error(f"Similarity analysis failed: {e}")
            raise translate_error(e, AnalysisError, "Analysis") from e

        return self.parse_response(response.text)


def resolve_matches(result: RecognitionResult, catalog: Sequence[PartRecord]) -> List[MatchedPart]:
    """Attach catalog records to match ids, dropping ids that no record carries"""
    by_id: Dict[str, PartRecord] = {p.id: p for p in catalog}
    resolved = []
    for match in result.matches:
        part = by_id.get(match.id)
        if part is None:
            logger.info(f"Ignoring match for unknown part id {match.id!r}")
            continue
        resolved.append(MatchedPart(part=part, score=match.score, reason=match.reason))
    resolved.sort(key=lambda m: m.score, reverse=True)
    return resolved


# Convenience function
async def analyze_similarity(target_image: Union[str, bytes], catalog: Sequence[PartRecord], **kwargs) -> RecognitionResult:
    matcher = SimilarityMatcher(**kwargs)
    return await matcher.analyze(target_image, catalog)
