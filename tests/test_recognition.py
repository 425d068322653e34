import base64
import json

import httpx
import pytest
from google.genai import errors

from packages.ai.client import AnalysisError, CredentialError, get_ai_client
from packages.catalog.schemas import RecognitionResult, SimilarityMatch
from packages.recognition.imaging import normalize_jpeg, read_image_input
from packages.recognition.matcher import (
    NO_REFERENCES_MESSAGE,
    SimilarityMatcher,
    cache_busted,
    reference_label,
    resolve_matches,
)
from packages.settings import Settings
from packages.storage.images import to_data_url

from conftest import FakeClient, FakeModels, make_jpeg, make_part, make_png

TARGET = to_data_url(make_jpeg((0, 0, 255)))


def _inline_images(call):
    return [p for p in call.contents[0].parts if p.inline_data is not None]


def _texts(call):
    return [p.text for p in call.contents[0].parts if p.text is not None]


def _response(matches, features="steel bracket with two holes"):
    return json.dumps({"matches": matches, "detectedFeatures": features})


def _http(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _matcher(tmp_settings, image_store, models, http=None):
    return SimilarityMatcher(client=FakeClient(models=models), settings=tmp_settings,
                             image_store=image_store, http_client=http)


async def test_catalog_without_photos_returns_empty_without_remote_call(tmp_settings, image_store):
    models = FakeModels(text=_response([]))
    matcher = _matcher(tmp_settings, image_store, models)
    result = await matcher.analyze(TARGET, [make_part("a"), make_part("b")])
    assert result.matches == []
    assert result.detected_features == NO_REFERENCES_MESSAGE
    assert models.calls == []


async def test_empty_catalog_needs_no_api_key(image_store):
    settings = Settings(api_key=None)
    matcher = SimilarityMatcher(settings=settings, image_store=image_store)
    result = await matcher.analyze(TARGET, [])
    assert result.matches == []


async def test_missing_api_key_is_credential_error(image_store):
    matcher = SimilarityMatcher(settings=Settings(api_key=None), image_store=image_store)
    with pytest.raises(CredentialError):
        await matcher.analyze(TARGET, [make_part("a", image_urls=[to_data_url(make_jpeg())])])


async def test_request_contains_only_fetchable_references(tmp_settings, image_store):
    stored_url = image_store.upload(make_jpeg((1, 2, 3)), "stored")

    def handler(request):
        if request.url.host == "ok.example":
            assert "t" in request.url.params
            return httpx.Response(200, content=make_png())
        if request.url.host == "garbage.example":
            return httpx.Response(200, content=b"not an image")
        return httpx.Response(404)

    catalog = [
        make_part("inline", image_urls=[to_data_url(make_jpeg())]),
        make_part("remote", image_urls=["https://ok.example/a.png?v=1"]),
        make_part("stored", image_urls=[stored_url]),
        make_part("gone", image_urls=["https://missing.example/a.jpg"]),
        make_part("broken", image_urls=["https://garbage.example/a.jpg"]),
        make_part("nophoto"),
    ]
    models = FakeModels(text=_response([{"id": "remote", "score": 91, "reason": "same holes"}]))
    async with _http(handler) as http:
        result = await _matcher(tmp_settings, image_store, models, http).analyze(TARGET, catalog)

    call = models.calls[0]
    assert call.model == tmp_settings.vision_model
    # target + three fetchable references
    assert len(_inline_images(call)) == 4
    texts = _texts(call)
    assert texts[0] == "TARGET:"
    assert texts[1] == "REFERENCES:"
    assert texts[2:] == [reference_label(p) for p in catalog[:3]]
    assert all(p.inline_data.mime_type == "image/jpeg" for p in _inline_images(call))
    assert call.config.response_mime_type == "application/json"
    assert result.matches[0].id == "remote"


async def test_candidates_are_capped(tmp_settings, image_store):
    settings = tmp_settings.model_copy(update={"recognition_max_references": 3})
    catalog = [make_part(str(i), image_urls=[to_data_url(make_jpeg())]) for i in range(10)]
    models = FakeModels(text=_response([]))
    matcher = SimilarityMatcher(client=FakeClient(models=models), settings=settings, image_store=image_store)
    await matcher.analyze(TARGET, catalog)
    assert len(_inline_images(models.calls[0])) == 4


async def test_zero_matches_is_success(tmp_settings, image_store):
    models = FakeModels(text=_response([], "unknown part"))
    result = await _matcher(tmp_settings, image_store, models).analyze(
        TARGET, [make_part("a", image_urls=[to_data_url(make_jpeg())])])
    assert result.matches == []
    assert result.detected_features == "unknown part"


@pytest.mark.parametrize("text", [
    json.dumps({"matches": []}),
    json.dumps({"detectedFeatures": "x"}),
    json.dumps({"matches": [{"id": "a", "score": 10}], "detectedFeatures": "x"}),
    "{not json",
    "",
    None,
])
async def test_schema_violations_are_analysis_errors(tmp_settings, image_store, text):
    models = FakeModels(text=text)
    with pytest.raises(AnalysisError):
        await _matcher(tmp_settings, image_store, models).analyze(
            TARGET, [make_part("a", image_urls=[to_data_url(make_jpeg())])])


@pytest.mark.parametrize("exc", [
    errors.ClientError(400, {"error": {"code": 400, "message": "API key not valid. Please pass a valid API key.", "status": "INVALID_ARGUMENT"}}),
    errors.ClientError(403, {"error": {"code": 403, "message": "Forbidden", "status": "PERMISSION_DENIED"}}),
    errors.ClientError(404, {"error": {"code": 404, "message": "Requested entity was not found.", "status": "NOT_FOUND"}}),
])
async def test_credential_failures(tmp_settings, image_store, exc):
    models = FakeModels(exc=exc)
    with pytest.raises(CredentialError):
        await _matcher(tmp_settings, image_store, models).analyze(
            TARGET, [make_part("a", image_urls=[to_data_url(make_jpeg())])])


async def test_other_failures_are_analysis_errors(tmp_settings, image_store):
    exc = errors.ServerError(503, {"error": {"code": 503, "message": "overloaded", "status": "UNAVAILABLE"}})
    models = FakeModels(exc=exc)
    with pytest.raises(AnalysisError, match="overloaded"):
        await _matcher(tmp_settings, image_store, models).analyze(
            TARGET, [make_part("a", image_urls=[to_data_url(make_jpeg())])])
    assert len(models.calls) == 1


def test_resolve_matches_skips_unknown_ids_and_orders_by_score():
    catalog = [make_part("a"), make_part("b")]
    result = RecognitionResult(
        matches=[
            SimilarityMatch(id="a", score=40, reason="similar"),
            SimilarityMatch(id="ghost", score=99, reason="hallucinated"),
            SimilarityMatch(id="b", score=85, reason="same part"),
        ],
        detected_features="x",
    )
    resolved = resolve_matches(result, catalog)
    assert [m.part.id for m in resolved] == ["b", "a"]
    assert resolved[0].is_high_confidence is True
    assert resolved[1].is_high_confidence is False


def test_cache_busted():
    assert "?t=" in cache_busted("https://a/b.jpg")
    assert "&t=" in cache_busted("https://a/b.jpg?x=1")


def test_read_image_input_variants():
    raw = make_jpeg()
    assert read_image_input(raw) == raw
    assert read_image_input(to_data_url(raw)) == raw
    assert read_image_input(base64.b64encode(raw).decode()) == raw
    with pytest.raises(ValueError):
        read_image_input("%%%not-base64%%%")


def test_normalize_jpeg_converts_and_downscales():
    out = normalize_jpeg(make_png(size=(2000, 1000)), max_side=500)
    assert out[:2] == b"\xff\xd8"
    from PIL import Image
    import io
    assert max(Image.open(io.BytesIO(out)).size) == 500
    with pytest.raises(ValueError):
        normalize_jpeg(b"nope")


def test_get_ai_client_requires_key():
    with pytest.raises(CredentialError, match="API_KEY_MISSING"):
        get_ai_client(Settings(api_key=None))


async def test_malformed_reference_url_only_drops_that_candidate(tmp_settings, image_store):
    catalog = [
        make_part("good", image_urls=[to_data_url(make_jpeg())]),
        make_part("bad-port", image_urls=["http://host:port/a.jpg"]),
    ]
    models = FakeModels(text=_response([{"id": "good", "score": 80, "reason": "same"}]))
    async with _http(lambda request: httpx.Response(404)) as http:
        result = await _matcher(tmp_settings, image_store, models, http).analyze(TARGET, catalog)

    assert len(models.calls) == 1
    assert _texts(models.calls[0])[2:] == [reference_label(catalog[0])]
    assert result.matches[0].id == "good"


def test_normalize_jpeg_rejects_oversized_images(monkeypatch):
    from PIL import Image
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 100)
    with pytest.raises(ValueError):
        normalize_jpeg(make_jpeg(size=(64, 48)))
