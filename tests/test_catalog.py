import io

import pandas as pd
import pytest

from packages.catalog.importer import import_workbook, parse_color, parse_models
from packages.catalog.schemas import PartColor, PartForm, PartModel, PartRecord
from packages.catalog.service import PartNotFound, filter_parts
from packages.storage.images import to_data_url

from conftest import make_jpeg, make_part


def _form(**kwargs):
    values = dict(part_number="A-100", part_name="Hinge", color=PartColor.ATLANTIS_BLUE,
                  workstation="WS-1", models=[PartModel.P11])
    values.update(kwargs)
    return PartForm(**values)


def test_part_record_accepts_camel_case_payload():
    part = PartRecord.model_validate({
        "id": "x", "partNumber": "1", "partName": "n", "color": "Incolor",
        "workstation": "w", "models": ["B03"], "imageUrls": ["u"], "timestamp": 5,
    })
    assert part.part_number == "1"
    assert part.color is PartColor.INCOLOR
    dumped = part.model_dump(mode="json", by_alias=True)
    assert dumped["imageUrls"] == ["u"]
    assert dumped["partName"] == "n"


def test_filter_parts_matches_number_or_name_case_insensitively():
    parts = [make_part("1", part_number="AB-1", part_name="Bolt"),
             make_part("2", part_number="CD-2", part_name="Clip")]
    assert [p.id for p in filter_parts(parts, "ab")] == ["1"]
    assert [p.id for p in filter_parts(parts, "CLIP")] == ["2"]
    assert len(filter_parts(parts, "")) == 2
    assert filter_parts(parts, "zzz") == []


def test_create_part_uploads_inline_images(service, image_store):
    jpeg = make_jpeg()
    saved = service.create_part(_form(), [to_data_url(jpeg)])
    assert saved.timestamp > 0
    assert len(saved.image_urls) == 1
    url = saved.image_urls[0]
    assert url.startswith(image_store.base_url + "/a_100/")
    assert image_store.read(url) == jpeg
    assert service.get_part(saved.id) == saved


def test_save_part_keeps_remote_urls(service):
    part = make_part("r", image_urls=["https://cdn/a.jpg"], timestamp=None)
    saved = service.save_part(part)
    assert saved.image_urls == ["https://cdn/a.jpg"]
    assert saved.timestamp is not None


def test_update_part_replaces_fields_and_appends_photos(service):
    created = service.create_part(_form(), ["https://cdn/first.jpg"])
    updated = service.update_part(created.id, _form(part_name="Hinge v2", models=[]),
                                  [to_data_url(make_jpeg())])
    assert updated.part_name == "Hinge v2"
    assert updated.models == []
    assert updated.image_urls[0] == "https://cdn/first.jpg"
    assert len(updated.image_urls) == 2
    assert updated.timestamp == created.timestamp


def test_update_unknown_part_raises(service):
    with pytest.raises(PartNotFound):
        service.update_part("missing", _form())


def test_add_photo_appends(service):
    created = service.create_part(_form())
    updated = service.add_photo(created.id, to_data_url(make_jpeg()))
    assert len(updated.image_urls) == 1
    with pytest.raises(PartNotFound):
        service.add_photo("missing", to_data_url(make_jpeg()))


def test_delete_part(service):
    created = service.create_part(_form())
    assert service.delete_part(created.id) is True
    assert service.delete_part(created.id) is False
    assert service.list_parts() == []


def test_list_parts_filters(service):
    service.create_part(_form(part_number="X-1", part_name="Cover"))
    service.create_part(_form(part_number="Y-2", part_name="Panel"))
    assert [p.part_name for p in service.list_parts("pan")] == ["Panel"]


def test_parse_color_and_models():
    assert parse_color("nebula grey") is PartColor.NEBULA_GREY
    assert parse_color("Purple") is PartColor.HAMILTON_WHITE
    assert parse_color(None) is PartColor.HAMILTON_WHITE
    assert parse_models("B03, p11,Unknown,B03") == [PartModel.B03, PartModel.P11]
    assert parse_models(float("nan")) == []


def _xlsx(rows):
    buf = io.BytesIO()
    pd.DataFrame(rows).to_excel(buf, index=False)
    buf.seek(0)
    return buf


def test_import_workbook_creates_records(service):
    source = _xlsx([
        {"partNumber": 1234, "partName": "Latch", "color": "Sun Gold Black",
         "workstation": "WS-3", "models": "B01 HEV,P3012 MID"},
        {"partNumber": "Z-9", "partName": "Cap", "color": None, "workstation": None, "models": None},
    ])
    records = import_workbook(source, service=service)
    assert len(records) == 2
    first, second = records
    assert first.part_number == "1234"
    assert first.color is PartColor.SUN_GOLD_BLACK
    assert first.models == [PartModel.B01_HEV, PartModel.P3012_MID]
    assert second.color is PartColor.HAMILTON_WHITE
    assert second.workstation == ""
    assert second.image_urls == []
    assert {p.id for p in service.list_parts()} == {r.id for r in records}


def test_import_csv_without_service():
    source = io.StringIO("partNumber,partName,color,workstation,models\nQ-1,Pin,KU Grey,WS,B03\n")
    records = import_workbook(source, filename="parts.csv")
    assert records[0].color is PartColor.KU_GREY
    assert records[0].models == [PartModel.B03]
