import uuid
import logging
from typing import Any, List, Optional

import pandas as pd

from .schemas import PartColor, PartModel, PartRecord
from .service import now_ms

logger = logging.getLogger(__name__)

COLUMNS = ["partNumber", "partName", "color", "workstation", "models"]

_COLORS = {c.value.lower(): c for c in PartColor}
_MODELS = {m.value.lower(): m for m in PartModel}


def _cell(value: Any) -> str:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def parse_color(value: Any) -> PartColor:
    color = _COLORS.get(_cell(value).lower())
    if color is None:
        if _cell(value):
            logger.warning(f"Unknown color {value!r}, using {PartColor.HAMILTON_WHITE.value}")
        return PartColor.HAMILTON_WHITE
    return color


def parse_models(value: Any) -> List[PartModel]:
    models = []
    for name in _cell(value).split(","):
        name = name.strip()
        if not name:
            continue
        model = _MODELS.get(name.lower())
        if model is None:
            logger.warning(f"Dropping unknown model {name!r}")
            continue
        if model not in models:
            models.append(model)
    return models


def rows_to_records(df: pd.DataFrame) -> List[PartRecord]:
    timestamp = now_ms()
    records = []
    for row in df.to_dict(orient="records"):
        records.append(PartRecord(
            id=str(uuid.uuid4()),
            part_number=_cell(row.get("partNumber")),
            part_name=_cell(row.get("partName")),
            color=parse_color(row.get("color")),
            workstation=_cell(row.get("workstation")),
            models=parse_models(row.get("models")),
            image_urls=[],
            timestamp=timestamp,
        ))
    return records


def read_workbook(source, filename: Optional[str] = None) -> pd.DataFrame:
    """First sheet of an .xlsx/.xls/.csv file as a DataFrame"""
    name = str(filename or getattr(source, "name", source)).lower()
    if name.endswith(".csv"):
        return pd.read_csv(source)
    return pd.read_excel(source, sheet_name=0)


def import_workbook(source, service=None, filename: Optional[str] = None) -> List[PartRecord]:
    """Parse a spreadsheet into new part records and save them when a service is given"""
    df = read_workbook(source, filename)
    missing = [c for c in COLUMNS if c not in df.columns]
    if missing:
        logger.warning(f"Spreadsheet is missing columns: {', '.join(missing)}")
    records = rows_to_records(df)
    if service is not None:
        service.import_records(records)
    logger.info(f"Imported {len(records)} parts from spreadsheet")
    return records
