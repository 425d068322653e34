import os, json, logging
from typing import List, Dict, Any, Optional
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from ..catalog.schemas import PartRecord
from ..settings import get_settings

logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None

SCHEMA = """
CREATE TABLE IF NOT EXISTS parts(
    id TEXT PRIMARY KEY,
    part_number TEXT,
    part_name TEXT,
    color TEXT,
    workstation TEXT,
    models TEXT,
    image_urls TEXT,
    timestamp BIGINT
);
"""

UPSERT = (
    "INSERT INTO parts (id, part_number, part_name, color, workstation, models, image_urls, timestamp) "
    "VALUES (:id, :part_number, :part_name, :color, :workstation, :models, :image_urls, :timestamp) "
    "ON CONFLICT (id) DO UPDATE SET part_number=EXCLUDED.part_number, part_name=EXCLUDED.part_name, "
    "color=EXCLUDED.color, workstation=EXCLUDED.workstation, models=EXCLUDED.models, "
    "image_urls=EXCLUDED.image_urls, timestamp=EXCLUDED.timestamp"
)

COLUMNS = "id, part_number, part_name, color, workstation, models, image_urls, timestamp"


class StorageError(Exception):
    pass


def configure(url: Optional[str] = None) -> Engine:
    """(Re)create the engine for the given URL and make sure the table exists"""
    global _engine
    url = url or get_settings().database_url
    if url.startswith("sqlite:///"):
        folder = os.path.dirname(url[len("sqlite:///"):])
        if folder:
            os.makedirs(folder, exist_ok=True)
    if _engine is not None:
        _engine.dispose()
    try:
        _engine = create_engine(url, pool_pre_ping=True)
        with _engine.begin() as cx:
            cx.execute(text(SCHEMA))
    except SQLAlchemyError as e:
        _engine = None
        logger.error(f"DB init failed: {e}")
        raise StorageError(f"Database initialization failed: {e}") from e
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        return configure()
    return _engine


def _to_row(part: PartRecord) -> Dict[str, Any]:
    return dict(
        id=part.id,
        part_number=part.part_number,
        part_name=part.part_name,
        color=part.color.value,
        workstation=part.workstation,
        models=json.dumps([m.value for m in part.models]),
        image_urls=json.dumps(part.image_urls),
        timestamp=part.timestamp,
    )


def _load_list(value) -> List[str]:
    if not value:
        return []
    return value if isinstance(value, list) else json.loads(value)


def _from_row(row) -> PartRecord:
    m = row._mapping
    return PartRecord(
        id=m["id"],
        part_number=m["part_number"] or "",
        part_name=m["part_name"] or "",
        color=m["color"],
        workstation=m["workstation"] or "",
        models=_load_list(m["models"]),
        image_urls=_load_list(m["image_urls"]),
        timestamp=m["timestamp"],
    )


def upsert_part(part: PartRecord) -> None:
    try:
        with get_engine().begin() as cx:
            cx.execute(text(UPSERT), _to_row(part))
    except SQLAlchemyError as e:
        logger.error(f"Upsert failed for part {part.id}: {e}")
        raise StorageError(f"Database error: {e}") from e


def list_parts() -> List[PartRecord]:
    """All parts, most recent first"""
    try:
        with get_engine().begin() as cx:
            rows = cx.execute(text(f"SELECT {COLUMNS} FROM parts ORDER BY timestamp DESC")).fetchall()
    except SQLAlchemyError as e:
        raise StorageError(f"Failed to fetch parts: {e}") from e
    return [_from_row(r) for r in rows]


def get_part(part_id: str) -> Optional[PartRecord]:
    try:
        with get_engine().begin() as cx:
            row = cx.execute(text(f"SELECT {COLUMNS} FROM parts WHERE id=:id"), {"id": part_id}).fetchone()
    except SQLAlchemyError as e:
        raise StorageError(f"Failed to fetch part {part_id}: {e}") from e
    return _from_row(row) if row else None


def delete_part(part_id: str) -> bool:
    try:
        with get_engine().begin() as cx:
            result = cx.execute(text("DELETE FROM parts WHERE id=:id"), {"id": part_id})
    except SQLAlchemyError as e:
        raise StorageError(f"Failed to delete part {part_id}: {e}") from e
    return result.rowcount > 0


def ping() -> bool:
    try:
        with get_engine().begin() as cx:
            cx.execute(text("SELECT 1"))
        return True
    except (SQLAlchemyError, StorageError) as e:
        logger.warning(f"Database ping failed: {e}")
        return False
