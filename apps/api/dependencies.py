from functools import lru_cache

from packages.catalog.service import CatalogService
from packages.settings import Settings, get_settings


@lru_cache()
def get_catalog_service() -> CatalogService:
    return CatalogService()


def get_app_settings() -> Settings:
    return get_settings()


def get_ai_client_override():
    """Hosted AI client to use instead of building one from settings (None in production)"""
    return None
