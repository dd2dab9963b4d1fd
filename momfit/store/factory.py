"""Data store factory: picks the backend named in StoreConfig."""

import logging

from momfit.shared.config import StoreBackend, StoreConfig
from momfit.shared.interfaces import IDataStore
from momfit.store.json_store import JSONDataStore
from momfit.store.postgrest_store import PostgrestDataStore

logger = logging.getLogger(__name__)


def create_data_store(config: StoreConfig) -> IDataStore:
    """PostgREST when fully configured, otherwise the local JSON file."""
    if config.backend == StoreBackend.POSTGREST:
        if config.postgrest_url and config.service_key:
            logger.info(f"Using PostgREST data store at {config.postgrest_url}")
            return PostgrestDataStore(config)
        logger.warning("PostgREST backend selected but SUPABASE_URL/SERVICE_ROLE_KEY missing; using JSON store")
    logger.info(f"Using JSON data store at {config.file_path}")
    return JSONDataStore(config)
