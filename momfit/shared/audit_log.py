"""
Generation Audit Log - records every AI generation attempt.

Each call to an LLM-backed feature (profile generation, tagging,
recommendations, interest vectors) writes one row to the
``ai_generation_logs`` table with its status, inputs and outputs.
Writing the audit row never raises: a failed write is logged and dropped
so it cannot break the feature being audited.
"""

import logging
from typing import Optional

from .constants import MAX_LOG_DETAIL_LENGTH
from .interfaces import IDataStore
from .models import utc_now_iso

logger = logging.getLogger(__name__)

AUDIT_TABLE = "ai_generation_logs"


class GenerationAuditLog:
    """
    Append-only audit trail stored alongside community data.

    Row format:
    - operation_type, status ("started" | "success" | "error")
    - community_id / user_id when known
    - error_message, input_data, output_data
    - created_at
    """

    def __init__(self, store: IDataStore):
        self._store = store

    async def log(
        self,
        operation_type: str,
        status: str,
        community_id: Optional[str] = None,
        user_id: Optional[str] = None,
        error_message: Optional[str] = None,
        input_data: Optional[dict] = None,
        output_data: Optional[dict] = None,
    ) -> Optional[dict]:
        """Append an entry. Returns the stored row, or None if the write failed."""
        row = {
            "operation_type": operation_type,
            "status": status,
            "community_id": community_id,
            "user_id": user_id,
            "error_message": error_message[:MAX_LOG_DETAIL_LENGTH] if error_message else None,
            "input_data": input_data or {},
            "output_data": output_data,
            "created_at": utc_now_iso(),
        }
        try:
            return await self._store.insert(AUDIT_TABLE, row)
        except Exception as e:
            logger.error(f"Failed to write audit entry {operation_type}/{status}: {e}")
            return None

    async def read_all(
        self,
        operation_type: Optional[str] = None,
        community_id: Optional[str] = None,
    ) -> list[dict]:
        """Read audit entries, newest first."""
        filters: dict = {}
        if operation_type:
            filters["operation_type"] = operation_type
        if community_id:
            filters["community_id"] = community_id
        return await self._store.select(
            AUDIT_TABLE, filters, order_by="created_at", descending=True
        )
