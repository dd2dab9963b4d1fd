"""
Abstract interfaces (Ports) for MomFit.
Following Dependency Inversion Principle - depend on abstractions, not concretions.
"""

from abc import ABC, abstractmethod
from typing import Optional, Sequence


class ILLMClient(ABC):
    """Interface for chat-completion LLM providers."""

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        system: str = "",
        json_mode: bool = False,
    ) -> dict:
        """Send a prompt and return {text, error, input_tokens, output_tokens}."""

    @abstractmethod
    async def embed(self, text: str) -> dict:
        """Return {embedding, error} for the given text."""

    @abstractmethod
    async def get_usage(self) -> dict:
        """Return current token usage statistics."""

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        """True when the provider has credentials to make real calls."""


class IDataStore(ABC):
    """Interface for table-oriented row storage (REST-over-Postgres or local file).

    ``filters`` is an equality map: a list value means "column IN list",
    ``None`` means "column IS NULL".
    """

    @abstractmethod
    async def select(
        self,
        table: str,
        filters: Optional[dict] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict]:
        """Return rows matching all filters."""

    @abstractmethod
    async def get(self, table: str, filters: dict) -> Optional[dict]:
        """Return the first matching row or None."""

    @abstractmethod
    async def insert(self, table: str, row: dict) -> dict:
        """Insert a row, assigning id/created_at when absent. Returns the stored row."""

    @abstractmethod
    async def update(self, table: str, filters: dict, values: dict) -> list[dict]:
        """Update matching rows and return them."""

    @abstractmethod
    async def upsert(self, table: str, row: dict, on_conflict: Sequence[str]) -> dict:
        """Update the row matching the on_conflict columns, or insert it."""

    @abstractmethod
    async def delete(self, table: str, filters: dict) -> int:
        """Delete matching rows and return how many were removed."""
