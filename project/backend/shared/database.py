"""
Database client.

Supabase PostgreSQL client and the script document repository. A script is
stored wholesale as one JSON document per row.
"""

import asyncio
from typing import Any, Callable, Optional

from supabase import Client, create_client

from shared.config import Settings
from shared.errors import ConfigError, NotFound, RetryableError
from shared.logging import get_logger
from shared.models.script import Script

logger = get_logger("database")


class DatabaseClient:
    """Supabase database client wrapper with retry logic."""

    def __init__(self, settings: Settings, client: Optional[Client] = None):
        try:
            self.client: Client = client or create_client(
                settings.supabase_url,
                settings.supabase_service_key
            )
        except Exception as e:
            raise ConfigError(f"Failed to initialize database client: {str(e)}") from e

    async def _execute_sync(self, func: Callable[[], Any], max_attempts: int = 3) -> Any:
        """
        Execute a synchronous Supabase operation in an async context.

        Args:
            func: Synchronous function to execute
            max_attempts: Maximum number of attempts

        Returns:
            Function result

        Raises:
            RetryableError: If operation fails after all attempts
        """
        for attempt in range(max_attempts):
            try:
                loop = asyncio.get_running_loop()
                return await loop.run_in_executor(None, func)
            except Exception as e:
                if attempt < max_attempts - 1:
                    # Exponential backoff: 2s, 4s, 8s
                    await asyncio.sleep(2 ** (attempt + 1))
                else:
                    raise RetryableError(
                        f"Database operation failed after {max_attempts} attempts: {str(e)}"
                    ) from e

    def table(self, table_name: str) -> "AsyncTableQueryBuilder":
        """Get a table query builder with async execution support."""
        return AsyncTableQueryBuilder(self, table_name)


class AsyncTableQueryBuilder:
    """Async wrapper for Supabase table query builder."""

    def __init__(self, db_client: DatabaseClient, table_name: str):
        self.db_client = db_client
        self.table_name = table_name
        self._query_builder = db_client.client.table(table_name)

    def select(self, *args, **kwargs):
        self._query_builder = self._query_builder.select(*args, **kwargs)
        return self

    def upsert(self, *args, **kwargs):
        self._query_builder = self._query_builder.upsert(*args, **kwargs)
        return self

    def delete(self, *args, **kwargs):
        self._query_builder = self._query_builder.delete(*args, **kwargs)
        return self

    def eq(self, *args, **kwargs):
        self._query_builder = self._query_builder.eq(*args, **kwargs)
        return self

    def order(self, *args, **kwargs):
        self._query_builder = self._query_builder.order(*args, **kwargs)
        return self

    def limit(self, *args, **kwargs):
        self._query_builder = self._query_builder.limit(*args, **kwargs)
        return self

    async def execute(self, max_attempts: int = 3) -> Any:
        """Execute the query asynchronously."""
        query_builder = self._query_builder
        return await self.db_client._execute_sync(
            lambda: query_builder.execute(),
            max_attempts
        )


class ScriptRepository:
    """Reads and writes script documents."""

    def __init__(self, db: DatabaseClient, table_name: str = "ai_scripts"):
        self.db = db
        self.table_name = table_name

    async def save(self, script: Script) -> None:
        """Persist the full script document, replacing any previous version."""
        script.touch()
        row = {
            "id": script.id,
            "user_id": script.user_id,
            "draft_id": script.draft_id,
            "status": script.status.value,
            "document": script.model_dump(mode="json"),
            "updated_at": script.updated_at.isoformat(),
        }
        await self.db.table(self.table_name).upsert(row).execute()
        logger.debug(
            "Saved script document",
            extra={"script_id": script.id, "status": script.status.value}
        )

    async def get(self, script_id: str) -> Script:
        """
        Load a script by id.

        Raises:
            NotFound: If no script with this id exists
        """
        result = await (
            self.db.table(self.table_name)
            .select("document")
            .eq("id", script_id)
            .limit(1)
            .execute()
        )
        rows = getattr(result, "data", None) or []
        if not rows:
            raise NotFound(f"Script {script_id} not found", script_id=script_id)
        return Script.model_validate(rows[0]["document"])

    async def find_by_draft(self, draft_id: str, user_id: str) -> Optional[Script]:
        """Most recently updated script for a draft, or None."""
        result = await (
            self.db.table(self.table_name)
            .select("document")
            .eq("draft_id", draft_id)
            .eq("user_id", user_id)
            .order("updated_at", desc=True)
            .limit(1)
            .execute()
        )
        rows = getattr(result, "data", None) or []
        if not rows:
            return None
        return Script.model_validate(rows[0]["document"])

    async def delete(self, script_id: str) -> None:
        await self.db.table(self.table_name).delete().eq("id", script_id).execute()
        logger.info("Deleted script document", extra={"script_id": script_id})
