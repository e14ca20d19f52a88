"""
Supabase-backed guild settings store.

Guild settings live in a single key-value table:

    guild_settings(guild_id text, key text, value jsonb, unique (guild_id, key))

Process-wide settings use the reserved ``GLOBAL_SCOPE`` guild id.
The Supabase client is synchronous, so every call is pushed onto a worker
thread with ``asyncio.to_thread`` to keep the event loop free for job fires
and gateway signals.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from supabase import create_client, Client

from .exceptions import StorageError


logger = logging.getLogger(__name__)

GLOBAL_SCOPE = "__global__"
DEFAULT_TABLE = "guild_settings"
DEFAULT_PAGE_SIZE = 1000


class SupabaseClient:
    """
    Singleton wrapper for the Supabase client.

    The first instantiation creates the client; later calls reuse it.
    """

    _instance: Optional["SupabaseClient"] = None
    _client: Optional[Client] = None

    def __new__(cls, url: Optional[str] = None, key: Optional[str] = None) -> "SupabaseClient":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self, url: Optional[str] = None, key: Optional[str] = None):
        if self._client is None:
            if not url or not key:
                raise RuntimeError("Supabase URL and key are required on first use")
            self._client = create_client(url, key)

    @property
    def client(self) -> Client:
        """Get the Supabase client instance."""
        if self._client is None:
            raise RuntimeError("Supabase client not initialized")
        return self._client


class GuildSettingsStore:
    """
    Guild-scoped key-value accessor.

    ``db`` is anything exposing ``.client.table(name)`` with the postgrest
    query builder interface (the real ``SupabaseClient`` or a test double).
    """

    def __init__(self, db: Any, table: str = DEFAULT_TABLE, page_size: int = DEFAULT_PAGE_SIZE):
        self.db = db
        self.table = table
        self.page_size = page_size

    # ==========================================
    # SYNC QUERIES (run on a worker thread)
    # ==========================================

    def _select_value(self, guild_id: str, key: str) -> Optional[Any]:
        response = (
            self.db.client.table(self.table)
            .select("value")
            .eq("guild_id", guild_id)
            .eq("key", key)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return response.data[0].get("value")

    def _upsert_value(self, guild_id: str, key: str, value: Any) -> None:
        self.db.client.table(self.table).upsert(
            {
                "guild_id": guild_id,
                "key": key,
                "value": value,
                "updated_at": datetime.now(timezone.utc).isoformat(),
            },
            on_conflict="guild_id,key",
        ).execute()

    def _select_guild_ids(self, key: Optional[str]) -> list[str]:
        # PostgREST caps each response (max-rows, 1000 by default) and the cap may be
        # below page_size, so keep paging until an empty page
        seen: dict[str, None] = {}
        offset = 0
        while True:
            query = (
                self.db.client.table(self.table)
                .select("guild_id")
                .neq("guild_id", GLOBAL_SCOPE)
            )
            if key is not None:
                query = query.eq("key", key)
            response = query.order("guild_id").order("key").range(offset, offset + self.page_size - 1).execute()
            rows = response.data or []
            for row in rows:
                seen.setdefault(str(row["guild_id"]), None)
            if not rows:
                return list(seen)
            offset += len(rows)

    # ==========================================
    # ASYNC API
    # ==========================================

    async def get(self, guild_id: str, key: str) -> Optional[Any]:
        """Read one setting; ``None`` when it was never stored."""
        try:
            return await asyncio.to_thread(self._select_value, str(guild_id), key)
        except Exception as e:
            raise StorageError(
                f"Failed to read '{key}' for guild {guild_id}",
                guild_id=str(guild_id),
                key=key,
                operation="get",
                original_error=str(e),
            ) from e

    async def set(self, guild_id: str, key: str, value: Any) -> None:
        """Create or overwrite one setting."""
        try:
            await asyncio.to_thread(self._upsert_value, str(guild_id), key, value)
        except Exception as e:
            raise StorageError(
                f"Failed to write '{key}' for guild {guild_id}",
                guild_id=str(guild_id),
                key=key,
                operation="set",
                original_error=str(e),
            ) from e

    async def set_default(self, guild_id: Optional[str], key: str, value: Any) -> bool:
        """
        Store ``value`` only if ``key`` has no value yet.

        ``guild_id=None`` targets the global scope.

        Returns:
            True if the default was written, False if a value already existed
        """
        scope = GLOBAL_SCOPE if guild_id is None else str(guild_id)
        if await self.get(scope, key) is not None:
            return False
        await self.set(scope, key, value)
        logger.info(f"Default setting '{key}' stored for scope {scope}")
        return True

    async def guild_ids(self, key: Optional[str] = None) -> list[str]:
        """
        Guild ids with at least one stored setting, or with ``key`` set when given.

        Reads every page of the table, so large deployments are not truncated.
        """
        try:
            return await asyncio.to_thread(self._select_guild_ids, key)
        except Exception as e:
            raise StorageError(
                "Failed to list guilds",
                operation="guild_ids",
                original_error=str(e),
            ) from e
