"""
Database connection and operations
"""
import asyncpg
from contextlib import asynccontextmanager
from typing import Optional, List, Dict, Any, AsyncIterator
import logging

from ...config import settings
from ...exceptions import TransientIOError

logger = logging.getLogger(__name__)

BACKEND_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        uid TEXT PRIMARY KEY,
        username TEXT NOT NULL UNIQUE,
        first_name TEXT,
        last_name TEXT,
        photo_url TEXT,
        bio TEXT,
        is_private BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS follows (
        id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
        follower_id TEXT NOT NULL REFERENCES users (uid) ON DELETE CASCADE,
        following_id TEXT NOT NULL REFERENCES users (uid) ON DELETE CASCADE,
        status TEXT NOT NULL CHECK (status IN ('pending', 'accepted')),
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        UNIQUE (follower_id, following_id),
        CHECK (follower_id <> following_id)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_follows_following_status
    ON follows (following_id, status, created_at DESC)
    """,
    """
    CREATE TABLE IF NOT EXISTS posts (
        id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
        user_id TEXT NOT NULL REFERENCES users (uid) ON DELETE CASCADE,
        vinyl_id TEXT NOT NULL,
        type TEXT NOT NULL,
        content TEXT,
        likes_count INTEGER NOT NULL DEFAULT 0 CHECK (likes_count >= 0),
        comments_count INTEGER NOT NULL DEFAULT 0 CHECK (comments_count >= 0),
        created_at TIMESTAMPTZ NOT NULL DEFAULT clock_timestamp(),
        updated_at TIMESTAMPTZ
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_posts_user_created
    ON posts (user_id, created_at DESC)
    """,
    """
    CREATE TABLE IF NOT EXISTS post_likes (
        id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
        user_id TEXT NOT NULL REFERENCES users (uid) ON DELETE CASCADE,
        post_id TEXT NOT NULL REFERENCES posts (id) ON DELETE CASCADE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        UNIQUE (user_id, post_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS comments (
        id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
        post_id TEXT NOT NULL REFERENCES posts (id) ON DELETE CASCADE,
        user_id TEXT NOT NULL REFERENCES users (uid) ON DELETE CASCADE,
        content TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT clock_timestamp(),
        updated_at TIMESTAMPTZ
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_vinyls (
        id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
        user_id TEXT NOT NULL REFERENCES users (uid) ON DELETE CASCADE,
        vinyl_id TEXT NOT NULL,
        type TEXT NOT NULL CHECK (type IN ('collection', 'wishlist')),
        notes TEXT,
        added_at TIMESTAMPTZ NOT NULL DEFAULT clock_timestamp(),
        updated_at TIMESTAMPTZ,
        UNIQUE (user_id, vinyl_id, type)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_user_vinyls_user_type_added
    ON user_vinyls (user_id, type, added_at DESC)
    """,
    """
    CREATE TABLE IF NOT EXISTS notifications (
        id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
        user_id TEXT NOT NULL REFERENCES users (uid) ON DELETE CASCADE,
        type TEXT NOT NULL,
        actor_id TEXT NOT NULL REFERENCES users (uid) ON DELETE CASCADE,
        post_id TEXT REFERENCES posts (id) ON DELETE CASCADE,
        comment_id TEXT REFERENCES comments (id) ON DELETE CASCADE,
        read BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT clock_timestamp(),
        updated_at TIMESTAMPTZ
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_notifications_event
    ON notifications (user_id, type, actor_id, COALESCE(post_id, ''), COALESCE(comment_id, ''))
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_notifications_user_created
    ON notifications (user_id, created_at DESC)
    """,
]


class Database:
    """PostgreSQL database connection manager using asyncpg"""

    def __init__(self):
        self.pool: Optional[asyncpg.Pool] = None

    async def connect(self):
        """Create database connection pool"""
        try:
            self.pool = await asyncpg.create_pool(
                settings.DATABASE_URL,
                min_size=1,
                max_size=settings.DB_POOL_SIZE,
                command_timeout=60,
            )
            logger.info("Database connection pool created successfully")

            await self._init_schema()
        except Exception as e:
            logger.error(f"Failed to connect to database: {e}")
            raise

    async def disconnect(self):
        """Close database connection pool"""
        if self.pool:
            await self.pool.close()
            logger.info("Database connection pool closed")

    async def _init_schema(self):
        """Initialize database schema"""
        async with self.pool.acquire() as conn:
            for statement in SCHEMA:
                await conn.execute(statement)
        logger.info("Database schema initialized successfully")

    async def fetch_one(self, query: str, *args) -> Optional[Dict[str, Any]]:
        """Fetch a single row"""
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(query, *args)
                return dict(row) if row else None
        except BACKEND_ERRORS as e:
            logger.error(f"Query failed: {e}")
            raise TransientIOError("Database request failed") from e

    async def fetch_all(self, query: str, *args) -> List[Dict[str, Any]]:
        """Fetch all rows"""
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(query, *args)
                return [dict(row) for row in rows]
        except BACKEND_ERRORS as e:
            logger.error(f"Query failed: {e}")
            raise TransientIOError("Database request failed") from e

    async def execute(self, query: str, *args) -> str:
        """Execute a query"""
        try:
            async with self.pool.acquire() as conn:
                return await conn.execute(query, *args)
        except BACKEND_ERRORS as e:
            logger.error(f"Statement failed: {e}")
            raise TransientIOError("Database request failed") from e

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """Run several statements atomically on one connection"""
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    yield conn
        except BACKEND_ERRORS as e:
            logger.error(f"Transaction failed: {e}")
            raise TransientIOError("Database request failed") from e


def affected_rows(status: str) -> int:
    """Parse a command status like "UPDATE 3" into its row count"""
    return int(status.split()[-1]) if status else 0


# Global database instance
db = Database()


async def get_db() -> Database:
    """Dependency for getting database instance"""
    return db
