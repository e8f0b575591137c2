"""
Repository implementations - Data access layer
"""
from datetime import datetime
from typing import Optional, List, Sequence, Set, Dict, Any

from ...domain.models import (
    UserProfile,
    FollowEdge,
    FollowStatus,
    Post,
    PostType,
    Comment,
    CollectionEntry,
    CollectionType,
    Notification,
    NotificationType,
)
from ...domain.repositories import (
    IUserRepository,
    IFollowRepository,
    IPostRepository,
    ICommentRepository,
    ICollectionRepository,
    INotificationRepository,
)
from .connection import Database, affected_rows

POST_COUNTERS = ("likes_count", "comments_count")

POST_COLUMNS = """
    id, user_id, vinyl_id, type, content, likes_count, comments_count,
    created_at, updated_at
"""
NOTIFICATION_COLUMNS = """
    id, user_id, type, actor_id, post_id, comment_id, read, created_at, updated_at
"""


def _row_to_user(row: Optional[Dict[str, Any]]) -> Optional[UserProfile]:
    if not row:
        return None
    return UserProfile(
        uid=row["uid"],
        username=row["username"],
        first_name=row.get("first_name"),
        last_name=row.get("last_name"),
        photo_url=row.get("photo_url"),
        bio=row.get("bio"),
        is_private=row.get("is_private", False),
    )


def _row_to_edge(row: Optional[Dict[str, Any]]) -> Optional[FollowEdge]:
    if not row:
        return None
    return FollowEdge(
        id=row["id"],
        follower_id=row["follower_id"],
        following_id=row["following_id"],
        status=FollowStatus(row["status"]),
        created_at=row["created_at"],
    )


def _row_to_post(row: Optional[Dict[str, Any]]) -> Optional[Post]:
    if not row:
        return None
    return Post(
        id=row["id"],
        user_id=row["user_id"],
        vinyl_id=row["vinyl_id"],
        type=PostType(row["type"]),
        content=row.get("content"),
        likes_count=row["likes_count"],
        comments_count=row["comments_count"],
        created_at=row["created_at"],
        updated_at=row.get("updated_at"),
    )


def _row_to_comment(row: Optional[Dict[str, Any]]) -> Optional[Comment]:
    if not row:
        return None
    return Comment(**row)


def _row_to_entry(row: Optional[Dict[str, Any]]) -> Optional[CollectionEntry]:
    if not row:
        return None
    return CollectionEntry(
        id=row["id"],
        user_id=row["user_id"],
        vinyl_id=row["vinyl_id"],
        type=CollectionType(row["type"]),
        notes=row.get("notes"),
        added_at=row["added_at"],
        updated_at=row.get("updated_at"),
    )


def _row_to_notification(row: Optional[Dict[str, Any]]) -> Optional[Notification]:
    if not row:
        return None
    return Notification(
        id=row["id"],
        user_id=row["user_id"],
        type=NotificationType(row["type"]),
        actor_id=row["actor_id"],
        post_id=row.get("post_id"),
        comment_id=row.get("comment_id"),
        read=row["read"],
        created_at=row["created_at"],
        updated_at=row.get("updated_at"),
    )


class UserRepository(IUserRepository):
    """User directory backed by the users table"""

    def __init__(self, db: Database):
        self.db = db

    async def find_by_id(self, uid: str) -> Optional[UserProfile]:
        row = await self.db.fetch_one(
            """
            SELECT uid, username, first_name, last_name, photo_url, bio, is_private
            FROM users
            WHERE uid = $1
            """,
            uid,
        )
        return _row_to_user(row)

    async def find_many(self, uids: Sequence[str]) -> List[UserProfile]:
        if not uids:
            return []
        rows = await self.db.fetch_all(
            """
            SELECT uid, username, first_name, last_name, photo_url, bio, is_private
            FROM users
            WHERE uid = ANY($1::text[])
            """,
            list(uids),
        )
        by_id = {row["uid"]: _row_to_user(row) for row in rows}
        return [by_id[uid] for uid in uids if uid in by_id]


class FollowRepository(IFollowRepository):
    """Follow edges backed by the follows table"""

    def __init__(self, db: Database):
        self.db = db

    async def find(self, follower_id: str, following_id: str) -> Optional[FollowEdge]:
        row = await self.db.fetch_one(
            """
            SELECT id, follower_id, following_id, status, created_at
            FROM follows
            WHERE follower_id = $1 AND following_id = $2
            """,
            follower_id,
            following_id,
        )
        return _row_to_edge(row)

    async def create(
        self, follower_id: str, following_id: str, status: FollowStatus
    ) -> Optional[FollowEdge]:
        row = await self.db.fetch_one(
            """
            INSERT INTO follows (follower_id, following_id, status)
            VALUES ($1, $2, $3)
            ON CONFLICT (follower_id, following_id) DO NOTHING
            RETURNING id, follower_id, following_id, status, created_at
            """,
            follower_id,
            following_id,
            status.value,
        )
        return _row_to_edge(row)

    async def update_status(self, edge_id: str, status: FollowStatus) -> bool:
        row = await self.db.fetch_one(
            """
            UPDATE follows
            SET status = $2
            WHERE id = $1
            RETURNING id
            """,
            edge_id,
            status.value,
        )
        return row is not None

    async def delete(self, edge_id: str) -> bool:
        row = await self.db.fetch_one(
            "DELETE FROM follows WHERE id = $1 RETURNING id",
            edge_id,
        )
        return row is not None

    async def list_followers(
        self, user_id: str, status: FollowStatus = FollowStatus.ACCEPTED
    ) -> List[FollowEdge]:
        rows = await self.db.fetch_all(
            """
            SELECT id, follower_id, following_id, status, created_at
            FROM follows
            WHERE following_id = $1 AND status = $2
            ORDER BY created_at DESC
            """,
            user_id,
            status.value,
        )
        return [_row_to_edge(row) for row in rows]

    async def list_following(
        self, user_id: str, status: FollowStatus = FollowStatus.ACCEPTED
    ) -> List[FollowEdge]:
        rows = await self.db.fetch_all(
            """
            SELECT id, follower_id, following_id, status, created_at
            FROM follows
            WHERE follower_id = $1 AND status = $2
            ORDER BY created_at DESC
            """,
            user_id,
            status.value,
        )
        return [_row_to_edge(row) for row in rows]

    async def count_followers(
        self, user_id: str, status: FollowStatus = FollowStatus.ACCEPTED
    ) -> int:
        row = await self.db.fetch_one(
            "SELECT COUNT(*) AS count FROM follows WHERE following_id = $1 AND status = $2",
            user_id,
            status.value,
        )
        return row["count"] if row else 0

    async def count_following(
        self, user_id: str, status: FollowStatus = FollowStatus.ACCEPTED
    ) -> int:
        row = await self.db.fetch_one(
            "SELECT COUNT(*) AS count FROM follows WHERE follower_id = $1 AND status = $2",
            user_id,
            status.value,
        )
        return row["count"] if row else 0


class PostRepository(IPostRepository):
    """Posts, likes and engagement counters"""

    def __init__(self, db: Database):
        self.db = db

    async def create(
        self, user_id: str, vinyl_id: str, post_type: PostType, content: Optional[str] = None
    ) -> Post:
        row = await self.db.fetch_one(
            f"""
            INSERT INTO posts (user_id, vinyl_id, type, content)
            VALUES ($1, $2, $3, $4)
            RETURNING {POST_COLUMNS}
            """,
            user_id,
            vinyl_id,
            post_type.value,
            content,
        )
        return _row_to_post(row)

    async def find_by_id(self, post_id: str) -> Optional[Post]:
        row = await self.db.fetch_one(
            f"SELECT {POST_COLUMNS} FROM posts WHERE id = $1",
            post_id,
        )
        return _row_to_post(row)

    async def find_page(
        self, author_ids: Sequence[str], before: Optional[datetime], limit: int
    ) -> List[Post]:
        rows = await self.db.fetch_all(
            f"""
            SELECT {POST_COLUMNS}
            FROM posts
            WHERE user_id = ANY($1::text[])
              AND ($2::timestamptz IS NULL OR created_at < $2)
            ORDER BY created_at DESC
            LIMIT $3
            """,
            list(author_ids),
            before,
            limit,
        )
        return [_row_to_post(row) for row in rows]

    async def delete(self, post_id: str) -> bool:
        # likes, comments and notifications go with it through ON DELETE CASCADE
        row = await self.db.fetch_one(
            "DELETE FROM posts WHERE id = $1 RETURNING id",
            post_id,
        )
        return row is not None

    async def add_like(self, user_id: str, post_id: str) -> bool:
        async with self.db.transaction() as conn:
            inserted = await conn.fetchrow(
                """
                INSERT INTO post_likes (user_id, post_id)
                VALUES ($1, $2)
                ON CONFLICT (user_id, post_id) DO NOTHING
                RETURNING id
                """,
                user_id,
                post_id,
            )
            if inserted is None:
                return False
            await conn.execute(
                """
                UPDATE posts
                SET likes_count = likes_count + 1, updated_at = NOW()
                WHERE id = $1
                """,
                post_id,
            )
            return True

    async def remove_like(self, user_id: str, post_id: str) -> bool:
        async with self.db.transaction() as conn:
            deleted = await conn.fetchrow(
                """
                DELETE FROM post_likes
                WHERE user_id = $1 AND post_id = $2
                RETURNING id
                """,
                user_id,
                post_id,
            )
            if deleted is None:
                return False
            await conn.execute(
                """
                UPDATE posts
                SET likes_count = GREATEST(likes_count - 1, 0), updated_at = NOW()
                WHERE id = $1
                """,
                post_id,
            )
            return True

    async def liked_post_ids(self, user_id: str, post_ids: Sequence[str]) -> Set[str]:
        if not post_ids:
            return set()
        rows = await self.db.fetch_all(
            """
            SELECT post_id FROM post_likes
            WHERE user_id = $1 AND post_id = ANY($2::text[])
            """,
            user_id,
            list(post_ids),
        )
        return {row["post_id"] for row in rows}

    async def increment_counter(self, post_id: str, field: str, delta: int) -> int:
        if field not in POST_COUNTERS:
            raise ValueError(f"Unknown counter: {field}")
        row = await self.db.fetch_one(
            f"""
            UPDATE posts
            SET {field} = GREATEST({field} + $2, 0), updated_at = NOW()
            WHERE id = $1
            RETURNING {field}
            """,
            post_id,
            delta,
        )
        return row[field] if row else 0


class CommentRepository(ICommentRepository):
    def __init__(self, db: Database):
        self.db = db

    async def create(self, post_id: str, user_id: str, content: str) -> Comment:
        row = await self.db.fetch_one(
            """
            INSERT INTO comments (post_id, user_id, content)
            VALUES ($1, $2, $3)
            RETURNING id, post_id, user_id, content, created_at, updated_at
            """,
            post_id,
            user_id,
            content,
        )
        return _row_to_comment(row)

    async def find_by_id(self, comment_id: str) -> Optional[Comment]:
        row = await self.db.fetch_one(
            """
            SELECT id, post_id, user_id, content, created_at, updated_at
            FROM comments WHERE id = $1
            """,
            comment_id,
        )
        return _row_to_comment(row)

    async def find_page(
        self, post_id: str, before: Optional[datetime], limit: int
    ) -> List[Comment]:
        rows = await self.db.fetch_all(
            """
            SELECT id, post_id, user_id, content, created_at, updated_at
            FROM comments
            WHERE post_id = $1
              AND ($2::timestamptz IS NULL OR created_at < $2)
            ORDER BY created_at DESC
            LIMIT $3
            """,
            post_id,
            before,
            limit,
        )
        return [_row_to_comment(row) for row in rows]

    async def delete(self, comment_id: str) -> bool:
        row = await self.db.fetch_one(
            "DELETE FROM comments WHERE id = $1 RETURNING id",
            comment_id,
        )
        return row is not None


class CollectionRepository(ICollectionRepository):
    """Collection and wishlist entries backed by user_vinyls"""

    def __init__(self, db: Database):
        self.db = db

    async def create(
        self, user_id: str, vinyl_id: str, entry_type: CollectionType, notes: Optional[str] = None
    ) -> CollectionEntry:
        row = await self.db.fetch_one(
            """
            INSERT INTO user_vinyls (user_id, vinyl_id, type, notes)
            VALUES ($1, $2, $3, $4)
            RETURNING id, user_id, vinyl_id, type, notes, added_at, updated_at
            """,
            user_id,
            vinyl_id,
            entry_type.value,
            notes,
        )
        return _row_to_entry(row)

    async def find_by_id(self, entry_id: str) -> Optional[CollectionEntry]:
        row = await self.db.fetch_one(
            """
            SELECT id, user_id, vinyl_id, type, notes, added_at, updated_at
            FROM user_vinyls WHERE id = $1
            """,
            entry_id,
        )
        return _row_to_entry(row)

    async def find(
        self, user_id: str, vinyl_id: str, entry_type: CollectionType
    ) -> Optional[CollectionEntry]:
        row = await self.db.fetch_one(
            """
            SELECT id, user_id, vinyl_id, type, notes, added_at, updated_at
            FROM user_vinyls
            WHERE user_id = $1 AND vinyl_id = $2 AND type = $3
            """,
            user_id,
            vinyl_id,
            entry_type.value,
        )
        return _row_to_entry(row)

    async def find_page(
        self,
        user_id: str,
        entry_type: CollectionType,
        before: Optional[datetime],
        limit: int,
    ) -> List[CollectionEntry]:
        rows = await self.db.fetch_all(
            """
            SELECT id, user_id, vinyl_id, type, notes, added_at, updated_at
            FROM user_vinyls
            WHERE user_id = $1 AND type = $2
              AND ($3::timestamptz IS NULL OR added_at < $3)
            ORDER BY added_at DESC
            LIMIT $4
            """,
            user_id,
            entry_type.value,
            before,
            limit,
        )
        return [_row_to_entry(row) for row in rows]

    async def delete(self, entry_id: str) -> bool:
        row = await self.db.fetch_one(
            "DELETE FROM user_vinyls WHERE id = $1 RETURNING id",
            entry_id,
        )
        return row is not None

    async def count(self, user_id: str, entry_type: CollectionType) -> int:
        row = await self.db.fetch_one(
            "SELECT COUNT(*) AS count FROM user_vinyls WHERE user_id = $1 AND type = $2",
            user_id,
            entry_type.value,
        )
        return row["count"] if row else 0


class NotificationRepository(INotificationRepository):
    def __init__(self, db: Database):
        self.db = db

    async def create(
        self,
        user_id: str,
        notification_type: NotificationType,
        actor_id: str,
        post_id: Optional[str] = None,
        comment_id: Optional[str] = None,
    ) -> Optional[Notification]:
        row = await self.db.fetch_one(
            f"""
            INSERT INTO notifications (user_id, type, actor_id, post_id, comment_id)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT DO NOTHING
            RETURNING {NOTIFICATION_COLUMNS}
            """,
            user_id,
            notification_type.value,
            actor_id,
            post_id,
            comment_id,
        )
        return _row_to_notification(row)

    async def find_by_id(self, notification_id: str) -> Optional[Notification]:
        row = await self.db.fetch_one(
            f"SELECT {NOTIFICATION_COLUMNS} FROM notifications WHERE id = $1",
            notification_id,
        )
        return _row_to_notification(row)

    async def find_page(
        self, user_id: str, before: Optional[datetime], limit: int
    ) -> List[Notification]:
        rows = await self.db.fetch_all(
            f"""
            SELECT {NOTIFICATION_COLUMNS}
            FROM notifications
            WHERE user_id = $1
              AND ($2::timestamptz IS NULL OR created_at < $2)
            ORDER BY created_at DESC
            LIMIT $3
            """,
            user_id,
            before,
            limit,
        )
        return [_row_to_notification(row) for row in rows]

    async def count_unread(self, user_id: str) -> int:
        row = await self.db.fetch_one(
            "SELECT COUNT(*) AS count FROM notifications WHERE user_id = $1 AND read = FALSE",
            user_id,
        )
        return row["count"] if row else 0

    async def mark_read(self, notification_id: str) -> bool:
        row = await self.db.fetch_one(
            """
            UPDATE notifications
            SET read = TRUE, updated_at = NOW()
            WHERE id = $1
            RETURNING id
            """,
            notification_id,
        )
        return row is not None

    async def mark_all_read(self, user_id: str) -> int:
        result = await self.db.execute(
            """
            UPDATE notifications
            SET read = TRUE, updated_at = NOW()
            WHERE user_id = $1 AND read = FALSE
            """,
            user_id,
        )
        return affected_rows(result)

    async def delete(self, notification_id: str) -> bool:
        row = await self.db.fetch_one(
            "DELETE FROM notifications WHERE id = $1 RETURNING id",
            notification_id,
        )
        return row is not None
