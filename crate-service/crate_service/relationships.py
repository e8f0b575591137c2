"""
Relationship store - follow edges and their pending/accepted lifecycle

An edge goes from nothing to ``pending`` (private target) or straight to
``accepted`` (public target); ``pending`` becomes ``accepted`` on accept;
unfollow and reject delete the edge from either state.
"""
from typing import List, Optional, TYPE_CHECKING
from dataclasses import asdict
import logging

from .cache import RedisCache
from .domain.models import (
    FollowCheck,
    FollowEdge,
    FollowStats,
    FollowStatus,
    NotificationType,
    PendingRequest,
    Relationship,
    RelationshipType,
    UserProfile,
)
from .domain.repositories import IFollowRepository, IUserRepository
from .exceptions import (
    RequestNotFoundError,
    SelfFollowError,
    TransientIOError,
    UserNotFoundError,
)
from .realtime import ChangeEvent, ChangePublisher

if TYPE_CHECKING:
    from .services import NotificationService

logger = logging.getLogger(__name__)

FOLLOWS_TABLE = "follows"


class RelationshipStore:
    """Business logic for follow relationships"""

    def __init__(
        self,
        follows: IFollowRepository,
        users: IUserRepository,
        cache: RedisCache,
        changes: ChangePublisher,
        notifications: Optional["NotificationService"] = None,
    ):
        self.follows = follows
        self.users = users
        self.cache = cache
        self.changes = changes
        self.notifications = notifications

    async def follow(self, follower_id: str, following_id: str) -> FollowEdge:
        """
        Follow a user

        If an edge already exists it is returned unchanged. Otherwise the
        edge is ``pending`` when the target account is private and
        ``accepted`` when it is public.

        Raises:
            SelfFollowError: follower and target are the same user
            UserNotFoundError: target does not exist
            TransientIOError: a concurrent follow of the pair won and was undone
        """
        if follower_id == following_id:
            raise SelfFollowError()

        existing = await self.follows.find(follower_id, following_id)
        if existing:
            logger.debug(f"Follow {follower_id} -> {following_id} already exists")
            return existing

        target = await self.users.find_by_id(following_id)
        if target is None:
            raise UserNotFoundError(f"User {following_id} not found")

        status = FollowStatus.PENDING if target.is_private else FollowStatus.ACCEPTED
        edge = await self.follows.create(follower_id, following_id, status)
        if edge is None:
            # Lost a race with a concurrent follow of the same pair
            edge = await self.follows.find(follower_id, following_id)
            if edge is None:
                # The winning edge was removed again before we could read it
                raise TransientIOError(
                    f"Follow {follower_id} -> {following_id} conflicted, please retry"
                )
            return edge

        logger.info(f"[Follow] {follower_id} -> {following_id} ({status.value})")
        await self.cache.invalidate_edge(follower_id, following_id)
        await self.changes.publish_change(ChangeEvent.insert(FOLLOWS_TABLE, edge))
        if edge.is_accepted():
            await self._notify_new_follower(edge)
        return edge

    async def unfollow(self, follower_id: str, following_id: str) -> None:
        """Remove the edge if there is one, pending or accepted"""
        edge = await self.follows.find(follower_id, following_id)
        if edge is None:
            logger.debug(f"Unfollow {follower_id} -> {following_id}: no edge")
            return

        if await self.follows.delete(edge.id):
            logger.info(f"[Unfollow] {follower_id} x {following_id}")
            await self.cache.invalidate_edge(follower_id, following_id)
            await self.changes.publish_change(ChangeEvent.delete(FOLLOWS_TABLE, edge))

    async def accept_request(self, follower_id: str, following_id: str) -> None:
        """
        Accept a pending follow request

        Accepting an already accepted edge does nothing.

        Raises:
            RequestNotFoundError: there is no edge for the pair
        """
        edge = await self.follows.find(follower_id, following_id)
        if edge is None:
            raise RequestNotFoundError()
        if edge.is_accepted():
            logger.debug(f"Request {follower_id} -> {following_id} already accepted")
            return

        if not await self.follows.update_status(edge.id, FollowStatus.ACCEPTED):
            # Deleted between the read and the update
            raise RequestNotFoundError()

        edge.status = FollowStatus.ACCEPTED
        logger.info(f"[Accept] {follower_id} -> {following_id}")
        await self.cache.invalidate_edge(follower_id, following_id)
        await self.changes.publish_change(ChangeEvent.update(FOLLOWS_TABLE, edge))
        await self._notify_new_follower(edge)

    async def reject_request(self, follower_id: str, following_id: str) -> None:
        """Reject a follow request; same as the follower unfollowing"""
        await self.unfollow(follower_id, following_id)

    async def is_following(self, follower_id: str, following_id: str) -> FollowCheck:
        cached = await self.cache.get_follow_check(follower_id, following_id)
        if cached:
            return FollowCheck(
                is_following=cached["is_following"],
                status=FollowStatus(cached["status"]) if cached.get("status") else None,
                edge_id=cached.get("edge_id"),
            )

        edge = await self.follows.find(follower_id, following_id)
        if edge is None:
            check = FollowCheck(is_following=False)
        else:
            check = FollowCheck(is_following=True, status=edge.status, edge_id=edge.id)

        await self.cache.set_follow_check(
            follower_id,
            following_id,
            {
                "is_following": check.is_following,
                "status": check.status.value if check.status else None,
                "edge_id": check.edge_id,
            },
        )
        return check

    async def get_relationship(self, user_id: str, target_user_id: str) -> Relationship:
        """Both directions between two users, for follow-button state"""
        outgoing = await self.follows.find(user_id, target_user_id)
        incoming = await self.follows.find(target_user_id, user_id)

        is_following = outgoing is not None and outgoing.is_accepted()
        is_followed_by = incoming is not None and incoming.is_accepted()
        is_pending = outgoing is not None and outgoing.is_pending()
        is_requested = incoming is not None and incoming.is_pending()
        is_mutual = is_following and is_followed_by

        if is_mutual:
            relationship = RelationshipType.MUTUAL
        elif is_following:
            relationship = RelationshipType.FOLLOWING
        elif is_followed_by:
            relationship = RelationshipType.FOLLOWED_BY
        elif is_pending:
            relationship = RelationshipType.PENDING
        elif is_requested:
            relationship = RelationshipType.REQUESTED
        else:
            relationship = RelationshipType.NONE

        return Relationship(
            user_id=user_id,
            target_user_id=target_user_id,
            relationship=relationship,
            is_following=is_following,
            is_followed_by=is_followed_by,
            is_mutual=is_mutual,
            is_pending=is_pending,
            is_requested=is_requested,
        )

    async def list_followers(self, user_id: str) -> List[UserProfile]:
        """Users with an accepted edge to user_id, newest first"""
        edges = await self.follows.list_followers(user_id)
        return await self.users.find_many([edge.follower_id for edge in edges])

    async def list_following(self, user_id: str) -> List[UserProfile]:
        """Users user_id follows (accepted), newest first"""
        edges = await self.follows.list_following(user_id)
        return await self.users.find_many([edge.following_id for edge in edges])

    async def following_ids(self, user_id: str) -> List[str]:
        edges = await self.follows.list_following(user_id)
        return [edge.following_id for edge in edges]

    async def list_pending_requests(self, user_id: str) -> List[PendingRequest]:
        """Requests waiting for user_id to answer, newest first"""
        edges = await self.follows.list_followers(user_id, status=FollowStatus.PENDING)
        users = await self.users.find_many([edge.follower_id for edge in edges])
        by_id = {user.uid: user for user in users}
        return [
            PendingRequest(edge=edge, user=by_id[edge.follower_id])
            for edge in edges
            if edge.follower_id in by_id
        ]

    async def can_view(self, viewer_id: str, owner: UserProfile) -> bool:
        """Private profiles are visible to their owner and accepted followers"""
        if not owner.is_private or viewer_id == owner.uid:
            return True
        edge = await self.follows.find(viewer_id, owner.uid)
        return edge is not None and edge.is_accepted()

    async def stats(self, user_id: str) -> FollowStats:
        cached = await self.cache.get_stats(user_id)
        if cached:
            return FollowStats(**cached)

        stats = FollowStats(
            user_id=user_id,
            followers_count=await self.follows.count_followers(user_id),
            following_count=await self.follows.count_following(user_id),
            pending_requests_count=await self.follows.count_followers(
                user_id, status=FollowStatus.PENDING
            ),
        )
        await self.cache.set_stats(user_id, asdict(stats))
        return stats

    async def _notify_new_follower(self, edge: FollowEdge):
        if self.notifications is not None:
            await self.notifications.notify(
                user_id=edge.following_id,
                notification_type=NotificationType.NEW_FOLLOWER,
                actor_id=edge.follower_id,
            )
