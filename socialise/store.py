"""
Post / PlatformLink store.

Thin repository over a SQLAlchemy session. Methods flush but never commit:
the caller (route, queue manager or worker) owns the transaction.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, selectinload

from .logging_config import db_logger
from .models.activity import Activity
from .models.post import Post, PlatformLink, PostStatus, PostType, PublishError
from .models.social_account import SocialAccount

_UNSET = object()


@dataclass
class LinkResult:
    """Outcome written back to one PlatformLink."""
    status: PostStatus
    platform_post_id: Optional[str] = None
    platform_post_url: Optional[str] = None
    published_at: Optional[datetime] = None
    error_message: Optional[str] = None


class PostStore:
    def __init__(self, session: Session):
        self.session = session

    # ============================================================
    # SOCIAL ACCOUNTS
    # ============================================================

    def create_social_account(
        self,
        workspace_id: str,
        platform: str,
        name: str,
        platform_account_id: Optional[str] = None,
        access_token: Optional[str] = None,
    ) -> SocialAccount:
        account = SocialAccount(
            workspace_id=workspace_id,
            platform=platform.lower(),
            name=name,
            platform_account_id=platform_account_id,
            access_token=access_token,
        )
        self.session.add(account)
        self.session.flush()
        return account

    def get_social_account(self, account_id: str, workspace_id: Optional[str] = None) -> Optional[SocialAccount]:
        query = select(SocialAccount).where(SocialAccount.id == account_id)
        if workspace_id is not None:
            query = query.where(SocialAccount.workspace_id == workspace_id)
        return self.session.execute(query).scalar_one_or_none()

    def list_social_accounts(self, workspace_id: str) -> List[SocialAccount]:
        return list(self.session.execute(
            select(SocialAccount)
            .where(SocialAccount.workspace_id == workspace_id)
            .order_by(SocialAccount.created_at)
        ).scalars())

    # ============================================================
    # POSTS
    # ============================================================

    def create_post(
        self,
        workspace_id: str,
        caption: str,
        social_account_ids: Sequence[str],
        post_type: str = PostType.FEED.value,
        media_urls: Optional[Sequence[str]] = None,
    ) -> Post:
        """Create a draft post with one PlatformLink per target account.

        The target set is fixed here; scheduling never adds targets.
        """
        post_type = PostType(post_type.upper()).value
        if not (caption or "").strip() and post_type != PostType.STORY.value:
            raise ValueError("Caption is required")

        account_ids = list(dict.fromkeys(social_account_ids))
        if not account_ids:
            raise ValueError("At least one platform account is required")

        accounts = self.session.execute(
            select(SocialAccount.id).where(
                SocialAccount.id.in_(account_ids),
                SocialAccount.workspace_id == workspace_id,
            )
        ).scalars().all()
        unknown = set(account_ids) - set(accounts)
        if unknown:
            raise ValueError(f"Unknown social accounts: {', '.join(sorted(unknown))}")

        post = Post(
            workspace_id=workspace_id,
            caption=caption or "",
            post_type=post_type,
            media_urls=list(media_urls or []),
            status=PostStatus.DRAFT.value,
        )
        post.platform_links = [
            PlatformLink(social_account_id=account_id, position=i, status=PostStatus.DRAFT.value)
            for i, account_id in enumerate(account_ids)
        ]
        self.session.add(post)
        self.session.flush()
        db_logger.debug("Post created", post_id=post.id, workspace_id=workspace_id, targets=len(account_ids))
        return post

    def find_post(self, post_id: str, workspace_id: Optional[str] = None) -> Optional[Post]:
        """Load a post with its platform links (and their accounts)."""
        query = (
            select(Post)
            .where(Post.id == post_id)
            .options(selectinload(Post.platform_links).selectinload(PlatformLink.social_account))
            .execution_options(populate_existing=True)
        )
        if workspace_id is not None:
            query = query.where(Post.workspace_id == workspace_id)
        return self.session.execute(query).scalar_one_or_none()

    def update_post_status(
        self,
        post_id: str,
        status: PostStatus,
        scheduled_at=_UNSET,
        published_at=_UNSET,
        expected: Optional[Iterable[PostStatus]] = None,
    ) -> bool:
        """Set a post's status; with ``expected`` only if it currently matches.

        Returns False when no row was updated (missing post or the current
        status is not one of ``expected``).
        """
        values = {"status": PostStatus(status).value}
        if scheduled_at is not _UNSET:
            values["scheduled_at"] = scheduled_at
        if published_at is not _UNSET:
            values["published_at"] = published_at

        stmt = update(Post).where(Post.id == post_id)
        if expected is not None:
            stmt = stmt.where(Post.status.in_([PostStatus(s).value for s in expected]))
        result = self.session.execute(stmt.values(**values).execution_options(synchronize_session="fetch"))
        return result.rowcount == 1

    def count_posts(self, workspace_id: str, status: Optional[PostStatus] = None) -> int:
        query = select(func.count()).select_from(Post).where(Post.workspace_id == workspace_id)
        if status is not None:
            query = query.where(Post.status == PostStatus(status).value)
        return self.session.execute(query).scalar_one()

    def list_posts(
        self,
        workspace_id: str,
        status: Optional[PostStatus] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> List[Post]:
        query = (
            select(Post)
            .where(Post.workspace_id == workspace_id)
            .options(selectinload(Post.platform_links).selectinload(PlatformLink.social_account))
            .order_by(Post.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        if status is not None:
            query = query.where(Post.status == PostStatus(status).value)
        return list(self.session.execute(query).scalars())

    def list_upcoming(self, workspace_id: str, now: datetime, limit: int = 10) -> List[Post]:
        return list(self.session.execute(
            select(Post)
            .where(
                Post.workspace_id == workspace_id,
                Post.status == PostStatus.SCHEDULED.value,
                Post.scheduled_at >= now,
            )
            .options(selectinload(Post.platform_links).selectinload(PlatformLink.social_account))
            .order_by(Post.scheduled_at.asc())
            .limit(limit)
        ).scalars())

    # ============================================================
    # PLATFORM LINKS
    # ============================================================

    def list_platform_links_for_post(self, post_id: str) -> List[PlatformLink]:
        return list(self.session.execute(
            select(PlatformLink)
            .where(PlatformLink.post_id == post_id)
            .options(selectinload(PlatformLink.social_account))
            .order_by(PlatformLink.position)
            .execution_options(populate_existing=True)
        ).scalars())

    def mark_platform_links(
        self,
        post_id: str,
        status: PostStatus,
        social_account_ids: Optional[Iterable[str]] = None,
        exclude: Iterable[PostStatus] = (),
    ) -> int:
        """Bulk-set link statuses, optionally limited to some accounts."""
        stmt = update(PlatformLink).where(PlatformLink.post_id == post_id)
        if social_account_ids is not None:
            stmt = stmt.where(PlatformLink.social_account_id.in_(list(social_account_ids)))
        excluded = [PostStatus(s).value for s in exclude]
        if excluded:
            stmt = stmt.where(PlatformLink.status.not_in(excluded))
        result = self.session.execute(
            stmt.values(status=PostStatus(status).value).execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    def claim_platform_links(self, post_id: str, social_account_ids: Iterable[str]) -> List[str]:
        """Move links to PUBLISHING one by one, skipping any already PUBLISHING or PUBLISHED.

        Returns the account ids this caller won. A link held by another run
        is never handed out twice.
        """
        claimed = []
        busy = [PostStatus.PUBLISHING.value, PostStatus.PUBLISHED.value]
        for account_id in social_account_ids:
            result = self.session.execute(
                update(PlatformLink)
                .where(
                    PlatformLink.post_id == post_id,
                    PlatformLink.social_account_id == account_id,
                    PlatformLink.status.not_in(busy),
                )
                .values(status=PostStatus.PUBLISHING.value)
                .execution_options(synchronize_session="fetch")
            )
            if result.rowcount == 1:
                claimed.append(account_id)
        return claimed

    def update_platform_link_result(self, post_id: str, social_account_id: str, result: LinkResult) -> None:
        values = {
            "status": PostStatus(result.status).value,
            "error_message": result.error_message,
        }
        if result.status == PostStatus.PUBLISHED:
            values.update(
                platform_post_id=result.platform_post_id,
                platform_post_url=result.platform_post_url,
                published_at=result.published_at,
            )
        self.session.execute(
            update(PlatformLink)
            .where(PlatformLink.post_id == post_id, PlatformLink.social_account_id == social_account_id)
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )

    # ============================================================
    # AUDIT
    # ============================================================

    def record_publish_error(self, post_id: str, social_account_id: str, platform: str, message: str) -> PublishError:
        error = PublishError(
            post_id=post_id,
            social_account_id=social_account_id,
            platform=platform,
            error_code="PUBLISH_FAILED",
            error_human=message,
            suggestion="Please check your account connection and try again.",
        )
        self.session.add(error)
        self.session.flush()
        return error

    def list_publish_errors(self, post_id: str) -> List[PublishError]:
        return list(self.session.execute(
            select(PublishError).where(PublishError.post_id == post_id).order_by(PublishError.created_at.desc())
        ).scalars())

    def record_activity(self, workspace_id: str, action: str, post: Post, details: Optional[str] = None) -> Activity:
        caption = post.caption or ""
        activity = Activity(
            workspace_id=workspace_id,
            action=action,
            resource_type="post",
            resource_id=post.id,
            resource_name=caption[:50] + ("..." if len(caption) > 50 else ""),
            details=details,
        )
        self.session.add(activity)
        self.session.flush()
        return activity
