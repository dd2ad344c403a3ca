"""
Social account routes: connect accounts that posts are published to.
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ..config import get_settings
from ..database import get_db
from ..dependencies import get_workspace_id
from ..limiter import limiter
from ..responses import not_found, require, success
from ..schemas.posts import AccountCreate
from ..store import PostStore
from .serializers import account_to_dict

settings = get_settings()

router = APIRouter(prefix="/api/accounts", tags=["accounts"])


@router.get("")
def list_accounts(
    workspace_id: str = Depends(get_workspace_id),
    db: Session = Depends(get_db),
):
    """List the workspace's connected social accounts."""
    accounts = PostStore(db).list_social_accounts(workspace_id)
    return success([account_to_dict(a) for a in accounts])


@router.post("", status_code=201)
@limiter.limit(settings.rate_limit)
def create_account(
    request: Request,
    account_data: AccountCreate,
    workspace_id: str = Depends(get_workspace_id),
    db: Session = Depends(get_db),
):
    """Connect a social account to the workspace."""
    require(account_data.platform, "platform")
    require(account_data.name, "name")

    account = PostStore(db).create_social_account(
        workspace_id,
        platform=account_data.platform,
        name=account_data.name,
        platform_account_id=account_data.platform_account_id,
        access_token=account_data.access_token,
    )
    db.commit()
    return success(account_to_dict(account), message="Account connected")


@router.get("/{account_id}")
def get_account(
    account_id: str,
    workspace_id: str = Depends(get_workspace_id),
    db: Session = Depends(get_db),
):
    account = PostStore(db).get_social_account(account_id, workspace_id)
    if account is None:
        not_found("Account", account_id)
    return success(account_to_dict(account))
