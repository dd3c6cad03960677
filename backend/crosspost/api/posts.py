"""Publishing routes"""
from fastapi import APIRouter, Depends

from crosspost.api.dependencies import require_user_id
from crosspost.core.platforms import Platform
from crosspost.schemas.posts import (
    MultiPlatformPostRequest,
    MultiPlatformPostResponse,
    PostContent,
    PostResult,
)
from crosspost.services.publishing import service

router = APIRouter(prefix="/api/posts", tags=["posts"])


def _with_owner(content: PostContent, user_id: str) -> PostContent:
    # The authenticated caller always owns the post
    return content.model_copy(update={"metadata": {**content.metadata, "user_id": user_id}})


@router.post("", response_model=MultiPlatformPostResponse)
async def publish_to_platforms(
    request: MultiPlatformPostRequest,
    user_id: str = Depends(require_user_id),
):
    """Queue the same content on several platforms; each gets its own job"""
    content = _with_owner(request.content, user_id)
    results = await service.enqueue_post_many([p.value for p in request.platforms], content)
    return {"results": results}


@router.post("/{platform}", response_model=PostResult)
async def publish(
    platform: Platform,
    content: PostContent,
    user_id: str = Depends(require_user_id),
):
    """Validate and queue content. Invalid content comes back failed with no job id."""
    return await service.enqueue_post(platform.value, _with_owner(content, user_id))


@router.get("/{platform}/{job_id}", response_model=PostResult)
async def post_status(platform: Platform, job_id: str, user_id: str = Depends(require_user_id)):
    return await service.get_post_status(platform.value, job_id, user_id=user_id)
