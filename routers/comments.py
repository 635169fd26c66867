from fastapi import APIRouter, Depends, HTTPException, status, Body
from typing import Annotated, List
import traceback

from models.comment import Comment, CommentCreate
from database.db import get_store
from database.operations import EntityStore
from routers.auth import get_current_user
from services import comments as comment_service
from services.exceptions import WorkflowError
from logging_config import logger

router = APIRouter()

# Add a comment to a project
@router.post(
    "/{project_id}/comments",
    response_model=Comment,
    status_code=status.HTTP_201_CREATED,
    summary="Comment on a project",
)
async def add_comment(
    project_id: str,
    current_user: Annotated[dict, Depends(get_current_user)],
    comment: CommentCreate = Body(...),
    store: EntityStore = Depends(get_store),
):
    try:
        logger.info(f"Adding comment to project: {project_id}")
        return await comment_service.add_comment(store, current_user, project_id, comment.content)
    except (HTTPException, WorkflowError):
        raise
    except Exception as e:
        logger.error(f"Error adding comment: {str(e)}")
        logger.error(traceback.format_exc())
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error adding comment: {str(e)}"
        )

# Project activity feed
@router.get(
    "/{project_id}/activity",
    response_model=List[Comment],
    summary="Get project activity",
    description="""
    Comments and review events (estimation checks, approvals and
    rejections, quotation decisions) of a project, newest first.
    """,
)
async def read_project_activity(
    project_id: str,
    current_user: Annotated[dict, Depends(get_current_user)],
    store: EntityStore = Depends(get_store),
):
    try:
        return await comment_service.list_project_activity(store, project_id)
    except (HTTPException, WorkflowError):
        raise
    except Exception as e:
        logger.error(f"Error retrieving project activity: {str(e)}")
        logger.error(traceback.format_exc())
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error retrieving project activity: {str(e)}"
        )
