from typing import Any, Dict, List

from database.operations import EntityStore, COMMENTS, PROJECTS
from logging_config import logger
from models.comment import CommentActionType
from services.exceptions import NotFoundError, ValidationError


async def record_activity(
    store: EntityStore,
    user_id: str,
    project_id: str,
    action_type: CommentActionType,
    content: str,
) -> Dict[str, Any]:
    comment = await store.create(COMMENTS, {
        "content": content,
        "user_id": user_id,
        "project_id": project_id,
        "action_type": CommentActionType(action_type).value,
    })
    logger.debug(f"Recorded {comment['action_type']} activity on project {project_id}")
    return comment


async def add_comment(store: EntityStore, actor: Dict[str, Any], project_id: str, content: str) -> Dict[str, Any]:
    if not content or not content.strip():
        raise ValidationError("Comment content is required")
    if not await store.find_by_id(PROJECTS, project_id):
        raise NotFoundError("Project not found")
    return await record_activity(store, actor["id"], project_id, CommentActionType.GENERAL, content.strip())


async def list_project_activity(store: EntityStore, project_id: str) -> List[Dict[str, Any]]:
    if not await store.find_by_id(PROJECTS, project_id):
        raise NotFoundError("Project not found")
    return await store.find(COMMENTS, {"project_id": project_id}, sort=[("created_at", -1)])
