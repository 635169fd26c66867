"""
Project records and every write to ``Project.status``.

Status writes are compare-and-set on the status the caller last read, so a
project that moved underneath a request is reported as a conflict rather
than silently overwritten.
"""
from typing import Any, Dict, List, Optional

from database.operations import EntityStore, CLIENTS, ESTIMATIONS, PROJECTS, QUOTATIONS, USERS
from logging_config import logger
from models.project import ProjectStatus
from models.user import UserRole
from services import transitions
from services.exceptions import ConflictError, NotFoundError, ValidationError

REQUIRED_FIELDS = ("name", "client_id", "site_address", "site_location")
MUTABLE_FIELDS = frozenset({"name", "description", "client_id", "site_address", "site_location"})


def check_fields(patch: Dict[str, Any], allowed: frozenset, entity: str):
    rejected = sorted(set(patch) - allowed)
    if rejected:
        raise ValidationError(f"{entity} fields cannot be updated: {', '.join(rejected)}")


def check_required(data: Dict[str, Any], fields, entity: str):
    missing = [field for field in fields if data.get(field) in (None, "", [])]
    if missing:
        raise ValidationError(f"{entity} required fields are missing: {', '.join(missing)}")


def paging(page: int, limit: int):
    if page < 1 or limit < 1:
        raise ValidationError("Page and limit must be positive")
    return (page - 1) * limit, limit


async def get_project(store: EntityStore, project_id: str) -> Dict[str, Any]:
    project = await store.find_by_id(PROJECTS, project_id)
    if not project:
        raise NotFoundError("Project not found")
    return project


async def create_project(store: EntityStore, actor: Dict[str, Any], data: Dict[str, Any]) -> Dict[str, Any]:
    check_fields(data, MUTABLE_FIELDS, "Project")
    check_required(data, REQUIRED_FIELDS, "Project")
    if not await store.find_by_id(CLIENTS, data["client_id"]):
        raise NotFoundError("Client not found")

    project = await store.create(PROJECTS, {
        "name": data["name"],
        "description": data.get("description"),
        "client_id": data["client_id"],
        "site_address": data["site_address"],
        "site_location": data["site_location"],
        "status": ProjectStatus.DRAFT.value,
        "progress": 0,
        "created_by": actor["id"],
    })
    logger.info(f"Project created: {project['id']} by user {actor['id']}")
    return project


async def get_project_detail(store: EntityStore, project_id: str) -> Dict[str, Any]:
    """Project with its client resolved and the ids of its estimation and quotation."""
    project = await get_project(store, project_id)
    client = await store.find_by_id(CLIENTS, project["client_id"])
    estimation = await store.find_one(ESTIMATIONS, {"project_id": project_id})
    quotation = await store.find_one(QUOTATIONS, {"project_id": project_id})
    return {
        **project,
        "client": client,
        "estimation_id": estimation["id"] if estimation else None,
        "quotation_id": quotation["id"] if quotation else None,
    }


async def list_projects(
    store: EntityStore,
    status: Optional[str] = None,
    client_id: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
) -> List[Dict[str, Any]]:
    query = {}
    if status:
        query["status"] = transitions.as_status(status).value
    if client_id:
        query["client_id"] = client_id
    skip, limit = paging(page, limit)
    return await store.find(PROJECTS, query, skip=skip, limit=limit, sort=[("created_at", -1)])


async def update_project(
    store: EntityStore, actor: Dict[str, Any], project_id: str, patch: Dict[str, Any]
) -> Dict[str, Any]:
    check_fields(patch, MUTABLE_FIELDS, "Project")
    for field in REQUIRED_FIELDS:
        if field in patch and patch[field] in (None, ""):
            raise ValidationError(f"Project {field} cannot be empty")

    project = await get_project(store, project_id)
    if "client_id" in patch and patch["client_id"] != project["client_id"]:
        if not await store.find_by_id(CLIENTS, patch["client_id"]):
            raise NotFoundError("Client not found")

    updated = await store.update_by_id(PROJECTS, project_id, {**patch, "updated_by": actor["id"]})
    if not updated:
        raise NotFoundError("Project not found")
    return updated


async def set_project_status(
    store: EntityStore,
    project: Dict[str, Any],
    new_status,
    actor_id: str,
    override: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Move ``project`` (as last read) to ``new_status``.

    Without ``override`` the edge must exist in the transition table. With one,
    the named override must apply to the current status and lead to
    ``new_status``.
    """
    current = transitions.as_status(project["status"])
    if override:
        target = transitions.ensure_override(override, current)
        if target != transitions.as_status(new_status):
            raise ConflictError(f"Override {override} does not lead to {new_status}")
        logger.info(f"Project {project['id']}: {current.value} -> {target.value} ({override} override)")
    else:
        target = transitions.ensure_transition(current, new_status)
        logger.info(f"Project {project['id']}: {current.value} -> {target.value}")

    updated = await store.update_by_id(
        PROJECTS,
        project["id"],
        {**(extra or {}), "status": target.value, "updated_by": actor_id},
        expected={"status": current.value},
    )
    if not updated:
        logger.warning(f"Project {project['id']} changed while moving it to {target.value}")
        raise ConflictError("Project was modified concurrently, please retry")
    return updated


async def change_status(store: EntityStore, actor: Dict[str, Any], project_id: str, status) -> Dict[str, Any]:
    if not status:
        raise ValidationError("Status is required")
    project = await get_project(store, project_id)
    return await set_project_status(store, project, status, actor["id"])


async def update_progress(store: EntityStore, actor: Dict[str, Any], project_id: str, progress: int) -> Dict[str, Any]:
    project = await get_project(store, project_id)
    target = transitions.status_for_progress(project["status"], progress)
    if target is not None:
        return await set_project_status(
            store, project, target, actor["id"],
            override=transitions.PROGRESS_COMPLETION,
            extra={"progress": progress},
        )

    updated = await store.update_by_id(
        PROJECTS,
        project_id,
        {"progress": progress, "updated_by": actor["id"]},
        expected={"status": project["status"]},
    )
    if not updated:
        raise ConflictError("Project was modified concurrently, please retry")
    logger.info(f"Project {project_id} progress set to {progress}")
    return updated


async def assign_project(store: EntityStore, actor: Dict[str, Any], project_id: str, user_id: str) -> Dict[str, Any]:
    if not user_id:
        raise ValidationError("assigned_to is required")
    await get_project(store, project_id)
    engineer = await store.find_by_id(USERS, user_id)
    if not engineer:
        raise NotFoundError("Engineer not found")
    if engineer.get("role") != UserRole.ENGINEER.value or not engineer.get("is_active", True):
        raise ValidationError("Projects can only be assigned to active engineers")

    updated = await store.update_by_id(PROJECTS, project_id, {"assigned_to": user_id, "updated_by": actor["id"]})
    if not updated:
        raise NotFoundError("Project not found")
    logger.info(f"Project {project_id} assigned to {user_id}")
    return updated


async def delete_project(store: EntityStore, project_id: str) -> None:
    project = await get_project(store, project_id)
    if project["status"] != ProjectStatus.DRAFT.value:
        raise ConflictError("Cannot delete project that has already started")
    await store.delete_by_id(PROJECTS, project_id)
    logger.info(f"Project deleted: {project_id}")
