"""
Estimation lifecycle: prepare, check, approve or reject.

Review state lives in two flags::

    draft     is_checked=False  is_approved=False
    checked   is_checked=True   is_approved=False   (also after a rejection)
    approved  is_checked=True   is_approved=True    (immutable)

Editing a checked estimation sends it back to draft.
"""
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from database.operations import EntityStore, ESTIMATIONS
from logging_config import logger
from models.comment import CommentActionType
from models.project import ProjectStatus
from models.user import ADMIN_ROLES
from services import transitions
from services.comments import record_activity
from services.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from services.financials import price_estimation
from services.numbering import ESTIMATION_PREFIX, create_numbered
from services.projects import check_fields, check_required, get_project, paging, set_project_status

REQUIRED_FIELDS = ("project_id", "work_start_date", "work_end_date", "valid_until", "payment_due_by", "materials")
MUTABLE_FIELDS = frozenset({
    "work_start_date",
    "work_end_date",
    "valid_until",
    "payment_due_by",
    "materials",
    "labour",
    "terms_and_conditions",
    "quotation_amount",
    "commission_amount",
})
DATE_FIELDS = ("work_start_date", "work_end_date", "valid_until")

# Project statuses in which an estimation may still be prepared
OPEN_FOR_ESTIMATION = frozenset({ProjectStatus.DRAFT.value, ProjectStatus.ESTIMATION_PREPARED.value})

CLEARED_REVIEW = {
    "is_checked": False,
    "checked_by": None,
    "checked_at": None,
    "check_comment": None,
    "approved_by": None,
    "approved_at": None,
    "approval_comment": None,
}


def as_datetime(value):
    # Mongo has no date-only type
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, datetime.min.time())
    raise ValidationError(f"Invalid date: {value}")


def normalize(data: Dict[str, Any]) -> Dict[str, Any]:
    normalized = dict(data)
    for field in DATE_FIELDS:
        if field in normalized:
            if normalized[field] is None:
                raise ValidationError(f"Estimation {field} cannot be empty")
            normalized[field] = as_datetime(normalized[field])
    if "payment_due_by" in normalized:
        due = normalized["payment_due_by"]
        if isinstance(due, bool) or not isinstance(due, int) or due < 0:
            raise ValidationError("payment_due_by must be a non-negative number of days")
    if "materials" in normalized and not normalized["materials"]:
        raise ValidationError("Estimation must have at least one material")
    for field in ("labour", "terms_and_conditions"):
        if field in normalized and normalized[field] is None:
            normalized[field] = []
    return normalized


def check_work_dates(doc: Dict[str, Any]):
    if doc["work_end_date"] <= doc["work_start_date"]:
        raise ValidationError("Work end date must be after start date")


def check_owner(actor: Dict[str, Any], estimation: Dict[str, Any]):
    if actor["role"] not in [role.value for role in ADMIN_ROLES] and estimation["prepared_by"] != actor["id"]:
        raise ForbiddenError("Only the preparer or an admin can modify this estimation")


async def get_estimation(store: EntityStore, estimation_id: str) -> Dict[str, Any]:
    estimation = await store.find_by_id(ESTIMATIONS, estimation_id)
    if not estimation:
        raise NotFoundError("Estimation not found")
    return estimation


async def get_estimation_by_project(store: EntityStore, project_id: str) -> Dict[str, Any]:
    estimation = await store.find_one(ESTIMATIONS, {"project_id": project_id})
    if not estimation:
        raise NotFoundError("Estimation not found")
    return estimation


async def list_estimations(
    store: EntityStore,
    project_id: Optional[str] = None,
    is_approved: Optional[bool] = None,
    page: int = 1,
    limit: int = 10,
) -> List[Dict[str, Any]]:
    query = {}
    if project_id:
        query["project_id"] = project_id
    if is_approved is not None:
        query["is_approved"] = is_approved
    skip, limit = paging(page, limit)
    return await store.find(ESTIMATIONS, query, skip=skip, limit=limit, sort=[("created_at", -1)])


async def create_estimation(store: EntityStore, actor: Dict[str, Any], data: Dict[str, Any]) -> Dict[str, Any]:
    check_fields(data, MUTABLE_FIELDS | {"project_id"}, "Estimation")
    check_required(data, REQUIRED_FIELDS, "Estimation")

    project = await get_project(store, data["project_id"])
    if project["status"] not in OPEN_FOR_ESTIMATION:
        raise ConflictError(f"Cannot prepare an estimation for a project in status {project['status']}")
    if await store.find_one(ESTIMATIONS, {"project_id": project["id"]}):
        raise ConflictError("Project already has an estimation")

    doc = normalize(data)
    check_work_dates(doc)
    doc = price_estimation({
        "labour": [],
        "terms_and_conditions": [],
        "quotation_amount": None,
        "commission_amount": None,
        **doc,
        "prepared_by": actor["id"],
        "is_checked": False,
        "is_approved": False,
    })

    moves_project = project["status"] == ProjectStatus.DRAFT.value
    if moves_project:
        transitions.ensure_transition(project["status"], ProjectStatus.ESTIMATION_PREPARED)

    estimation = await create_numbered(store, ESTIMATIONS, "estimation_number", ESTIMATION_PREFIX, doc)
    logger.info(f"Estimation {estimation['estimation_number']} created for project {project['id']}")

    if moves_project:
        await set_project_status(store, project, ProjectStatus.ESTIMATION_PREPARED, actor["id"])
    return estimation


async def update_estimation(
    store: EntityStore, actor: Dict[str, Any], estimation_id: str, patch: Dict[str, Any]
) -> Dict[str, Any]:
    check_fields(patch, MUTABLE_FIELDS, "Estimation")
    estimation = await get_estimation(store, estimation_id)
    if estimation["is_approved"]:
        raise ConflictError("Approved estimation cannot be modified")
    check_owner(actor, estimation)

    merged = {**estimation, **normalize(patch)}
    check_work_dates(merged)
    priced = price_estimation(merged)

    changes = {field: priced[field] for field in patch}
    changes.update({
        "materials": priced["materials"],
        "labour": priced["labour"],
        "terms_and_conditions": priced["terms_and_conditions"],
        "estimated_amount": priced["estimated_amount"],
        "profit": priced["profit"],
    })
    if estimation["is_checked"]:
        logger.info(f"Estimation {estimation_id} edited after check, review reset")
        changes.update(CLEARED_REVIEW)

    updated = await store.update_by_id(ESTIMATIONS, estimation_id, changes, expected={"is_approved": False})
    if not updated:
        raise ConflictError("Estimation was approved or removed while being edited")
    return updated


async def mark_checked(
    store: EntityStore, actor: Dict[str, Any], estimation_id: str, comment: Optional[str] = None
) -> Dict[str, Any]:
    estimation = await get_estimation(store, estimation_id)
    if estimation["is_checked"]:
        raise ConflictError("Estimation already checked")

    updated = await store.update_by_id(
        ESTIMATIONS,
        estimation_id,
        {
            "is_checked": True,
            "checked_by": actor["id"],
            "checked_at": datetime.utcnow(),
            "check_comment": comment,
        },
        expected={"is_checked": False},
    )
    if not updated:
        raise ConflictError("Estimation already checked")

    logger.info(f"Estimation {estimation_id} checked by {actor['id']}")
    await record_activity(
        store, actor["id"], estimation["project_id"], CommentActionType.CHECK,
        comment or f"Estimation {estimation['estimation_number']} checked",
    )
    return updated


async def set_approval(
    store: EntityStore,
    actor: Dict[str, Any],
    estimation_id: str,
    approved: bool,
    comment: Optional[str] = None,
) -> Dict[str, Any]:
    estimation = await get_estimation(store, estimation_id)
    if not estimation["is_checked"]:
        raise ConflictError("Estimation must be checked before approval")
    if estimation["is_approved"]:
        raise ConflictError("Estimation already approved")

    updated = await store.update_by_id(
        ESTIMATIONS,
        estimation_id,
        {
            "is_approved": bool(approved),
            "approved_by": actor["id"],
            "approved_at": datetime.utcnow(),
            "approval_comment": comment,
        },
        expected={"is_checked": True, "is_approved": False},
    )
    if not updated:
        raise ConflictError("Estimation review state changed, please reload")

    decision = "approved" if approved else "rejected"
    logger.info(f"Estimation {estimation_id} {decision} by {actor['id']}")
    await record_activity(
        store,
        actor["id"],
        estimation["project_id"],
        CommentActionType.APPROVAL if approved else CommentActionType.REJECTION,
        comment or f"Estimation {estimation['estimation_number']} {decision}",
    )
    return updated


async def delete_estimation(store: EntityStore, actor: Dict[str, Any], estimation_id: str) -> None:
    estimation = await get_estimation(store, estimation_id)
    if estimation["is_approved"]:
        raise ConflictError("Approved estimation cannot be deleted")
    check_owner(actor, estimation)
    await store.delete_by_id(ESTIMATIONS, estimation_id)
    logger.info(f"Estimation {estimation_id} deleted")
