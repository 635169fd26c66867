"""
Quotation lifecycle: one quotation per project, created from the
estimation-prepared stage, priced with VAT, approved or rejected, and
withdrawable while undecided or rejected.

Item images are matched by explicit tokens: an item names the multipart
field (``image_field``) that carries its image, and later replacements
address the item by its ``item_id``.
"""
import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pymongo.errors import DuplicateKeyError

from config import DEFAULT_VAT_PERCENTAGE
from database.operations import EntityStore, ESTIMATIONS, QUOTATIONS
from logging_config import logger
from models.comment import CommentActionType
from models.project import ProjectStatus
from services import transitions
from services.comments import record_activity
from services.estimations import as_datetime
from services.exceptions import ConflictError, NotFoundError, ValidationError, WorkflowError
from services.financials import price_quotation
from services.numbering import QUOTATION_PREFIX, create_numbered, is_duplicate_of
from services.projects import check_fields, check_required, get_project, set_project_status

ITEM_IMAGE_FOLDER = "quotation-items"

REQUIRED_FIELDS = ("project_id", "valid_until", "items")
MUTABLE_FIELDS = frozenset({"valid_until", "scope_of_work", "items", "terms_and_conditions", "vat_percentage"})
ITEM_FIELDS = ("description", "quantity", "unit", "unit_price")


@dataclass
class ImageUpload:
    content: bytes
    content_type: str
    filename: str = ""


def check_image(upload: ImageUpload, label: str):
    if not (upload.content_type or "").startswith("image/"):
        raise ValidationError(f"{label} must be an image")
    if not upload.content:
        raise ValidationError(f"{label} is empty")


def match_uploads(items: List[Dict[str, Any]], uploads: Dict[str, ImageUpload]) -> Dict[int, ImageUpload]:
    """Map item positions to the uploads their ``image_field`` tokens name."""
    matched = {}
    used = set()
    for index, item in enumerate(items):
        token = item.get("image_field")
        if not token:
            continue
        if token in used:
            raise ValidationError(f"Image field {token} is referenced by more than one item")
        if token not in uploads:
            raise ValidationError(f"No file uploaded for image field {token}")
        check_image(uploads[token], f"File {token}")
        matched[index] = uploads[token]
        used.add(token)

    unused = sorted(set(uploads) - used)
    if unused:
        raise ValidationError(f"Uploaded files not referenced by any item: {', '.join(unused)}")
    return matched


def build_item(item: Dict[str, Any], existing: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    built = {field: item.get(field) for field in ITEM_FIELDS}
    check_required(built, ("description", "quantity", "unit_price"), "Quotation item")
    built["item_id"] = existing["item_id"] if existing else uuid.uuid4().hex
    built["image"] = existing.get("image") if existing else None
    return built


async def upload_images(blobs, matched: Dict[int, ImageUpload]) -> Dict[int, Dict[str, str]]:
    """Upload in parallel; on any failure remove what did get stored and re-raise."""
    indexes = list(matched)
    results = await asyncio.gather(
        *[
            blobs.upload(matched[i].content, matched[i].content_type, ITEM_IMAGE_FOLDER, matched[i].filename)
            for i in indexes
        ],
        return_exceptions=True,
    )
    stored = {i: result for i, result in zip(indexes, results) if not isinstance(result, BaseException)}
    failures = [result for result in results if isinstance(result, BaseException)]
    if failures:
        await release_images(blobs, [image["key"] for image in stored.values()])
        raise failures[0]
    return stored


async def release_images(blobs, keys: List[str]):
    """Best-effort removal; a blob that cannot be deleted is logged, never fatal."""
    keys = [key for key in keys if key]
    if not keys:
        return
    results = await asyncio.gather(*[blobs.delete(key) for key in keys], return_exceptions=True)
    for key, result in zip(keys, results):
        if result is not True:
            logger.warning(f"Image {key} could not be released: {result}")


async def get_quotation(store: EntityStore, quotation_id: str) -> Dict[str, Any]:
    quotation = await store.find_by_id(QUOTATIONS, quotation_id)
    if not quotation:
        raise NotFoundError("Quotation not found")
    return quotation


async def get_quotation_by_project(store: EntityStore, project_id: str) -> Dict[str, Any]:
    quotation = await store.find_one(QUOTATIONS, {"project_id": project_id})
    if not quotation:
        raise NotFoundError("Quotation not found")
    return quotation


async def create_quotation(
    store: EntityStore,
    blobs,
    actor: Dict[str, Any],
    data: Dict[str, Any],
    uploads: Optional[Dict[str, ImageUpload]] = None,
) -> Dict[str, Any]:
    check_fields(data, MUTABLE_FIELDS | {"project_id"}, "Quotation")
    check_required(data, REQUIRED_FIELDS, "Quotation")

    project = await get_project(store, data["project_id"])
    if await store.find_one(QUOTATIONS, {"project_id": project["id"]}):
        raise ConflictError("Project already has a quotation")
    transitions.ensure_transition(project["status"], ProjectStatus.QUOTATION_SENT)

    items = [build_item(item) for item in data["items"]]
    matched = match_uploads(data["items"], uploads or {})
    estimation = await store.find_one(ESTIMATIONS, {"project_id": project["id"]})
    vat_percentage = data.get("vat_percentage")
    doc = price_quotation({
        "project_id": project["id"],
        "estimation_id": estimation["id"] if estimation else None,
        "date": datetime.utcnow(),
        "valid_until": as_datetime(data["valid_until"]),
        "scope_of_work": list(data.get("scope_of_work") or []),
        "items": items,
        "terms_and_conditions": list(data.get("terms_and_conditions") or []),
        "vat_percentage": vat_percentage if vat_percentage is not None else Decimal(DEFAULT_VAT_PERCENTAGE),
        "prepared_by": actor["id"],
        "is_approved": False,
        "approved_by": None,
        "approved_at": None,
        "approval_comment": None,
    })

    stored = await upload_images(blobs, matched)
    for index, image in stored.items():
        doc["items"][index]["image"] = image

    try:
        quotation = await create_numbered(store, QUOTATIONS, "quotation_number", QUOTATION_PREFIX, doc)
    except DuplicateKeyError as e:
        await release_images(blobs, [image["key"] for image in stored.values()])
        if is_duplicate_of(e, "project_id"):
            raise ConflictError("Project already has a quotation")
        raise
    except WorkflowError:
        await release_images(blobs, [image["key"] for image in stored.values()])
        raise

    logger.info(f"Quotation {quotation['quotation_number']} created for project {project['id']}")
    await set_project_status(store, project, ProjectStatus.QUOTATION_SENT, actor["id"])
    return quotation


async def update_quotation(
    store: EntityStore,
    blobs,
    actor: Dict[str, Any],
    quotation_id: str,
    patch: Dict[str, Any],
    uploads: Optional[Dict[str, ImageUpload]] = None,
) -> Dict[str, Any]:
    check_fields(patch, MUTABLE_FIELDS, "Quotation")
    uploads = uploads or {}
    quotation = await get_quotation(store, quotation_id)
    if quotation["is_approved"]:
        raise ConflictError("Approved quotation cannot be modified")

    changes = {}
    if "valid_until" in patch:
        changes["valid_until"] = as_datetime(patch["valid_until"])
    for field in ("scope_of_work", "terms_and_conditions"):
        if field in patch:
            changes[field] = list(patch[field] or [])
    if "vat_percentage" in patch:
        if patch["vat_percentage"] is None:
            raise ValidationError("VAT percentage cannot be empty")
        changes["vat_percentage"] = patch["vat_percentage"]

    items = quotation["items"]
    replaced, removed, matched = [], [], {}
    if "items" in patch:
        if not patch["items"]:
            raise ValidationError("Quotation must have at least one item")
        existing = {item["item_id"]: item for item in quotation["items"]}
        items = []
        seen = set()
        for item in patch["items"]:
            item_id = item.get("item_id")
            if item_id and item_id not in existing:
                raise ValidationError(f"Unknown quotation item: {item_id}")
            if item_id in seen:
                raise ValidationError(f"Quotation item {item_id} is listed more than once")
            if item_id:
                seen.add(item_id)
            items.append(build_item(item, existing.get(item_id)))
        kept = {item["item_id"] for item in items}
        removed = [item["image"]["key"] for item in quotation["items"] if item["item_id"] not in kept and item.get("image")]
        matched = match_uploads(patch["items"], uploads)
        replaced = [items[i]["image"]["key"] for i in matched if items[i].get("image")]
    elif uploads:
        raise ValidationError("Images can only be uploaded together with items")

    priced = price_quotation({**quotation, **changes, "items": items})

    # Old images go before their replacements are stored
    await release_images(blobs, replaced)
    stored = await upload_images(blobs, matched)
    for index, image in stored.items():
        priced["items"][index]["image"] = image

    changes.update({
        "items": priced["items"],
        "vat_percentage": priced["vat_percentage"],
        "subtotal": priced["subtotal"],
        "vat_amount": priced["vat_amount"],
        "total": priced["total"],
        "updated_by": actor["id"],
    })
    try:
        updated = await store.update_by_id(QUOTATIONS, quotation_id, changes, expected={"is_approved": False})
    except WorkflowError:
        await release_images(blobs, [image["key"] for image in stored.values()])
        raise
    if not updated:
        await release_images(blobs, [image["key"] for image in stored.values()])
        raise ConflictError("Quotation was approved or removed while being edited")

    await release_images(blobs, removed)
    logger.info(f"Quotation {quotation_id} updated, total {updated['total']}")
    return updated


async def attach_item_image(
    store: EntityStore,
    blobs,
    actor: Dict[str, Any],
    quotation_id: str,
    item_id: str,
    upload: ImageUpload,
) -> Dict[str, Any]:
    quotation = await get_quotation(store, quotation_id)
    if quotation["is_approved"]:
        raise ConflictError("Approved quotation cannot be modified")
    index = next((i for i, item in enumerate(quotation["items"]) if item["item_id"] == item_id), None)
    if index is None:
        raise NotFoundError("Quotation item not found")
    check_image(upload, "Item image")

    old_image = quotation["items"][index].get("image")
    if old_image:
        await release_images(blobs, [old_image["key"]])
    image = await blobs.upload(upload.content, upload.content_type, ITEM_IMAGE_FOLDER, upload.filename)

    try:
        updated = await store.update_by_id(
            QUOTATIONS,
            quotation_id,
            {f"items.{index}.image": image, "updated_by": actor["id"]},
            expected={f"items.{index}.item_id": item_id, "is_approved": False},
        )
    except WorkflowError:
        await release_images(blobs, [image["key"]])
        raise
    if not updated:
        await release_images(blobs, [image["key"]])
        raise ConflictError("Quotation changed while attaching the image, please retry")
    logger.info(f"Image attached to item {item_id} of quotation {quotation_id}")
    return updated


async def approve_quotation(
    store: EntityStore,
    actor: Dict[str, Any],
    quotation_id: str,
    approved: bool,
    comment: Optional[str] = None,
) -> Dict[str, Any]:
    quotation = await get_quotation(store, quotation_id)
    if quotation["is_approved"]:
        raise ConflictError("Quotation already approved")

    project = await get_project(store, quotation["project_id"])
    target = ProjectStatus.QUOTATION_APPROVED if approved else ProjectStatus.QUOTATION_REJECTED
    transitions.ensure_transition(project["status"], target)

    updated = await store.update_by_id(
        QUOTATIONS,
        quotation_id,
        {
            "is_approved": bool(approved),
            "approved_by": actor["id"],
            "approved_at": datetime.utcnow(),
            "approval_comment": comment,
        },
        expected={"is_approved": False},
    )
    if not updated:
        raise ConflictError("Quotation already approved")

    decision = "approved" if approved else "rejected"
    logger.info(f"Quotation {quotation_id} {decision} by {actor['id']}")
    await set_project_status(store, project, target, actor["id"])
    await record_activity(
        store,
        actor["id"],
        project["id"],
        CommentActionType.APPROVAL if approved else CommentActionType.REJECTION,
        comment or f"Quotation {quotation['quotation_number']} {decision}",
    )
    return updated


async def delete_quotation(store: EntityStore, blobs, actor: Dict[str, Any], quotation_id: str) -> None:
    quotation = await get_quotation(store, quotation_id)
    project = await get_project(store, quotation["project_id"])
    transitions.ensure_override(transitions.QUOTATION_WITHDRAWAL, project["status"])

    deleted = await store.delete_by_id(QUOTATIONS, quotation_id)
    if not deleted:
        raise NotFoundError("Quotation not found")
    await release_images(blobs, [item["image"]["key"] for item in deleted["items"] if item.get("image")])

    await set_project_status(
        store, project, ProjectStatus.ESTIMATION_PREPARED, actor["id"],
        override=transitions.QUOTATION_WITHDRAWAL,
    )
    logger.info(f"Quotation {quotation_id} withdrawn")
