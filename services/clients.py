from typing import Any, Dict, List, Optional

from pymongo.errors import DuplicateKeyError

from database.operations import EntityStore, CLIENTS, PROJECTS
from logging_config import logger
from services.exceptions import ConflictError, NotFoundError, ValidationError
from services.numbering import is_duplicate_of
from services.projects import check_fields, check_required, paging

REQUIRED_FIELDS = ("client_name", "client_address", "mobile_number", "trn_number")
MUTABLE_FIELDS = frozenset({
    "client_name",
    "client_address",
    "mobile_number",
    "telephone_number",
    "trn_number",
    "vat_number",
})


async def check_unique(store: EntityStore, data: Dict[str, Any], client_id: Optional[str] = None):
    for field, label in (("trn_number", "TRN number"), ("vat_number", "VAT number")):
        value = data.get(field)
        if not value:
            continue
        existing = await store.find_one(CLIENTS, {field: value})
        if existing and existing["id"] != client_id:
            logger.warning(f"Client with {label} {value} already exists")
            raise ConflictError(f"Client with this {label} already exists")


def duplicate_error(error: DuplicateKeyError) -> ConflictError:
    label = "VAT number" if is_duplicate_of(error, "vat_number") else "TRN number"
    return ConflictError(f"Client with this {label} already exists")


async def get_client(store: EntityStore, client_id: str) -> Dict[str, Any]:
    client = await store.find_by_id(CLIENTS, client_id)
    if not client:
        raise NotFoundError("Client not found")
    return client


async def get_client_by_trn(store: EntityStore, trn_number: str) -> Dict[str, Any]:
    client = await store.find_one(CLIENTS, {"trn_number": trn_number})
    if not client:
        raise NotFoundError("Client not found")
    return client


async def list_clients(store: EntityStore, page: int = 1, limit: int = 10) -> List[Dict[str, Any]]:
    skip, limit = paging(page, limit)
    return await store.find(CLIENTS, {}, skip=skip, limit=limit, sort=[("created_at", -1)])


async def create_client(store: EntityStore, actor: Dict[str, Any], data: Dict[str, Any]) -> Dict[str, Any]:
    check_fields(data, MUTABLE_FIELDS, "Client")
    check_required(data, REQUIRED_FIELDS, "Client")
    # An empty VAT number means none; the unique index only covers strings
    doc = {field: data.get(field) or None for field in MUTABLE_FIELDS}
    await check_unique(store, doc)

    try:
        client = await store.create(CLIENTS, {**doc, "created_by": actor["id"]})
    except DuplicateKeyError as e:
        raise duplicate_error(e)
    logger.info(f"Client created: {client['id']} ({client['client_name']})")
    return client


async def update_client(
    store: EntityStore, actor: Dict[str, Any], client_id: str, patch: Dict[str, Any]
) -> Dict[str, Any]:
    check_fields(patch, MUTABLE_FIELDS, "Client")
    for field in REQUIRED_FIELDS:
        if field in patch and not patch[field]:
            raise ValidationError(f"Client {field} cannot be empty")
    patch = {field: value or None for field, value in patch.items()}
    await get_client(store, client_id)
    await check_unique(store, patch, client_id)

    try:
        updated = await store.update_by_id(CLIENTS, client_id, {**patch, "updated_by": actor["id"]})
    except DuplicateKeyError as e:
        raise duplicate_error(e)
    if not updated:
        raise NotFoundError("Client not found")
    return updated


async def delete_client(store: EntityStore, client_id: str) -> None:
    await get_client(store, client_id)
    if await store.count(PROJECTS, {"client_id": client_id}):
        raise ConflictError("Client has projects and cannot be deleted")
    await store.delete_by_id(CLIENTS, client_id)
    logger.info(f"Client deleted: {client_id}")
