from typing import Any, Dict, List, Optional

from pymongo.errors import DuplicateKeyError

from database.auth import get_password_hash, verify_password
from database.operations import EntityStore, USERS
from logging_config import logger
from models.user import ADMIN_ROLES, UserRole
from services.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from services.projects import check_fields, check_required, paging

REQUIRED_FIELDS = ("email", "password", "first_name", "last_name", "phone_numbers", "role")
PROFILE_FIELDS = frozenset({"email", "first_name", "last_name", "phone_numbers", "address", "password"})
# Only admins may change these
ADMIN_FIELDS = frozenset({"role", "is_active"})


def is_admin(user: Dict[str, Any]) -> bool:
    return user.get("role") in [role.value for role in ADMIN_ROLES]


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in user.items() if key != "hashed_password"}


async def get_user_by_email(store: EntityStore, email: str) -> Optional[Dict[str, Any]]:
    return await store.find_one(USERS, {"email": email.lower()})


async def authenticate_user(store: EntityStore, email: str, password: str):
    user = await get_user_by_email(store, email)
    if not user:
        return None
    if not verify_password(password, user["hashed_password"]):
        return None
    return user


async def get_user(store: EntityStore, actor: Dict[str, Any], user_id: str) -> Dict[str, Any]:
    if actor["id"] != user_id and not is_admin(actor):
        raise ForbiddenError("Not allowed to view this user")
    user = await store.find_by_id(USERS, user_id)
    if not user:
        raise NotFoundError("User not found")
    return public_user(user)


async def list_users(
    store: EntityStore,
    role: Optional[str] = None,
    is_active: Optional[bool] = None,
    page: int = 1,
    limit: int = 10,
) -> List[Dict[str, Any]]:
    query = {}
    if role:
        try:
            query["role"] = UserRole(role).value
        except ValueError:
            raise ValidationError(f"Invalid role: {role}")
    if is_active is not None:
        query["is_active"] = is_active
    skip, limit = paging(page, limit)
    users = await store.find(USERS, query, skip=skip, limit=limit, sort=[("created_at", -1)])
    return [public_user(user) for user in users]


async def list_active_engineers(store: EntityStore) -> List[Dict[str, Any]]:
    engineers = await store.find(
        USERS,
        {"role": UserRole.ENGINEER.value, "is_active": True},
        sort=[("first_name", 1)],
    )
    return [public_user(user) for user in engineers]


async def create_user(store: EntityStore, actor: Optional[Dict[str, Any]], data: Dict[str, Any]) -> Dict[str, Any]:
    check_fields(data, PROFILE_FIELDS | {"role"}, "User")
    check_required(data, REQUIRED_FIELDS, "User")
    email = data["email"].lower()
    if await get_user_by_email(store, email):
        logger.warning(f"Email already registered: {email}")
        raise ConflictError("Email already registered")

    doc = {key: value for key, value in data.items() if key != "password"}
    doc.update({
        "email": email,
        "role": UserRole(data["role"]).value,
        "hashed_password": get_password_hash(data["password"]),
        "is_active": True,
        "created_by": actor["id"] if actor else None,
    })
    try:
        user = await store.create(USERS, doc)
    except DuplicateKeyError:
        raise ConflictError("Email already registered")
    logger.info(f"User created: {email}, role: {user['role']}")
    return public_user(user)


async def update_user(
    store: EntityStore, actor: Dict[str, Any], user_id: str, patch: Dict[str, Any]
) -> Dict[str, Any]:
    check_fields(patch, PROFILE_FIELDS | ADMIN_FIELDS, "User")
    if actor["id"] != user_id and not is_admin(actor):
        raise ForbiddenError("Not allowed to update this user")
    if set(patch) & ADMIN_FIELDS and not is_admin(actor):
        raise ForbiddenError("Only admins can change roles or activation")
    if actor["id"] == user_id and patch.get("is_active") is False:
        raise ValidationError("Cannot deactivate your own account")

    user = await store.find_by_id(USERS, user_id)
    if not user:
        raise NotFoundError("User not found")

    changes = dict(patch)
    if "email" in changes:
        changes["email"] = changes["email"].lower()
        existing = await get_user_by_email(store, changes["email"])
        if existing and existing["id"] != user_id:
            raise ConflictError("Email already registered")
    if "role" in changes:
        changes["role"] = UserRole(changes["role"]).value
    if "password" in changes:
        changes["hashed_password"] = get_password_hash(changes.pop("password"))
        logger.debug("Password hashed for update")

    try:
        updated = await store.update_by_id(USERS, user_id, {**changes, "updated_by": actor["id"]})
    except DuplicateKeyError:
        raise ConflictError("Email already registered")
    if not updated:
        raise NotFoundError("User not found")
    logger.info(f"User updated: {updated['email']}")
    return public_user(updated)


async def delete_user(store: EntityStore, actor: Dict[str, Any], user_id: str) -> None:
    if actor["id"] == user_id:
        raise ValidationError("Cannot delete your own account")
    deleted = await store.delete_by_id(USERS, user_id)
    if not deleted:
        raise NotFoundError("User not found")
    logger.info(f"User deleted: {deleted['email']}")
