import pytest

from database.auth import verify_password
from database.operations import USERS
from models.user import UserRole
from services import users
from services.exceptions import ConflictError, ForbiddenError, ValidationError

NEW_USER = {
    "email": "Sara.Khan@Example.com",
    "password": "secret123",
    "first_name": "Sara",
    "last_name": "Khan",
    "phone_numbers": ["+971501234567"],
    "role": UserRole.ENGINEER,
    "address": None,
}


async def test_create_hashes_password_and_hides_it(store, admin):
    user = await users.create_user(store, admin, NEW_USER)

    assert user["email"] == "sara.khan@example.com"
    assert user["role"] == "engineer"
    assert "hashed_password" not in user
    assert "password" not in user
    stored = await store.find_by_id(USERS, user["id"])
    assert verify_password("secret123", stored["hashed_password"])


async def test_duplicate_email_conflicts(store, admin):
    await users.create_user(store, admin, NEW_USER)
    with pytest.raises(ConflictError):
        await users.create_user(store, admin, {**NEW_USER, "email": "sara.khan@example.com"})


async def test_users_read_themselves_only(store, engineer, finance, admin):
    assert (await users.get_user(store, engineer, engineer["id"]))["id"] == engineer["id"]
    assert (await users.get_user(store, admin, engineer["id"]))["id"] == engineer["id"]
    with pytest.raises(ForbiddenError):
        await users.get_user(store, finance, engineer["id"])


async def test_only_admins_change_roles(store, engineer, admin):
    with pytest.raises(ForbiddenError):
        await users.update_user(store, engineer, engineer["id"], {"role": UserRole.ADMIN})

    updated = await users.update_user(store, engineer, engineer["id"], {"first_name": "Omar"})
    assert updated["first_name"] == "Omar"

    promoted = await users.update_user(store, admin, engineer["id"], {"role": UserRole.FINANCE})
    assert promoted["role"] == "finance"


async def test_cannot_delete_self(store, admin, engineer):
    with pytest.raises(ValidationError):
        await users.delete_user(store, admin, admin["id"])

    await users.delete_user(store, admin, engineer["id"])
    assert await store.find_by_id(USERS, engineer["id"]) is None


async def test_active_engineers(store, engineer, finance, make_user):
    await make_user(UserRole.ENGINEER, is_active=False)

    active = await users.list_active_engineers(store)
    assert [user["id"] for user in active] == [engineer["id"]]
