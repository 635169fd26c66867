from datetime import date
from decimal import Decimal

import pytest

from database.operations import COMMENTS, ESTIMATIONS, PROJECTS
from models.project import ProjectStatus
from models.user import UserRole
from services import estimations, projects
from services.exceptions import ConflictError, ForbiddenError, ValidationError

from conftest import estimation_payload

S = ProjectStatus


async def test_concrete_review_scenario(store, admin, finance, project):
    moved = await projects.change_status(store, admin, project["id"], S.ESTIMATION_PREPARED)
    assert moved["status"] == S.ESTIMATION_PREPARED.value

    estimation = await estimations.create_estimation(store, admin, estimation_payload(project["id"]))
    assert estimation["estimated_amount"] == Decimal("200.00")
    assert estimation["is_checked"] is False
    assert estimation["is_approved"] is False

    checked = await estimations.mark_checked(store, finance, estimation["id"], "Quantities verified")
    assert checked["is_checked"] is True
    assert checked["checked_by"] == finance["id"]

    approved = await estimations.set_approval(store, admin, estimation["id"], True, "Go ahead")
    assert approved["is_approved"] is True
    assert approved["estimated_amount"] == Decimal("200.00")

    with pytest.raises(ConflictError):
        await estimations.update_estimation(store, admin, estimation["id"], {"payment_due_by": 10})
    with pytest.raises(ConflictError):
        await estimations.delete_estimation(store, admin, estimation["id"])


async def test_create_moves_draft_project(store, engineer, project):
    estimation = await estimations.create_estimation(store, engineer, estimation_payload(project["id"]))

    assert estimation["estimation_number"].startswith("EST-")
    assert estimation["prepared_by"] == engineer["id"]
    stored_project = await store.find_by_id(PROJECTS, project["id"])
    assert stored_project["status"] == S.ESTIMATION_PREPARED.value


async def test_create_rejects_late_project(store, engineer, make_project):
    project = await make_project(S.IN_PROGRESS)
    with pytest.raises(ConflictError):
        await estimations.create_estimation(store, engineer, estimation_payload(project["id"]))
    assert await store.count(ESTIMATIONS, {}) == 0


async def test_second_estimation_for_project_conflicts(store, engineer, project):
    await estimations.create_estimation(store, engineer, estimation_payload(project["id"]))
    with pytest.raises(ConflictError):
        await estimations.create_estimation(store, engineer, estimation_payload(project["id"]))


async def test_work_dates_must_be_ordered(store, engineer, project):
    payload = estimation_payload(project["id"], work_end_date=date(2026, 10, 1))
    with pytest.raises(ValidationError):
        await estimations.create_estimation(store, engineer, payload)


async def test_profit_is_derived(store, engineer, project):
    payload = estimation_payload(
        project["id"],
        labour=[{"designation": "Mason", "days": 3, "price": 150}],
        quotation_amount=1000,
        commission_amount=50,
    )
    estimation = await estimations.create_estimation(store, engineer, payload)

    assert estimation["labour"][0]["total"] == Decimal("450.00")
    assert estimation["estimated_amount"] == Decimal("650.00")
    assert estimation["profit"] == Decimal("300.00")


async def test_check_twice_fails(store, engineer, finance, project):
    estimation = await estimations.create_estimation(store, engineer, estimation_payload(project["id"]))
    await estimations.mark_checked(store, finance, estimation["id"])

    with pytest.raises(ConflictError):
        await estimations.mark_checked(store, finance, estimation["id"])


async def test_approval_requires_check(store, engineer, admin, project):
    estimation = await estimations.create_estimation(store, engineer, estimation_payload(project["id"]))

    with pytest.raises(ConflictError):
        await estimations.set_approval(store, admin, estimation["id"], True)


async def test_approve_twice_fails(store, engineer, finance, admin, project):
    estimation = await estimations.create_estimation(store, engineer, estimation_payload(project["id"]))
    await estimations.mark_checked(store, finance, estimation["id"])
    await estimations.set_approval(store, admin, estimation["id"], True)

    with pytest.raises(ConflictError):
        await estimations.set_approval(store, admin, estimation["id"], True)


async def test_rejection_keeps_estimation_checked(store, engineer, finance, admin, project):
    estimation = await estimations.create_estimation(store, engineer, estimation_payload(project["id"]))
    await estimations.mark_checked(store, finance, estimation["id"])

    rejected = await estimations.set_approval(store, admin, estimation["id"], False, "Labour too high")
    assert rejected["is_checked"] is True
    assert rejected["is_approved"] is False
    assert rejected["approval_comment"] == "Labour too high"


async def test_edit_after_check_resets_review(store, engineer, finance, project):
    estimation = await estimations.create_estimation(store, engineer, estimation_payload(project["id"]))
    await estimations.mark_checked(store, finance, estimation["id"], "Looks right")

    updated = await estimations.update_estimation(store, engineer, estimation["id"], {
        "materials": [{"description": "Ceramic tiles", "quantity": 3, "unit": "box", "unit_price": 100}],
    })

    assert updated["is_checked"] is False
    assert updated["checked_by"] is None
    assert updated["check_comment"] is None
    assert updated["estimated_amount"] == Decimal("300.00")


@pytest.mark.parametrize("materials", [[], None])
async def test_update_cannot_empty_materials(store, engineer, project, materials):
    estimation = await estimations.create_estimation(store, engineer, estimation_payload(project["id"]))

    with pytest.raises(ValidationError):
        await estimations.update_estimation(store, engineer, estimation["id"], {"materials": materials})

    stored = await store.find_by_id(ESTIMATIONS, estimation["id"])
    assert len(stored["materials"]) == len(estimation["materials"])


@pytest.mark.parametrize("field", ["is_approved", "approved_by", "estimated_amount", "profit", "estimation_number"])
async def test_derived_and_review_fields_cannot_be_patched(store, engineer, project, field):
    estimation = await estimations.create_estimation(store, engineer, estimation_payload(project["id"]))

    with pytest.raises(ValidationError):
        await estimations.update_estimation(store, engineer, estimation["id"], {field: True})


async def test_only_preparer_or_admin_may_edit(store, engineer, admin, make_user, project):
    estimation = await estimations.create_estimation(store, engineer, estimation_payload(project["id"]))
    other = await make_user(UserRole.ENGINEER)

    with pytest.raises(ForbiddenError):
        await estimations.update_estimation(store, other, estimation["id"], {"payment_due_by": 45})

    updated = await estimations.update_estimation(store, admin, estimation["id"], {"payment_due_by": 45})
    assert updated["payment_due_by"] == 45


async def test_review_actions_are_recorded_as_activity(store, engineer, finance, admin, project):
    estimation = await estimations.create_estimation(store, engineer, estimation_payload(project["id"]))
    await estimations.mark_checked(store, finance, estimation["id"])
    await estimations.set_approval(store, admin, estimation["id"], True)

    activity = await store.find(COMMENTS, {"project_id": project["id"]}, sort=[("created_at", 1)])
    assert [comment["action_type"] for comment in activity] == ["check", "approval"]


async def test_delete_unapproved_estimation(store, engineer, project):
    estimation = await estimations.create_estimation(store, engineer, estimation_payload(project["id"]))

    await estimations.delete_estimation(store, engineer, estimation["id"])
    assert await store.find_by_id(ESTIMATIONS, estimation["id"]) is None
