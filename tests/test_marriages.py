"""Marriage and munasib tests."""

from uuid import UUID

import pytest
from sqlmodel import Session, func, select

from app.audit.undo import undo_marriage_delete
from app.models import Marriage
from app.mutation.marriages import create_marriage, delete_marriage, update_marriage
from app.mutation.profiles import delete_profile
from app.ontology import ErrorCode, Gender, MarriageStatus
from app.results import MunasibConstraintViolation


def marriage_count(session: Session) -> int:
    return session.exec(select(func.count()).select_from(Marriage)).one()


@pytest.fixture
def couple(tree):
    husband = tree.person("Abdullah", hid="H1")
    wife = tree.person("Hessa", gender=Gender.FEMALE, family_origin="Al-Otaibi")
    cousin = tree.person("Noura", hid="H2", gender=Gender.FEMALE)
    return husband, wife, cousin


def test_munasib_is_filled_from_external_spouse(session: Session, couple):
    """Test Munasib is filled from external spouse."""
    husband, wife, _ = couple

    result = create_marriage(session, husband.id, wife.id, husband.id)

    assert result.success
    assert result.data["munasib"] == "Al-Otaibi"
    assert result.data["version"] == 1


def test_wrong_munasib_is_rejected_and_rolled_back(session: Session, couple):
    """Test wrong Munasib is rejected and rolled back."""
    husband, wife, _ = couple

    result = create_marriage(session, husband.id, wife.id, husband.id, munasib="Al-Harbi")

    assert result.error_code == ErrorCode.MUNASIB_CONSTRAINT
    assert marriage_count(session) == 0


def test_munasib_comparison_ignores_case_and_spacing(session: Session, couple):
    """Test Munasib comparison ignores case and spacing."""
    husband, wife, _ = couple
    assert create_marriage(session, husband.id, wife.id, husband.id, munasib="  al-otaibi ").success


def test_marriage_inside_the_tree_has_no_munasib(session: Session, couple):
    """Test marriage inside the tree has no Munasib."""
    husband, _, cousin = couple

    assert create_marriage(session, husband.id, cousin.id, husband.id, munasib="Al-Otaibi").error_code == (
        ErrorCode.MUNASIB_CONSTRAINT
    )
    result = create_marriage(session, husband.id, cousin.id, husband.id)
    assert result.success
    assert result.data["munasib"] is None


def test_munasib_rule_holds_for_direct_writes(session: Session, tree, couple):
    """Test Munasib rule holds for direct writes."""
    husband, wife, _ = couple

    with pytest.raises(MunasibConstraintViolation):
        tree.marriage(husband, wife, munasib=None)
    session.rollback()

    assert marriage_count(session) == 0


def test_munasib_rule_holds_on_update(session: Session, tree, couple):
    """Test Munasib rule holds on update."""
    husband, wife, _ = couple
    marriage = tree.marriage(husband, wife, munasib="Al-Otaibi")

    result = update_marriage(session, marriage.id, 1, {"munasib": "Al-Harbi"}, husband.id)
    assert result.error_code == ErrorCode.MUNASIB_CONSTRAINT

    ended = update_marriage(session, marriage.id, 1, {"status": "past", "end_date": "2020-01-01"}, husband.id)
    assert ended.success
    assert ended.data["status"] == MarriageStatus.PAST.value
    assert ended.data["version"] == 2


def test_marriage_rules(session: Session, tree, couple):
    """Test marriage rules."""
    husband, wife, cousin = couple
    stranger = tree.person("Stranger", hid="H3")

    assert create_marriage(session, wife.id, husband.id, husband.id).error_code == ErrorCode.INVALID_INPUT
    assert create_marriage(session, husband.id, wife.id, stranger.id).error_code == ErrorCode.PERMISSION_DENIED
    assert create_marriage(session, husband.id, wife.id, None).error_code == ErrorCode.AUTHENTICATION_REQUIRED

    assert create_marriage(session, husband.id, wife.id, husband.id).success
    assert create_marriage(session, husband.id, wife.id, husband.id).error_code == ErrorCode.INVALID_INPUT


def test_delete_removes_unattached_married_in_spouse(session: Session, tree, couple):
    """Test delete removes unattached married in spouse."""
    husband, wife, _ = couple
    marriage = tree.marriage(husband, wife, munasib="Al-Otaibi")

    result = delete_marriage(session, marriage.id, 1, husband.id)

    assert result.success
    assert result.data["munasib_profiles_deleted"] == [str(wife.id)]
    assert tree.reload(wife.id).deleted_at is not None
    assert tree.reload(husband.id).deleted_at is None


def test_delete_keeps_married_in_spouse_with_children(session: Session, tree, couple):
    """Test delete keeps married in spouse with children."""
    husband, wife, _ = couple
    marriage = tree.marriage(husband, wife, munasib="Al-Otaibi")
    tree.person("Saad", hid="H1-1", father=husband, mother=wife)

    result = delete_marriage(session, marriage.id, 1, husband.id)

    assert result.data["munasib_profiles_deleted"] == []
    assert tree.reload(wife.id).deleted_at is None


def test_undo_marriage_delete_restores_spouse(session: Session, tree, couple):
    """Test undo marriage delete restores spouse."""
    husband, wife, _ = couple
    marriage = tree.marriage(husband, wife, munasib="Al-Otaibi")
    log_id = UUID(delete_marriage(session, marriage.id, 1, husband.id).data["log_id"])

    result = undo_marriage_delete(session, log_id, husband.id, "deleted by mistake")

    assert result.success
    assert result.data["munasib_profiles_restored"] == [str(wife.id)]
    assert tree.reload(wife.id).deleted_at is None
    session.expire_all()
    restored = session.get(Marriage, marriage.id)
    assert restored.deleted_at is None
    assert restored.version == 3


def test_undo_marriage_delete_names_a_deleted_spouse(session: Session, tree, couple):
    """The spouse must be restored before the marriage can be."""
    husband, _, cousin = couple
    admin = tree.admin()
    marriage = tree.marriage(husband, cousin)
    log_id = UUID(delete_marriage(session, marriage.id, 1, husband.id).data["log_id"])
    assert delete_profile(session, cousin.id, 1, admin.id).success

    result = undo_marriage_delete(session, log_id, admin.id)

    assert result.error_code == ErrorCode.PARENT_MISSING
    assert "Noura" in result.message
    assert result.data["spouse_id"] == str(cousin.id)
    session.expire_all()
    assert session.get(Marriage, marriage.id).deleted_at is not None


def test_marriage_endpoints(client, couple):
    """Test marriage endpoints."""
    husband, wife, _ = couple
    headers = {"X-Actor-Id": str(husband.id)}

    created = client.post("/api/marriages", json={"husband_id": str(husband.id), "wife_id": str(wife.id)}, headers=headers)
    assert created.status_code == 201
    marriage_id = created.json()["data"]["id"]

    wrong = client.patch(
        f"/api/marriages/{marriage_id}",
        json={"expected_version": 1, "updates": {"munasib": "Al-Harbi"}},
        headers=headers,
    )
    assert wrong.status_code == 422
    assert wrong.json()["error_code"] == "MUNASIB_CONSTRAINT"

    deleted = client.delete(f"/api/marriages/{marriage_id}", params={"version": 1}, headers=headers)
    assert deleted.status_code == 200
