"""Compensating undo tests."""

from datetime import datetime, timedelta
from uuid import UUID

import pytest
from sqlmodel import Session, func, select

from app.audit.dispatch import undo_action
from app.audit.undo import lease_key, undo_profile_delete, undo_profile_update
from app.locking import InProcessLeaseManager, get_lease_manager
from app.results import LockContentionError
from app.models import AuditLogEntry
from app.mutation.profiles import create_profile, delete_profile, update_profile
from app.ontology import ActionType, ErrorCode


def latest_entry(session: Session, action_type: ActionType) -> AuditLogEntry:
    return session.exec(
        select(AuditLogEntry)
        .where(AuditLogEntry.action_type == action_type)
        .order_by(AuditLogEntry.created_at.desc())
    ).first()


def entry_count(session: Session) -> int:
    return session.exec(select(func.count()).select_from(AuditLogEntry)).one()


@pytest.fixture
def family(tree):
    father = tree.person("Abdullah", hid="H1")
    child = tree.person("Mohammed", hid="H1-1", father=father, bio="Student")
    return father, child


def test_undo_restores_values_with_new_version(session: Session, tree, family):
    """Test undo restores values with new version."""
    father, child = family
    update_profile(session, child.id, 1, {"bio": "Engineer", "kunya": "Abu Saad"}, father.id)
    entry = latest_entry(session, ActionType.PROFILE_UPDATE)

    result = undo_profile_update(session, entry.id, father.id, "typo")

    assert result.success
    assert sorted(result.data["restored_fields"]) == ["bio", "kunya"]
    profile = tree.reload(child.id)
    assert profile.bio == "Student"
    assert profile.kunya is None
    assert profile.version == 3

    session.refresh(entry)
    assert entry.undone_at is not None
    assert entry.undone_by == father.id
    assert entry.undo_reason == "typo"

    compensating = latest_entry(session, ActionType.UNDO_PROFILE_UPDATE)
    assert compensating.compensates_log_id == entry.id
    assert not compensating.is_undoable


def test_undo_twice_reports_already_undone_without_side_effects(session: Session, tree, family):
    """Test undo twice reports already undone without side effects."""
    father, child = family
    update_profile(session, child.id, 1, {"bio": "Engineer"}, father.id)
    entry = latest_entry(session, ActionType.PROFILE_UPDATE)
    assert undo_profile_update(session, entry.id, father.id).success
    entries_before = entry_count(session)

    again = undo_profile_update(session, entry.id, father.id)

    assert again.error_code == ErrorCode.ALREADY_UNDONE
    assert again.message.startswith("Already undone at")
    assert tree.reload(child.id).version == 3
    assert entry_count(session) == entries_before


def test_undo_refuses_when_record_was_edited_since(session: Session, tree, family):
    """Test undo refuses when record was edited since."""
    father, child = family
    update_profile(session, child.id, 1, {"bio": "Engineer"}, father.id)
    entry = latest_entry(session, ActionType.PROFILE_UPDATE)
    update_profile(session, child.id, 2, {"bio": "Doctor"}, father.id)

    result = undo_profile_update(session, entry.id, father.id)

    assert result.error_code == ErrorCode.VERSION_CONFLICT
    assert tree.reload(child.id).bio == "Doctor"


def test_undo_refuses_to_reattach_deleted_parent(session: Session, tree):
    """Test undo refuses to reattach deleted parent."""
    admin = tree.admin()
    first = tree.person("Fahd", hid="H1")
    second = tree.person("Ghanim", hid="H2")
    child = tree.person("Saad", hid="H1-1", father=first)

    update_profile(session, child.id, 1, {"father_id": str(second.id)}, admin.id)
    entry = latest_entry(session, ActionType.PROFILE_UPDATE)
    assert delete_profile(session, first.id, 1, admin.id).success

    result = undo_profile_update(session, entry.id, admin.id)

    assert result.error_code == ErrorCode.PARENT_MISSING
    assert "Fahd" in result.message
    assert result.data["parent_id"] == str(first.id)
    reloaded = tree.reload(child.id)
    assert reloaded.father_id == second.id
    assert reloaded.version == 2


def test_undo_skips_values_that_no_longer_fit(session: Session, tree, family):
    """Test undo skips values that no longer fit."""
    father, child = family
    update_profile(session, child.id, 1, {"bio": "Engineer"}, father.id)
    entry = latest_entry(session, ActionType.PROFILE_UPDATE)
    entry.old_data = dict(entry.old_data, dob_data={"year": 1990})
    entry.changed_fields = ["bio", "dob_data"]
    session.add(entry)
    session.commit()

    result = undo_profile_update(session, entry.id, father.id)

    assert result.success
    assert result.data["restored_fields"] == ["bio"]
    assert "dob_data" in result.data["skipped_fields"]
    assert tree.reload(child.id).dob_data is None


def test_concurrent_undo_is_rejected_as_contention(session: Session, tree, family):
    """Test concurrent undo is rejected as contention."""
    father, child = family
    update_profile(session, child.id, 1, {"bio": "Engineer"}, father.id)
    entry = latest_entry(session, ActionType.PROFILE_UPDATE)

    with get_lease_manager().hold(lease_key(entry.id)):
        result = undo_profile_update(session, entry.id, father.id)

    assert result.error_code == ErrorCode.LOCK_CONTENTION
    assert result.retryable
    assert tree.reload(child.id).bio == "Engineer"
    # the lease is free again
    assert undo_profile_update(session, entry.id, father.id).success


def test_in_process_leases_are_exclusive_and_released():
    """A held key rejects a second holder and is forgotten on release."""
    leases = InProcessLeaseManager()

    with leases.hold("audit:1"):
        with pytest.raises(LockContentionError):
            with leases.hold("audit:1"):
                pass
        with leases.hold("audit:2"):
            assert leases.held == {"audit:1", "audit:2"}

    for attempt in range(1000):
        with leases.hold(f"audit:{attempt}"):
            pass
    assert leases.held == frozenset()


def test_lease_is_released_when_the_operation_fails():
    """An exception inside the lease still frees the key."""
    leases = InProcessLeaseManager()

    with pytest.raises(RuntimeError):
        with leases.hold("batch:1"):
            raise RuntimeError("boom")

    assert leases.held == frozenset()


def test_undo_window_applies_to_non_admins(session: Session, tree, family):
    """Test undo window applies to non admins."""
    father, child = family
    admin = tree.admin()
    update_profile(session, child.id, 1, {"bio": "Engineer"}, father.id)
    entry = latest_entry(session, ActionType.PROFILE_UPDATE)
    entry.created_at = datetime.utcnow() - timedelta(days=31)
    session.add(entry)
    session.commit()

    denied = undo_profile_update(session, entry.id, father.id)
    assert denied.error_code == ErrorCode.PERMISSION_DENIED

    assert undo_profile_update(session, entry.id, admin.id).success


def test_undo_requires_permission(session: Session, tree, family):
    """Test undo requires permission."""
    father, child = family
    stranger = tree.person("Stranger", hid="H2")
    update_profile(session, child.id, 1, {"bio": "Engineer"}, father.id)
    entry = latest_entry(session, ActionType.PROFILE_UPDATE)

    assert undo_profile_update(session, entry.id, stranger.id).error_code == ErrorCode.PERMISSION_DENIED
    assert undo_profile_update(session, entry.id, None).error_code == ErrorCode.AUTHENTICATION_REQUIRED


def test_undo_profile_delete_restores_row(session: Session, tree, family):
    """Test undo profile delete restores row."""
    father, child = family
    log_id = UUID(delete_profile(session, child.id, 1, father.id).data["log_id"])

    result = undo_profile_delete(session, log_id, father.id)

    assert result.success
    profile = tree.reload(child.id)
    assert profile.deleted_at is None
    assert profile.version == 3


def test_dispatch_routes_by_action_type(session: Session, tree, family):
    """Test dispatch routes by action type."""
    father, child = family
    update_profile(session, child.id, 1, {"bio": "Engineer"}, father.id)
    entry = latest_entry(session, ActionType.PROFILE_UPDATE)

    assert undo_action(session, entry.id, father.id).success
    assert tree.reload(child.id).bio == "Student"


def test_dispatch_rejects_unknown_and_non_undoable(session: Session, tree, family):
    """Test dispatch rejects unknown and non undoable."""
    father, _ = family
    admin = tree.admin()
    create_profile(session, {"name": "Root", "gender": "male", "hid": "H5"}, admin.id)
    created = latest_entry(session, ActionType.PROFILE_CREATE)

    assert undo_action(session, created.id, admin.id).error_code == ErrorCode.NOT_UNDOABLE
    assert undo_action(session, father.id, admin.id).error_code == ErrorCode.NOT_FOUND


def test_undo_endpoint(client, session: Session, family):
    """Test undo endpoint."""
    father, child = family
    update_profile(session, child.id, 1, {"bio": "Engineer"}, father.id)
    entry = latest_entry(session, ActionType.PROFILE_UPDATE)
    headers = {"X-Actor-Id": str(father.id)}

    first = client.post(f"/api/undo/{entry.id}", json={"reason": "mistake"}, headers=headers)
    assert first.status_code == 200
    assert first.json()["success"] is True

    second = client.post(f"/api/undo/{entry.id}", json={}, headers=headers)
    assert second.status_code == 409
    assert second.json()["error_code"] == "ALREADY_UNDONE"
