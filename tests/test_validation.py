"""Validation tests."""

from datetime import datetime

import sqlalchemy as sa
from sqlmodel import Session, select

from app.models import Flag, Marriage, Profile, Run
from app.ontology import FlagType, Gender, JobStatus, JobType
from app.validation.validator import Validator, gregorian_year
from app.worker import tasks


def flags_of(session: Session, flag_type: FlagType) -> list[Flag]:
    return list(session.exec(select(Flag).where(Flag.flag_type == flag_type)).all())


def write_raw(session: Session, profile: Profile, **values) -> None:
    """Update a profile row without the ORM flush hooks."""
    session.exec(sa.update(Profile.__table__).where(Profile.__table__.c.id == profile.id).values(**values))
    session.commit()
    session.expire_all()


def test_clean_tree_has_no_flags(session: Session, tree):
    """Test clean tree has no flags."""
    father = tree.person("Saad", hid="H1")
    tree.person("Abdullah", hid="H1-1", father=father, dob_data={"gregorian": {"year": 1950}})
    wife = tree.person("Hessa", gender=Gender.FEMALE, family_origin="Al-Otaibi")
    tree.marriage(father, wife, munasib="Al-Otaibi")

    result = Validator(session).validate_all()

    assert result == {"profiles_validated": 3, "marriages_validated": 1, "flags_created": 0}


def test_lifespan_validation_invalid(session: Session, tree):
    """Death before birth is an error."""
    person = tree.person(
        "Saad",
        hid="H1",
        dob_data={"gregorian": {"year": 1990}},
        dod_data={"gregorian": {"year": 1980}},
    )

    Validator(session).validate_all()

    flags = flags_of(session, FlagType.LIFESPAN_INVALID)
    assert len(flags) == 1
    assert flags[0].entity_id == person.id
    assert flags[0].severity == "error"


def test_unrealistic_lifespan_is_a_warning(session: Session, tree):
    """Test unrealistic lifespan is a warning."""
    tree.person("Saad", hid="H1", dob_data={"gregorian": 1800}, dod_data={"gregorian": 1990})

    Validator(session).validate_all()

    flags = flags_of(session, FlagType.LIFESPAN_INVALID)
    assert len(flags) == 1
    assert flags[0].severity == "warning"


def test_gregorian_year_reads_both_shapes():
    """Test gregorian year reads both shapes."""
    assert gregorian_year({"gregorian": {"year": 1990}}) == 1990
    assert gregorian_year({"gregorian": "1990"}) == 1990
    assert gregorian_year({"hijri": {"year": 1410}}) is None
    assert gregorian_year(None) is None


def test_malformed_dates_written_around_the_hooks(session: Session, tree):
    """Test malformed dates written around the hooks."""
    person = tree.person("Saad", hid="H1")
    write_raw(session, person, dob_data={"year": 1990})

    Validator(session).validate_all()

    flags = flags_of(session, FlagType.INVALID_DATE_SHAPE)
    assert len(flags) == 1
    assert flags[0].details == {"field": "dob_data"}


def test_hid_mismatch(session: Session, tree):
    """Test HID mismatch."""
    father = tree.person("Saad", hid="H1")
    child = tree.person("Abdullah", hid="H1-1", father=father)
    write_raw(session, child, hid="H2-1")

    Validator(session).validate_all()

    flags = flags_of(session, FlagType.HID_MISMATCH)
    assert len(flags) == 1
    assert flags[0].entity_id == child.id


def test_generation_mismatch(session: Session, tree):
    """Test generation mismatch."""
    person = tree.person("Saad", hid="H1")
    write_raw(session, person, generation=5)

    Validator(session).validate_all()

    assert [flag.entity_id for flag in flags_of(session, FlagType.HID_MISMATCH)] == [person.id]


def test_deleted_parent_reference(session: Session, tree):
    """Test deleted parent reference."""
    father = tree.person("Saad", hid="H1")
    child = tree.person("Abdullah", hid="H1-1", father=father)
    write_raw(session, father, deleted_at=datetime.utcnow())

    Validator(session).validate_all()

    flags = flags_of(session, FlagType.ORPHANED_REFERENCE)
    assert len(flags) == 1
    assert flags[0].entity_id == child.id
    assert flags[0].details["field"] == "father_id"


def test_circular_relationship_detection(session: Session, tree):
    """Test circular relationship detection."""
    first = tree.person("First", hid="H1")
    second = tree.person("Second", hid="H1-1", father=first)
    write_raw(session, first, father_id=second.id)

    Validator(session).validate_all()

    assert len(flags_of(session, FlagType.CIRCULAR_RELATIONSHIP)) == 1


def test_munasib_violation_written_around_the_hooks(session: Session, tree):
    """Test Munasib violation written around the hooks."""
    husband = tree.person("Saad", hid="H1")
    wife = tree.person("Hessa", gender=Gender.FEMALE, family_origin="Al-Otaibi")
    marriage = tree.marriage(husband, wife, munasib="Al-Otaibi")
    session.exec(
        sa.update(Marriage.__table__).where(Marriage.__table__.c.id == marriage.id).values(munasib="Al-Harbi")
    )
    session.commit()

    result = Validator(session).validate_all()

    flags = flags_of(session, FlagType.MUNASIB_VIOLATION)
    assert result["flags_created"] == 1
    assert flags[0].entity_id == marriage.id
    assert flags[0].details == {"munasib": "Al-Harbi"}


def test_validation_job_tracks_run(session: Session, tree, monkeypatch):
    """Test validation job tracks run."""
    monkeypatch.setattr(tasks, "engine", session.get_bind())
    tree.person("Saad", hid="H1", dob_data={"gregorian": 1990}, dod_data={"gregorian": 1980})
    run = Run(job_type=JobType.VALIDATE_TREE)
    session.add(run)
    session.commit()

    result = tasks.run_validation(str(run.run_id))

    assert result["flags_created"] == 1
    session.expire_all()
    stored = session.get(Run, run.run_id)
    assert stored.status == JobStatus.COMPLETED
    assert stored.result_summary == result
    assert stored.completed_at is not None
