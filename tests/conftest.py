"""Shared fixtures: in-memory database, API client and a small tree builder."""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["NOTIFICATIONS_ENABLED"] = "false"
os.environ["LEASE_BACKEND"] = "memory"

from typing import Optional  # noqa: E402
from uuid import UUID  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine  # noqa: E402

from app.database import get_session  # noqa: E402
from app.main import app  # noqa: E402
from app.models import BranchModerator, Marriage, Profile, SuggestionBlock  # noqa: E402
from app.ontology import Gender, Role  # noqa: E402
from app.tree.hid import generation_of  # noqa: E402

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


@pytest.fixture(autouse=True)
def reset_db():
    SQLModel.metadata.drop_all(engine)
    SQLModel.metadata.create_all(engine)
    yield


@pytest.fixture
def session():
    with Session(engine) as session:
        yield session


@pytest.fixture
def client(session: Session):
    app.dependency_overrides[get_session] = lambda: session
    yield TestClient(app)
    app.dependency_overrides.clear()


class TreeBuilder:
    """Inserts rows directly, bypassing the services under test."""

    def __init__(self, session: Session):
        self.session = session

    def person(
        self,
        name: str,
        hid: Optional[str] = None,
        gender: Gender = Gender.MALE,
        father: Optional[Profile] = None,
        mother: Optional[Profile] = None,
        role: Role = Role.USER,
        **fields,
    ) -> Profile:
        profile = Profile(
            name=name,
            hid=hid,
            generation=generation_of(hid),
            gender=gender,
            father_id=father.id if father else None,
            mother_id=mother.id if mother else None,
            role=role,
            **fields,
        )
        self.session.add(profile)
        self.session.commit()
        self.session.refresh(profile)
        return profile

    def admin(self, name: str = "Admin") -> Profile:
        return self.person(name, hid="H9", role=Role.ADMIN)

    def marriage(self, husband: Profile, wife: Profile, munasib: Optional[str] = None, **fields) -> Marriage:
        marriage = Marriage(husband_id=husband.id, wife_id=wife.id, munasib=munasib, **fields)
        self.session.add(marriage)
        self.session.commit()
        self.session.refresh(marriage)
        return marriage

    def moderator(self, profile: Profile, branch_hid: str, assigned_by: Profile) -> BranchModerator:
        assignment = BranchModerator(user_id=profile.id, branch_hid=branch_hid, assigned_by=assigned_by.id)
        self.session.add(assignment)
        self.session.commit()
        return assignment

    def block(self, profile: Profile, blocked_by: Profile) -> SuggestionBlock:
        block = SuggestionBlock(blocked_user_id=profile.id, blocked_by=blocked_by.id)
        self.session.add(block)
        self.session.commit()
        return block

    def reload(self, profile_id: UUID) -> Profile:
        self.session.expire_all()
        return self.session.get(Profile, profile_id)


@pytest.fixture
def tree(session: Session) -> TreeBuilder:
    return TreeBuilder(session)
