"""Name chain and name-chain search tests."""

from datetime import datetime

import pytest
from sqlmodel import Session

from app.config import settings
from app.models import Profile
from app.ontology import ErrorCode, Gender
from app.results import InvalidInputError, run_guarded
from app.tree.name_chain import NameChainBuilder, build_ancestry_chain
from app.tree.search import normalize_name, score_chain, search_by_name_terms


@pytest.fixture(autouse=True)
def plain_suffix(monkeypatch):
    monkeypatch.setattr(settings, "family_name_suffix", "Alqefari")
    monkeypatch.setattr(settings, "connective_male", "bin")
    monkeypatch.setattr(settings, "connective_female", "bint")


@pytest.fixture
def line(tree):
    saad = tree.person("Saad", hid="H1")
    abdullah = tree.person("Abdullah", hid="H1-1", father=saad)
    mohammed = tree.person("Mohammed", hid="H1-1-1", father=abdullah)
    noura = tree.person("Noura", hid="H1-1-2", father=abdullah, gender=Gender.FEMALE)
    other = tree.person("Mohammed", hid="H1-2", father=saad)
    return {"saad": saad, "abdullah": abdullah, "mohammed": mohammed, "noura": noura, "other": other}


def test_chain_uses_one_connective_and_suffix(session: Session, line):
    """Test chain uses one connective and suffix."""
    builder = NameChainBuilder(session)
    assert builder.build(line["mohammed"]) == "Mohammed bin Abdullah Saad Alqefari"
    assert builder.build(line["noura"]) == "Noura bint Abdullah Saad Alqefari"
    assert builder.build(line["saad"]) == "Saad Alqefari"


def test_married_in_profile_has_no_suffix(session: Session, tree):
    """Test married in profile has no suffix."""
    wife = tree.person("Hessa", gender=Gender.FEMALE, family_origin="Al-Otaibi")
    assert build_ancestry_chain(session, wife.id) == "Hessa"


def test_chain_stops_at_deleted_father(session: Session, tree, line):
    """Test chain stops at deleted father."""
    abdullah = tree.reload(line["abdullah"].id)
    abdullah.deleted_at = datetime.utcnow()
    session.add(abdullah)
    session.commit()

    assert NameChainBuilder(session).build(line["mohammed"]) == "Mohammed Alqefari"


def test_chain_respects_depth_ceiling(session: Session, tree):
    """Test chain respects depth ceiling."""
    father = None
    for index in range(6):
        father = tree.person(f"N{index}", hid="H1" + "-1" * index, father=father)

    builder = NameChainBuilder(session, max_depth=3)
    assert builder.lineage(father) == ("N5", "N4", "N3")
    # upper lines are not polluted by the cut-short walk
    n4 = session.get(Profile, father.father_id)
    assert builder.lineage(n4) == ("N4", "N3", "N2")


def test_chain_terminates_on_cycle(session: Session, tree):
    """Test chain terminates on cycle."""
    first = tree.person("First", hid="H1")
    second = tree.person("Second", hid="H1-1", father=first)
    first = tree.reload(first.id)
    first.father_id = second.id
    session.add(first)
    session.commit()

    assert NameChainBuilder(session).lineage(second) == ("Second", "First")


def test_normalize_name_folds_variants():
    """Test normalize name folds variants."""
    assert normalize_name("أحمد") == normalize_name("احمد")
    assert normalize_name("فاطمة") == normalize_name("فاطمه")
    assert normalize_name("مُحَمَّد") == "محمد"
    assert normalize_name("  Saad   ALI ") == "saad ali"


def test_score_prefers_alignment_at_the_start():
    """Test score prefers alignment at the start."""
    assert score_chain(["mohammed", "abdullah"], ["mohammed", "abdullah", "saad"]) == 10
    assert score_chain(["abdullah", "saad"], ["mohammed", "abdullah", "saad"]) == 7
    assert score_chain(["saad", "mohammed"], ["mohammed", "abdullah", "saad"]) == 1
    assert score_chain(["khalid"], ["mohammed", "abdullah"]) == 0
    assert score_chain(["moh"], ["mohammed"]) == 10


def test_search_ranks_by_chain_position(session: Session, line):
    """Test search ranks by chain position."""
    result = search_by_name_terms(session, "Mohammed Abdullah")

    assert result["total"] == 1
    hit = result["results"][0]
    assert hit["id"] == str(line["mohammed"].id)
    assert hit["father_name"] == "Abdullah"
    assert hit["grandfather_name"] == "Saad"
    assert hit["name_chain"] == "Mohammed bin Abdullah Saad Alqefari"
    assert hit["score"] == 10


def test_search_single_term_orders_direct_matches_first(session: Session, line):
    """Test search single term orders direct matches first."""
    result = search_by_name_terms(session, ["abdullah"])

    ids = [hit["id"] for hit in result["results"]]
    assert ids[0] == str(line["abdullah"].id)
    assert set(ids[1:]) == {str(line["mohammed"].id), str(line["noura"].id)}


def test_search_skips_deleted_and_married_in(session: Session, tree, line):
    """Test search skips deleted and married in."""
    tree.person("Mohammed", family_origin="Al-Harbi")
    tree.person("Mohammed", hid="H1-3", father=line["saad"], deleted_at=datetime.utcnow())

    result = search_by_name_terms(session, "mohammed")

    assert result["total"] == 2


def test_search_paging_and_limits(session: Session, line):
    """Test search paging and limits."""
    page = search_by_name_terms(session, "saad", limit=2, offset=1)
    assert page["total"] == 5
    assert len(page["results"]) == 2
    assert page["limit"] == 2 and page["offset"] == 1

    assert search_by_name_terms(session, "saad", limit=0)["limit"] == settings.search_default_limit

    with pytest.raises(InvalidInputError):
        search_by_name_terms(session, "saad", limit=settings.search_max_limit + 1)
    with pytest.raises(InvalidInputError):
        search_by_name_terms(session, ["a", " "])


def test_search_through_guarded_call(session: Session, line):
    """Test search through guarded call."""
    result = run_guarded(session, search_by_name_terms, session, "")
    assert result.error_code == ErrorCode.INVALID_INPUT


def test_search_endpoint(client, line):
    """Test search endpoint."""
    response = client.post(
        "/api/search/name-chain",
        json={"terms": ["Noura", "Abdullah"]},
        headers={"X-Actor-Id": str(line["saad"].id)},
    )
    assert response.status_code == 200
    results = response.json()["data"]["results"]
    assert [hit["name"] for hit in results] == ["Noura"]

    assert client.post("/api/search/name-chain", json={"terms": "Noura"}).status_code == 401
