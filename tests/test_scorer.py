"""
Tests for the local heuristic scorer
"""
import pytest

from buddy.models import Candidate
from buddy.scorer import LocalScorer, normalize


@pytest.fixture
def scorer():
    return LocalScorer()


def test_normalize_strips_diacritics_and_case():
    assert normalize("  Ré-Sumé ÜBER ") == "re-sume uber"
    assert normalize(None) == ""


def test_exact_scores(scorer):
    """Scores are reproducible for a fixed fixture"""
    candidates = [
        Candidate(id="a", acc_name="Change email", text="Change email", control_type="button",
                  clickable=True, bbox={"x": 0, "y": 0, "w": 100, "h": 30}),
        Candidate(id="b", text="Email", control_type="email", labels=["Email address"]),
        Candidate(id="c", text="Help", ancestor_text="Change settings", clickable=True),
        Candidate(id="d", text="Change email", clickable=True, disabled=True),
    ]

    result = scorer.score("Change email", candidates)
    scores = {item.candidate.id: item.score for item in result.ranked}

    # phrase 3 + two tokens 4 + clickable 1 + area 0.5
    assert scores["a"] == 8.5
    # token 2 + identity prior 2 + labels 1
    assert scores["b"] == 5
    # ancestor token 1 + clickable 1
    assert scores["c"] == 2
    # phrase 3 + tokens 4 + clickable 1 - disabled 3
    assert scores["d"] == 5
    # ties keep original order
    assert [item.candidate.id for item in result.ranked] == ["a", "b", "d", "c"]
    assert result.best.id == "a"
    assert result.best_score == 8.5


def test_password_goal_prefers_settings(scorer, password_candidates):
    result = scorer.score("change my password", password_candidates)

    assert [item.candidate.id for item in result.ranked] == ["b", "a", "c"]
    assert result.best.id == "b"
    assert result.best_score == 1


def test_security_prior_uses_ancestor_and_control_type(scorer):
    candidate = Candidate(id="p", control_type="password", ancestor_text="Security settings")

    result = scorer.score("reset password", [candidate])

    # ancestor corroborates 2 + password control 1
    assert result.ranked[0].score == 3


def test_area_bonus_band(scorer):
    tiny = Candidate(id="t", text="x", bbox={"x": 0, "y": 0, "w": 10, "h": 10})
    normal = Candidate(id="n", text="x", bbox={"x": 0, "y": 0, "w": 120, "h": 40})
    page = Candidate(id="p", text="x", bbox={"x": 0, "y": 0, "w": 1400, "h": 900})

    scores = {item.candidate.id: item.score for item in scorer.score("zzz", [tiny, normal, page]).ranked}

    assert scores == {"t": 0, "n": 0.5, "p": 0}


def test_disabled_never_preferred_over_positive_enabled(scorer):
    candidates = [
        Candidate(id="off", text="Cancel subscription", disabled=True),
        Candidate(id="help", text="Help", clickable=True),
    ]

    result = scorer.score("cancel subscription", candidates)

    assert result.ranked[0].candidate.id == "off"
    assert result.best.id == "help"
    assert result.best_score == 1


def test_disabled_chosen_when_nothing_enabled_scores(scorer):
    candidates = [
        Candidate(id="off", text="Cancel subscription", disabled=True),
        Candidate(id="foo", text="Foo"),
    ]

    result = scorer.score("cancel subscription", candidates)

    assert result.best.id == "off"


def test_output_sorted_descending_and_stable(scorer):
    candidates = [Candidate(id=str(i), text="same", clickable=i % 3 == 0) for i in range(12)]

    ranked = scorer.score("nothing", candidates).ranked
    scores = [item.score for item in ranked]

    assert scores == sorted(scores, reverse=True)
    ones = [item.candidate.id for item in ranked if item.score == 1]
    zeros = [item.candidate.id for item in ranked if item.score == 0]
    assert ones == ["0", "3", "6", "9"]
    assert zeros == [str(i) for i in range(12) if i % 3 != 0]


def test_top_truncates_to_fifty(scorer):
    candidates = [Candidate(id=f"c{i}", text=f"item {i}") for i in range(60)]

    assert len(scorer.top("item", candidates)) == 50


def test_alternates_prefer_longer_labels_on_ties(scorer, billing_candidates):
    alternates = scorer.alternates("billing", billing_candidates)

    assert [item.candidate.id for item in alternates] == ["d", "c"]
    assert alternates[0].score == alternates[1].score == 6


def test_alternates_respect_exclusion(scorer, billing_candidates):
    alternates = scorer.alternates("billing", billing_candidates, exclude=["d"])

    assert [item.candidate.id for item in alternates] == ["c"]


def test_alternates_skip_disabled_when_enabled_scores(scorer):
    candidates = [
        Candidate(id="off", text="Cancel subscription", clickable=True, disabled=True),
        Candidate(id="on", text="Subscription", clickable=True),
    ]

    alternates = scorer.alternates("cancel subscription", candidates)

    assert [item.candidate.id for item in alternates] == ["on"]
    assert alternates[0].score == 4
