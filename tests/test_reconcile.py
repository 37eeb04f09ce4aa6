"""
Tests for reconciling a ranking suggestion against live page state
"""
import pytest

from buddy.models import Candidate, Outcome, Suggestion
from buddy.reconcile import (
    STATUS_LOW_CONFIDENCE,
    STATUS_NO_MATCH,
    STATUS_SAFER_ALTERNATE,
    STATUS_UNAVAILABLE,
    STATUS_UNAVAILABLE_ALTERNATES,
    Reconciler,
)

pytestmark = pytest.mark.asyncio


def oracle(target, confidence, label="whatever"):
    return Suggestion(target=target, label=label, confidence=confidence,
                      explanation="model says so", source="llm")


def checker_for(*present):
    async def check(target_id):
        return target_id in present
    return check


@pytest.fixture
def reconciler():
    return Reconciler()


async def test_confident_and_present_is_accepted(reconciler, password_candidates):
    resolution = await reconciler.resolve("change my password", password_candidates, oracle("b", 0.8))

    assert resolution.outcome is Outcome.ACCEPTED
    assert resolution.primary.target == "b"
    assert resolution.primary.label == "Settings"
    assert resolution.primary.confidence == 0.8
    assert resolution.used_alternate is False


async def test_threshold_is_exclusive(reconciler, password_candidates):
    resolution = await reconciler.resolve("change my password", password_candidates, oracle("b", 0.55))

    assert resolution.outcome is Outcome.DEGRADED_ORIGINAL
    assert resolution.primary.confidence == 0.55


async def test_stale_original_without_alternates_is_unavailable(reconciler, password_candidates):
    resolution = await reconciler.resolve(
        "change my password", password_candidates, oracle("b", 0.9), checker=checker_for("a", "c"),
    )

    assert resolution.outcome is Outcome.UNAVAILABLE_ORIGINAL
    assert resolution.primary.target is None
    assert resolution.primary.confidence <= 0.5
    assert resolution.status == STATUS_UNAVAILABLE


async def test_low_confidence_uses_confirmed_alternate(reconciler, billing_candidates):
    resolution = await reconciler.resolve("billing", billing_candidates, oracle("a", 0.4))

    assert resolution.outcome is Outcome.USED_ALTERNATE
    assert resolution.used_alternate is True
    assert resolution.status == STATUS_SAFER_ALTERNATE
    assert resolution.primary.target == "d"
    assert resolution.primary.source == "alternate"
    assert resolution.primary.confidence == pytest.approx(0.5)
    assert [alt.target for alt in resolution.alternates] == ["d", "c"]
    assert [alt.confidence for alt in resolution.alternates] == pytest.approx([0.5, 0.45])


async def test_unconfirmed_alternates_are_skipped(reconciler, billing_candidates):
    resolution = await reconciler.resolve(
        "billing", billing_candidates, oracle("a", 0.4), checker=checker_for("a", "b", "c"),
    )

    assert resolution.primary.target == "c"
    assert [alt.target for alt in resolution.alternates] == ["c"]


async def test_degraded_original_when_nothing_better(reconciler, password_candidates):
    resolution = await reconciler.resolve("change my password", password_candidates, oracle("b", 0.3))

    assert resolution.outcome is Outcome.DEGRADED_ORIGINAL
    assert resolution.primary.target == "b"
    assert resolution.primary.confidence == 0.3
    assert resolution.status == STATUS_LOW_CONFIDENCE


async def test_no_oracle_and_no_alternates(reconciler, password_candidates):
    resolution = await reconciler.resolve("zzz", password_candidates, None)

    assert resolution.outcome is Outcome.NO_MATCH
    assert resolution.primary is None
    assert resolution.status == STATUS_NO_MATCH
    assert resolution.to_dict()["primary"] is None


async def test_out_of_set_target_never_surfaces(reconciler, password_candidates):
    resolution = await reconciler.resolve("zzz", password_candidates, oracle("z", 0.99))

    assert resolution.outcome is Outcome.UNAVAILABLE_ORIGINAL
    assert resolution.primary.target is None
    assert resolution.primary.confidence == 0.5


async def test_out_of_set_target_with_alternates(reconciler, billing_candidates):
    resolution = await reconciler.resolve("billing", billing_candidates, oracle("z", 0.99))

    assert resolution.outcome is Outcome.USED_ALTERNATE
    assert resolution.status == STATUS_UNAVAILABLE_ALTERNATES
    assert resolution.primary.target == "d"


async def test_failing_checker_counts_as_missing(reconciler, password_candidates):
    async def broken(target_id):
        raise RuntimeError("page navigated away")

    resolution = await reconciler.resolve("change my password", password_candidates, oracle("b", 0.9),
                                          checker=broken)

    assert resolution.outcome is Outcome.UNAVAILABLE_ORIGINAL
    assert resolution.primary.target is None


async def test_alternates_capped_with_descending_confidence(reconciler):
    candidates = [Candidate(id=f"x{i}", text=f"Billing {i}") for i in range(5)]

    resolution = await reconciler.resolve("billing", candidates, None)

    assert resolution.outcome is Outcome.USED_ALTERNATE
    assert len(resolution.alternates) == 3
    assert [alt.confidence for alt in resolution.alternates] == pytest.approx([0.5, 0.45, 0.4])


async def test_custom_threshold(password_candidates):
    resolution = await Reconciler(threshold=0.2).resolve("change my password", password_candidates,
                                                         oracle("b", 0.3))

    assert resolution.outcome is Outcome.ACCEPTED


async def test_disabled_match_never_beats_enabled_alternate(reconciler):
    candidates = [
        Candidate(id="off", text="Cancel subscription", clickable=True, disabled=True),
        Candidate(id="on", text="Subscription", clickable=True),
    ]

    resolution = await reconciler.resolve("cancel subscription", candidates, None)

    assert resolution.outcome is Outcome.USED_ALTERNATE
    assert resolution.primary.target == "on"
    assert [alt.target for alt in resolution.alternates] == ["on"]


async def test_disabled_alternate_used_when_nothing_enabled_scores(reconciler):
    candidates = [
        Candidate(id="off", text="Cancel subscription", clickable=True, disabled=True),
        Candidate(id="help", text="Help"),
    ]

    resolution = await reconciler.resolve("cancel subscription", candidates, None)

    assert resolution.primary.target == "off"


async def test_targetless_fallback_without_alternates_is_no_match(reconciler, password_candidates):
    fallback = Suggestion(target=None, label="Open the main menu", confidence=0.3,
                          explanation="Ranking service error", source="local")

    resolution = await reconciler.resolve("zzz", password_candidates, fallback)

    assert resolution.outcome is Outcome.NO_MATCH
    assert resolution.primary is None
    assert resolution.status == STATUS_NO_MATCH


async def test_targetless_fallback_with_alternates_is_not_called_unavailable(reconciler, billing_candidates):
    fallback = Suggestion(target=None, label="Open the main menu", confidence=0.3,
                          explanation="Ranking service error", source="local")

    resolution = await reconciler.resolve("billing", billing_candidates, fallback)

    assert resolution.outcome is Outcome.USED_ALTERNATE
    assert resolution.status == STATUS_SAFER_ALTERNATE


async def test_rejected_model_id_is_still_unavailable(reconciler, password_candidates):
    rejected = Suggestion(target=None, label="No validated match", confidence=0.2,
                          explanation="Model suggestion did not match any element on this page.", source="llm")

    resolution = await reconciler.resolve("zzz", password_candidates, rejected)

    assert resolution.outcome is Outcome.UNAVAILABLE_ORIGINAL
    assert resolution.status == STATUS_UNAVAILABLE
