"""
Property-based tests for the Quality/Reliability Scorer.

Scores are pure functions of fetch history and entry ages; these tests pin
down their bounds and monotonicity.
"""

from hypothesis import given, settings
from hypothesis import strategies as st

from catalog_aggregator.config import ScoringConfig
from catalog_aggregator.models import FetchRecord
from catalog_aggregator.scorer import SourceScorer

from helpers import make_source


NOW = 1_700_000_000.0
DAY = 24 * 3600.0


def history_of(outcomes: list[bool]) -> list[FetchRecord]:
    return [
        FetchRecord(timestamp=NOW - (len(outcomes) - i), success=ok)
        for i, ok in enumerate(outcomes)
    ]


class TestScoreBoundsProperty:
    """Both scores always lie in [0, 1] and quality never exceeds reliability."""

    @given(
        outcomes=st.lists(st.booleans(), max_size=30),
        ages=st.lists(st.floats(min_value=0, max_value=365 * DAY), max_size=20),
        decay=st.floats(min_value=0.01, max_value=1.0),
        window=st.integers(min_value=1, max_value=20),
    )
    @settings(max_examples=200)
    def test_scores_bounded(
        self,
        outcomes: list[bool],
        ages: list[float],
        decay: float,
        window: int,
    ) -> None:
        scorer = SourceScorer(ScoringConfig(window_size=window, decay_factor=decay))

        card = scorer.score(
            make_source("a"),
            history_of(outcomes),
            [NOW - age for age in ages],
            NOW,
        )

        assert 0.0 <= card.reliability <= 1.0
        assert 0.0 <= card.quality <= 1.0
        assert card.quality <= card.reliability + 1e-9

    def test_empty_history_is_neutral(self) -> None:
        scorer = SourceScorer(ScoringConfig(neutral_score=0.5))
        assert scorer.reliability([]) == 0.5


class TestReliabilityProperty:
    """Reliability is the decayed success rate over the recent window."""

    @given(n=st.integers(min_value=1, max_value=30))
    @settings(max_examples=50)
    def test_uniform_histories(self, n: int) -> None:
        scorer = SourceScorer()
        assert scorer.reliability(history_of([True] * n)) == 1.0
        assert scorer.reliability(history_of([False] * n)) == 0.0

    @given(prefix=st.lists(st.booleans(), max_size=10))
    @settings(max_examples=100)
    def test_recent_success_outweighs_old_success(self, prefix: list[bool]) -> None:
        scorer = SourceScorer(ScoringConfig(window_size=50, decay_factor=0.8))

        recent_ok = scorer.reliability(history_of(prefix + [False, True]))
        old_ok = scorer.reliability(history_of(prefix + [True, False]))

        assert recent_ok > old_ok

    def test_only_window_counts(self) -> None:
        scorer = SourceScorer(ScoringConfig(window_size=3))
        history = history_of([False] * 10 + [True] * 3)
        assert scorer.reliability(history) == 1.0


class TestFreshnessProperty:
    """Freshness is 1 within the staleness threshold and decays beyond it."""

    @given(ages=st.lists(st.floats(min_value=0, max_value=6 * DAY), min_size=1, max_size=10))
    @settings(max_examples=100)
    def test_fresh_entries(self, ages: list[float]) -> None:
        scorer = SourceScorer()
        assert scorer.freshness([NOW - age for age in ages], NOW) == 1.0

    @given(
        young=st.floats(min_value=8 * DAY, max_value=30 * DAY),
        extra=st.floats(min_value=1 * DAY, max_value=300 * DAY),
    )
    @settings(max_examples=100)
    def test_older_entries_are_less_fresh(self, young: float, extra: float) -> None:
        scorer = SourceScorer()
        assert scorer.freshness([NOW - young - extra], NOW) < scorer.freshness([NOW - young], NOW)

    def test_no_timestamps_is_fresh(self) -> None:
        assert SourceScorer().freshness([], NOW) == 1.0
