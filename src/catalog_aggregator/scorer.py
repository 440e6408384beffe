"""
Quality/Reliability Scorer for config sources.

Scores are pure functions of their inputs:

- reliability: exponentially weighted success rate over the most recent
  fetch attempts, newest weighted 1, each older step multiplied by the decay
  factor.
- quality: reliability scaled by freshness, where freshness drops in
  proportion to how far the median entry age exceeds the staleness threshold.
"""

from statistics import median
from typing import Optional, Sequence

from .config import ScoringConfig
from .models import ConfigSource, FetchRecord, ScoreCard


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


class SourceScorer:
    """Computes ScoreCards for sources from their fetch history and entry ages."""

    def __init__(self, config: Optional[ScoringConfig] = None) -> None:
        self._config = config or ScoringConfig()

    def reliability(self, history: Sequence[FetchRecord]) -> float:
        """
        Exponentially weighted success rate over the last ``window_size`` records.

        Args:
            history: Fetch records, oldest first

        Returns:
            Score in [0, 1]; the neutral score when there is no history
        """
        window = list(history)[-self._config.window_size:]
        if not window:
            return _clamp(self._config.neutral_score)

        weighted_success = 0.0
        total_weight = 0.0
        weight = 1.0
        for record in reversed(window):
            total_weight += weight
            if record.success:
                weighted_success += weight
            weight *= self._config.decay_factor

        return _clamp(weighted_success / total_weight)

    def freshness(self, entry_timestamps: Sequence[float], now: float) -> float:
        """
        Freshness factor in [0, 1] from the median entry age.

        1.0 while the median age is within the staleness threshold, then
        ``threshold / median_age``.
        """
        if not entry_timestamps:
            return 1.0

        median_age = median(max(0.0, now - ts) for ts in entry_timestamps)
        threshold = self._config.staleness_threshold_seconds
        if median_age <= threshold:
            return 1.0
        return _clamp(threshold / median_age)

    def score(
        self,
        source: ConfigSource,
        history: Sequence[FetchRecord],
        entry_timestamps: Sequence[float] = (),
        now: Optional[float] = None,
    ) -> ScoreCard:
        """
        Compute the quality and reliability scores of a source.

        Args:
            source: The scored source (``last_fetched_at`` stands in for ``now``
                when ``now`` is not supplied)
            history: Fetch records for the source, oldest first
            entry_timestamps: Timestamp of every entry in the source's fragment
            now: Reference time in epoch seconds

        Returns:
            ScoreCard with both scores clamped to [0, 1]
        """
        reliability = self.reliability(history)
        reference = now if now is not None else (source.last_fetched_at or 0.0)
        quality = reliability * self.freshness(entry_timestamps, reference)
        return ScoreCard(quality=_clamp(quality), reliability=reliability)
