from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

Score = Literal["S", "A", "B", "C"]

# (score, min impression rate %, min like rate %); either threshold qualifies.
_SCORE_THRESHOLDS: tuple[tuple[Score, float, float], ...] = (
    ("S", 100.0, 5.0),
    ("A", 50.0, 2.0),
    ("B", 20.0, 1.0),
)


@dataclass(frozen=True)
class EngagementMetrics:
    impression_rate: float
    like_rate: float
    retweet_rate: float
    overall_score: Score

    def to_payload(self) -> dict[str, Any]:
        return {
            "impressionRate": self.impression_rate,
            "likeRate": self.like_rate,
            "retweetRate": self.retweet_rate,
            "overallScore": self.overall_score,
        }


def _rate(count: int | None, followers: int) -> float:
    if not count:
        return 0.0
    return count / followers * 100


def score_for(impression_rate: float, like_rate: float) -> Score:
    for score, min_impression, min_like in _SCORE_THRESHOLDS:
        if impression_rate >= min_impression or like_rate >= min_like:
            return score
    return "C"


def compute_engagement(
    follower_count: int,
    *,
    impression_count: int | None = None,
    like_count: int | None = None,
    retweet_count: int | None = None,
) -> EngagementMetrics:
    if follower_count <= 0:
        raise ValueError("follower_count must be a positive number")

    impression_rate = _rate(impression_count, follower_count)
    like_rate = _rate(like_count, follower_count)
    retweet_rate = _rate(retweet_count, follower_count)

    return EngagementMetrics(
        impression_rate=impression_rate,
        like_rate=like_rate,
        retweet_rate=retweet_rate,
        overall_score=score_for(impression_rate, like_rate),
    )
