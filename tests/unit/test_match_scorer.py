"""
Unit тесты для MatchScorer (scoring система).

Тестируем:
- Фиксированные веса 50/30/20 и округление
- Монотонность по расстоянию, рейтингу и количеству оценок
- Причины совпадения
- Ранжирование и top-N
"""

import pytest

from tender_market.matching import MatchScorer, build_match_reasons, compute_matching_score
from tender_market.models import MatchCandidate


def candidate(pid, distance, avg=None, total=0, status='available', category='plumbing'):
    return MatchCandidate(
        professional_id=pid,
        category=category,
        status=status,
        distance_km=distance,
        total_ratings=total,
        avg_score=avg,
    )


@pytest.fixture
def scorer():
    """Фикстура для MatchScorer."""
    return MatchScorer()


@pytest.mark.unit
class TestComputeMatchingScore:

    def test_perfect_match(self):
        assert compute_matching_score(0, 15, 100, 10) == 100

    def test_worst_match(self):
        assert compute_matching_score(15, 15, 0, 0) == 0

    def test_midpoint(self):
        # 25 + 24 + 20
        assert compute_matching_score(7.5, 15, 80, 10) == 69

    def test_unrated_gets_proximity_only(self):
        assert compute_matching_score(0, 15, None, 0) == 50

    def test_volume_saturates(self):
        assert compute_matching_score(15, 15, None, 10) == compute_matching_score(15, 15, None, 500) == 20

    def test_rounds_to_nearest(self):
        # proximity 50 * (1 - 1/16) = 46.875, volume 1/10 * 20 = 2 → 48.875
        assert compute_matching_score(1, 16, None, 1) == 49

    def test_rounds_half_up(self):
        # reputation 5/100 * 30 = 1.5
        assert compute_matching_score(15, 15, 5, 0) == 2

    def test_inputs_clamped(self):
        assert compute_matching_score(30, 15, None, 0) == 0
        assert compute_matching_score(0, 15, 250, -3) == 80

    def test_non_positive_radius_rejected(self):
        with pytest.raises(ValueError):
            compute_matching_score(1, 0, 50, 1)

    def test_monotonic(self):
        scores_by_distance = [compute_matching_score(d, 15, 70, 5) for d in (0, 3, 7, 11, 15)]
        assert scores_by_distance == sorted(scores_by_distance, reverse=True)

        scores_by_rating = [compute_matching_score(5, 15, r, 5) for r in (0, 25, 50, 75, 100)]
        assert scores_by_rating == sorted(scores_by_rating)

        scores_by_volume = [compute_matching_score(5, 15, 70, n) for n in (0, 1, 4, 9, 20)]
        assert scores_by_volume == sorted(scores_by_volume)


@pytest.mark.unit
class TestMatchReasons:

    def test_full_reasons(self):
        reasons = build_match_reasons(candidate('p1', 1.234, avg=87.25, total=3))

        assert reasons == [
            "Category: plumbing",
            "Distance: 1.23 km",
            "Rating: 87.2/100",
            "3 rating(s)",
            "Available",
        ]

    def test_unrated_offline(self):
        reasons = build_match_reasons(candidate('p1', 4.0, status='offline'))

        assert reasons == ["Category: plumbing", "Distance: 4.0 km"]

    def test_custom_reachable_statuses(self):
        reasons = build_match_reasons(candidate('p1', 1.0, status='on-call'), reachable_statuses=('on-call',))
        assert reasons[-1] == "Available"


@pytest.mark.unit
class TestRanking:

    def test_orders_by_score_then_distance(self, scorer):
        ranked = scorer.rank([
            candidate('far', 10.0, avg=90, total=10),
            candidate('near', 0.5),
            candidate('twin-b', 3.0, avg=50, total=5),
            candidate('twin-a', 2.9, avg=50, total=5),
        ], radius_km=15)

        assert [c.professional_id for c in ranked][0] == 'twin-a'
        assert ranked[0].matching_score >= ranked[-1].matching_score
        assert all(c.match_reasons for c in ranked)

    def test_tie_broken_by_distance(self, scorer):
        # 0.1 km и 0.12 km дают одинаковый score
        ranked = scorer.rank([candidate('b', 0.12), candidate('a', 0.1)], radius_km=15)

        assert ranked[0].matching_score == ranked[1].matching_score
        assert [c.professional_id for c in ranked] == ['a', 'b']

    def test_top_n_after_scoring(self, scorer):
        candidates = [candidate(f"p{i}", float(i)) for i in range(10)]

        ranked = scorer.rank(candidates, radius_km=15, limit=3)

        assert [c.professional_id for c in ranked] == ['p0', 'p1', 'p2']

    def test_stats(self, scorer):
        scorer.rank([candidate('a', 0, avg=100, total=10), candidate('b', 14, avg=10)], radius_km=15)

        stats = scorer.get_stats()
        assert stats['total_scored'] == 2
        assert stats['high_score_matches'] == 1
        assert stats['low_score_matches'] == 1
