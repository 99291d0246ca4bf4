import math

import pytest

from groupsmith.services.grouping.metrics import achieved_rank, compute_metrics
from groupsmith.services.grouping.models import GroupShell, Preference, ScoringWeights
from groupsmith.services.grouping.partition import Partition
from groupsmith.services.grouping.scoring import Scorer, is_better, rank_credit


def _prefs():
    return {
        'a': Preference(person_id='a', like_people=('b', 'c'), avoid_people=('d',)),
        'b': Preference(person_id='b', like_groups=('g2',)),
        'c': Preference(person_id='c'),
        'd': Preference(person_id='d', like_people=('c',), avoid_groups=('g1',)),
    }


def _shells():
    return [GroupShell(id='g1'), GroupShell(id='g2')]


def _partition(assignment):
    part = Partition(_shells(), ['a', 'b', 'c', 'd'])
    for gid, members in assignment.items():
        for pid in members:
            part.place(pid, gid)
    return part


def test_rank_credit_decreases_with_rank():
    assert rank_credit(1) == 1.0
    assert rank_credit(2) == 0.5
    assert rank_credit(4) == 0.25
    assert rank_credit(0) == 0.0


def test_person_score_uses_best_rank_and_avoid_penalty():
    scorer = Scorer(_prefs(), _shells(), 4)
    # a with second choice c and avoided d: 1/2 - 1
    assert scorer.person_score('a', 'g1', {'a', 'c', 'd'}) == pytest.approx(-0.5)
    # a with first choice b
    assert scorer.person_score('a', 'g1', {'a', 'b'}) == pytest.approx(1.0)
    # avoided group counts once
    assert scorer.person_score('d', 'g1', {'d'}) == pytest.approx(-1.0)
    assert scorer.person_score('b', 'g2', {'b'}) == pytest.approx(1.0)


def test_avoid_penalty_weight_scales_hits():
    scorer = Scorer(_prefs(), _shells(), 4, ScoringWeights(avoid_penalty=2.5))
    assert scorer.avoid_hits('d', 'g1', {'d'}) == 1
    assert scorer.person_score('d', 'g1', {'d'}) == pytest.approx(-2.5)


def test_balance_is_zero_at_target_and_negative_otherwise():
    scorer = Scorer(_prefs(), _shells(), 4)
    assert scorer.target_sizes == (2, 2)
    assert scorer.balance_score(_partition({'g1': ['a', 'b'], 'g2': ['c', 'd']})) == 0.0
    # deviations of 1 and 1 over two groups
    assert scorer.balance_score(_partition({'g1': ['a', 'b', 'c'], 'g2': ['d']})) == pytest.approx(-1.0)


def test_composite_combines_weighted_parts():
    weights = ScoringWeights(preference=2.0, balance=3.0)
    scorer = Scorer(_prefs(), _shells(), 4, weights)
    part = _partition({'g1': ['a', 'b', 'c'], 'g2': ['d']})
    preference = scorer.preference_score(part)
    balance = scorer.balance_score(part)
    assert scorer.composite(part) == pytest.approx(2.0 * preference + 3.0 * balance)
    breakdown = scorer.score(part)
    assert breakdown.composite == pytest.approx(scorer.composite(part))


def test_group_scores_sum_to_preference_score():
    scorer = Scorer(_prefs(), _shells(), 4)
    part = _partition({'g1': ['a', 'd'], 'g2': ['b', 'c']})
    assert scorer.group_score(part, 'g1') + scorer.group_score(part, 'g2') == pytest.approx(scorer.preference_score(part))


def test_is_better_breaks_ties_canonically():
    first = _partition({'g1': ['a', 'b'], 'g2': ['c', 'd']})
    second = _partition({'g1': ['c', 'd'], 'g2': ['a', 'b']})
    assert is_better(1.0, first, 1.0, second)
    assert not is_better(1.0, second, 1.0, first)
    assert is_better(2.0, second, 1.0, first)


def test_achieved_rank_falls_back_past_the_like_lists():
    pref = Preference(person_id='a', like_people=('b', 'c'), like_groups=('g9',))
    assert achieved_rank(pref, 'g9', {'a'}) == 1
    assert achieved_rank(pref, 'g1', {'a', 'c'}) == 2
    assert achieved_rank(pref, 'g1', {'a'}) == 3


def test_compute_metrics_reports_satisfaction_and_sizes():
    assignment = {'g1': ['a', 'b', 'd'], 'g2': ['c']}
    analytics = compute_metrics(assignment, _prefs())
    # a got first choice, b missed g2 (rank 2), d missed c (rank 2)
    assert analytics.people_with_preferences == 3
    assert analytics.percent_assigned_top_choice == pytest.approx(100.0 / 3)
    assert analytics.percent_assigned_top2 == pytest.approx(100.0)
    assert analytics.average_preference_rank == pytest.approx(5 / 3)
    assert analytics.group_sizes == {'g1': 3, 'g2': 1}
    assert analytics.size_histogram == {1: 1, 3: 1}
    assert analytics.min_group_size == 1
    assert analytics.max_group_size == 3
    assert analytics.avoided_pairs_together == 1


def test_average_rank_is_nan_without_preferences():
    prefs = {'a': Preference(person_id='a'), 'b': Preference(person_id='b')}
    analytics = compute_metrics({'g1': ['a', 'b']}, prefs)
    assert analytics.people_with_preferences == 0
    assert analytics.percent_assigned_top_choice == 0.0
    assert math.isnan(analytics.average_preference_rank)
