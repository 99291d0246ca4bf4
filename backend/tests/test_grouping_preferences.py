import pytest

from groupsmith.services.grouping.errors import MalformedPreferenceError, MissingPreferenceError
from groupsmith.services.grouping.models import Person
from groupsmith.services.grouping.preferences import mutual_pairs, normalize_preferences, normalize_record


def _roster(*ids):
    return [Person(id=pid) for pid in ids]


def test_normalize_record_accepts_camel_case_payload():
    pref = normalize_record({
        'studentId': ' a ',
        'likeStudentIds': ['b', 'c'],
        'avoidStudentIds': ['d'],
        'likeGroupIds': ['g1'],
        'avoidGroupIds': None,
    })
    assert pref.person_id == 'a'
    assert pref.like_people == ('b', 'c')
    assert pref.avoid_people == ('d',)
    assert pref.like_groups == ('g1',)
    assert pref.avoid_groups == ()


def test_normalize_record_drops_self_blank_and_duplicate_ids():
    pref = normalize_record({'student_id': 'a', 'like_student_ids': ['a', ' ', 'b', 'b', 'c', ' c']})
    # order of first appearance is the rank order
    assert pref.like_people == ('b', 'c')


def test_liked_and_avoided_person_counts_as_avoided():
    pref = normalize_record({'studentId': 'a', 'likeStudentIds': ['b', 'c'], 'avoidStudentIds': ['b']})
    assert pref.like_people == ('c',)
    assert pref.avoid_people == ('b',)


def test_blank_student_id_is_malformed():
    with pytest.raises(MalformedPreferenceError):
        normalize_record({'studentId': '   ', 'likeStudentIds': ['b']})


def test_non_mapping_record_is_malformed():
    with pytest.raises(MalformedPreferenceError):
        normalize_record(['a', 'b'])


def test_missing_record_is_an_error_by_default():
    with pytest.raises(MissingPreferenceError) as excinfo:
        normalize_preferences([{'studentId': 'a'}], _roster('a', 'b', 'c'))
    assert excinfo.value.ids == ['b', 'c']
    assert excinfo.value.to_dict()['kind'] == 'missing_preference'


def test_fill_missing_gives_empty_preferences_in_roster_order():
    table = normalize_preferences([{'studentId': 'c', 'likeStudentIds': ['a']}], _roster('a', 'b', 'c'), fill_missing=True)
    assert list(table) == ['a', 'b', 'c']
    assert table['a'].is_empty
    assert table['c'].like_people == ('a',)


def test_duplicate_record_is_malformed():
    records = [{'studentId': 'a'}, {'studentId': 'a', 'likeStudentIds': ['b']}]
    with pytest.raises(MalformedPreferenceError):
        normalize_preferences(records, _roster('a', 'b'), fill_missing=True)


def test_records_for_unknown_people_are_ignored():
    records = [{'studentId': 'a'}, {'studentId': 'b'}, {'studentId': 'ghost', 'likeStudentIds': ['a']}]
    table = normalize_preferences(records, _roster('a', 'b'))
    assert set(table) == {'a', 'b'}


def test_mapping_input_uses_keys_as_person_ids():
    table = normalize_preferences(
        {'a': {'likeStudentIds': ['b']}, 'b': {'likeStudentIds': ['a']}},
        _roster('a', 'b'),
    )
    assert table['a'].like_people == ('b',)
    assert mutual_pairs(table) == [('a', 'b')]


def test_mutual_pairs_ignores_one_directional_likes():
    table = normalize_preferences(
        [
            {'studentId': 'a', 'likeStudentIds': ['b', 'c']},
            {'studentId': 'b', 'likeStudentIds': ['a']},
            {'studentId': 'c', 'likeStudentIds': ['b']},
        ],
        _roster('a', 'b', 'c'),
    )
    assert mutual_pairs(table) == [('a', 'b')]
