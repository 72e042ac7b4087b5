import math

import numpy as np
import pytest

from faceguard.errors import InvalidEmbedding
from faceguard.recognition.matching import (
    UNKNOWN_LABEL,
    DescriptorMatcher,
    check_match_threshold,
    distance_to_confidence,
    match_to_percentage,
)
from tests.conftest import axis, make_identity


@pytest.fixture
def asha():
    poses = [axis(i, 2.0) for i in range(5)]
    return make_identity('Asha_001', name='Asha', descriptors=poses)


def test_matching_a_reference_vector_returns_its_identity(asha):
    matcher = DescriptorMatcher([asha, make_identity('Ravi_001', name='Ravi', descriptors=[axis(6, 2.0)])])

    result = matcher.best_match(asha.descriptors[3])

    assert result.identity is asha
    assert result.distance == 0.0
    assert result.confidence == 100.0


def test_close_probe_matches_and_far_probe_is_unknown(asha):
    matcher = DescriptorMatcher([asha], threshold=0.6)

    close = matcher.best_match(asha.descriptors[0] + axis(5, 0.25))
    assert close.label == 'Asha'
    assert close.distance == pytest.approx(0.25)

    far = matcher.best_match(asha.descriptors[0] + axis(5, 0.9))
    assert far.is_unknown
    assert far.label == UNKNOWN_LABEL
    assert far.distance == pytest.approx(0.9)
    assert far.confidence == 0.0


def test_empty_matcher_returns_unknown():
    result = DescriptorMatcher([]).best_match(axis(0))
    assert result.is_unknown
    assert math.isinf(result.distance)


def test_tombstoned_identities_never_match(asha):
    deleted = make_identity('Gone_001', name='Gone', descriptors=[axis(7)], deleted=True)
    matcher = DescriptorMatcher([asha, deleted])

    assert len(matcher) == 1
    assert matcher.best_match(axis(7)).is_unknown


def test_lowering_threshold_never_grows_accepted_set():
    rng = np.random.default_rng(7)
    identities = [
        make_identity(f'P_{i:03d}', descriptors=list(rng.normal(size=(3, 8)) * 0.5))
        for i in range(6)
    ]
    probes = rng.normal(size=(40, 8)) * 0.5
    matcher = DescriptorMatcher(identities)

    def accepted(threshold):
        m = matcher.with_threshold(threshold)
        return {idx for idx, probe in enumerate(probes) if not m.best_match(probe).is_unknown}

    thresholds = [0.2, 0.4, 0.6, 0.8, 1.0, 1.5]
    sets = [accepted(t) for t in thresholds]
    for smaller, larger in zip(sets, sets[1:]):
        assert smaller <= larger


def test_probe_of_wrong_length_is_rejected(asha):
    with pytest.raises(InvalidEmbedding):
        DescriptorMatcher([asha]).best_match([0.1, 0.2])


def test_identities_of_different_lengths_are_rejected(asha):
    short = make_identity('Short_001', descriptors=[[0.1, 0.2]])
    with pytest.raises(InvalidEmbedding):
        DescriptorMatcher([asha, short])


def test_confidence_scale_is_fixed():
    assert distance_to_confidence(0.35, 0.7) == pytest.approx(50.0)
    assert distance_to_confidence(0.9, 0.7) == 0.0
    assert distance_to_confidence(math.inf) == 0.0
    assert match_to_percentage(0.0) == '100.0%'


def test_attendance_gate_requires_minimum_score():
    assert check_match_threshold(0.5)
    assert not check_match_threshold(0.6)
    assert not check_match_threshold(0.75)
