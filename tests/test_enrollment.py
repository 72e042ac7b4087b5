import numpy as np
import pytest

from faceguard.errors import InvalidEmbedding
from faceguard.recognition.detections import (
    POSE_DOWN,
    POSE_FRONT,
    POSE_LEFT,
    POSE_RIGHT,
    POSE_UP,
    Detection,
    best_face,
    classify_pose,
    estimate_head_pose,
)
from faceguard.recognition.enrollment import EnrollmentSession, generate_unique_id, register_identity
from tests.conftest import at, axis, make_identity

# Five-point layouts: left eye, right eye, nose tip, mouth left, mouth right
FIVE_POINT = {
    POSE_FRONT: [(30, 40), (70, 40), (50, 60), (35, 80), (65, 80)],
    POSE_LEFT: [(30, 40), (70, 40), (60, 60), (35, 80), (65, 80)],
    POSE_RIGHT: [(30, 40), (70, 40), (40, 60), (35, 80), (65, 80)],
    POSE_UP: [(30, 40), (70, 40), (50, 50), (35, 80), (65, 80)],
    POSE_DOWN: [(30, 40), (70, 40), (50, 72), (35, 80), (65, 80)],
}


def detection(pose=POSE_FRONT, score=0.9, embedding=None, bbox=(0, 0, 100, 100)):
    return Detection(
        bbox=bbox,
        score=score,
        embedding=axis(0) if embedding is None else embedding,
        landmarks=np.array(FIVE_POINT[pose], dtype=np.float32),
    )


@pytest.mark.parametrize('pose', [POSE_FRONT, POSE_LEFT, POSE_RIGHT, POSE_UP, POSE_DOWN])
def test_five_point_pose_classification(pose):
    assert classify_pose(estimate_head_pose(FIVE_POINT[pose])) == pose


def test_sixty_eight_point_front_pose():
    points = np.zeros((68, 2))
    points[0], points[16], points[8] = (0, 50), (100, 50), (50, 100)
    points[36], points[45], points[30] = (30, 40), (70, 40), (50, 65)

    pose = estimate_head_pose(points)

    assert (pose.yaw, pose.pitch) == (0, 0)
    assert classify_pose(pose) == POSE_FRONT


def test_unsupported_landmark_layout():
    with pytest.raises(ValueError):
        estimate_head_pose(np.zeros((3, 2)))


def test_best_face_prefers_largest_confident_face():
    small = detection(bbox=(0, 0, 50, 50))
    large = detection(bbox=(0, 0, 120, 120))
    unsure = detection(score=0.6, bbox=(0, 0, 300, 300))

    assert best_face([small, unsure, large]) is large
    assert best_face([unsure]) is None
    assert best_face([]) is None


def test_generate_unique_id():
    assert generate_unique_id('Asha Rao', []) == 'Asha_Rao_001'

    existing = [make_identity('Asha_Rao_001', name='asha rao ')]
    assert generate_unique_id('Asha Rao', existing) == 'Asha_Rao_002'

    taken = existing + [make_identity('Asha_Rao_002', name='Someone Else')]
    assert generate_unique_id('Asha Rao', taken) == 'Asha_Rao_003'


def test_session_captures_poses_in_order():
    session = EnrollmentSession('Asha', entity='HQ')

    assert session.offer(detection(POSE_LEFT)) is None
    assert session.offer(detection(POSE_FRONT, score=0.5)) is None
    assert session.offer(detection(POSE_FRONT, embedding=axis(0))) == POSE_FRONT

    for idx, pose in enumerate([POSE_LEFT, POSE_RIGHT, POSE_UP, POSE_DOWN], start=1):
        assert session.next_pose == pose
        assert session.offer(detection(pose, embedding=axis(idx))) == pose

    assert session.complete
    assert session.progress == (5, 5)
    assert [int(np.argmax(e)) for e in session.embeddings()] == [0, 1, 2, 3, 4]


def test_incomplete_session_has_no_embeddings():
    session = EnrollmentSession('Asha', required_poses=(POSE_FRONT, POSE_LEFT))
    session.add_embedding(axis(0))

    with pytest.raises(ValueError):
        session.embeddings()
    with pytest.raises(InvalidEmbedding):
        session.add_embedding([1.0, 2.0])


def test_register_identity_flags_but_never_blocks():
    existing = make_identity('Asha_001', name='Asha', descriptors=[axis(0)])

    identity, check = register_identity(
        'Ravi', 'Branch A', [axis(0) + axis(1, 0.1)], [existing],
        client_id='client-a', now=at(0), stamp=5000,
    )

    assert check.flagged
    assert identity.id == 'Ravi_001'
    assert identity.duplicate_of == 'Asha'
    assert identity.entity == 'Branch A'
    assert identity.last_updated == 5000
    assert identity.created_at == at(0)


def test_register_identity_validates_input():
    with pytest.raises(ValueError):
        register_identity('  ', 'HQ', [axis(0)], [])
    with pytest.raises(InvalidEmbedding):
        register_identity('Asha', 'HQ', [], [])
    with pytest.raises(InvalidEmbedding):
        register_identity('Asha', 'HQ', [[0.1, 0.2]], [make_identity('Ravi_001')])
