import numpy as np
import pytest

from faceguard.client import AttendanceClient
from faceguard.models import ROLE_SUPER_ADMIN, AdminContext, Snapshot
from faceguard.recognition.detections import Detection
from faceguard.recognition.enrollment import EnrollmentSession
from faceguard.recognition.presence import INTENT_CHECK_IN, INTENT_CHECK_OUT
from faceguard.storage import ASSET_CAPTURE, ASSET_PROFILE
from faceguard.utils.timing import day_key
from tests.conftest import at, axis, make_identity

FRAME = np.zeros((4, 4, 3), dtype=np.uint8)


def face(embedding, score=0.9):
    return Detection(bbox=(0, 0, 100, 100), score=score, embedding=embedding)


@pytest.fixture
def pushes():
    return []


@pytest.fixture
def attendance(config, state, remote, monkeypatch, pushes):
    client = AttendanceClient(config, state, store_client=remote, encoder=lambda frame: b'jpeg')
    monkeypatch.setattr(client, 'push_in_background', lambda date=None, profile_ids=(): pushes.append(date))
    return client


@pytest.fixture
def asha(state):
    identity = make_identity('Asha_001', name='Asha', entity='Branch A', descriptors=[axis(0)])
    state.save_identities([identity])
    return identity


def test_recognized_face_is_recorded_locally_then_pushed(attendance, asha, state, pushes):
    record = attendance.process_detections([face(axis(0) + axis(1, 0.1))], frame=FRAME)

    assert record.name == 'Asha'
    assert record.entity == 'Branch A'
    assert record.updated_by == 'client-a'
    assert list(state.day_logs(day_key())) == ['Asha']
    assert state.get_asset('Asha_001', ASSET_CAPTURE) == b'jpeg'
    assert pushes == [day_key()]


def test_unknown_and_weak_matches_are_not_recorded(attendance, asha, state, pushes):
    assert attendance.process_detections([face(axis(5))]) is None
    assert attendance.process_detections([face(axis(0) + axis(1, 0.6))]) is None
    assert attendance.process_detections([face(axis(0), score=0.5)]) is None
    assert attendance.process_detections([]) is None

    assert state.day_logs(day_key()) == {}
    assert pushes == []


def test_probe_of_wrong_length_is_ignored(attendance, asha):
    assert attendance.process_detections([face([0.1, 0.2, 0.3])]) is None


def test_capture_is_kept_on_first_sighting_and_manual_stamps(attendance, asha, state):
    attendance.process_detections([face(axis(0))], frame=FRAME)
    state.delete_asset('Asha_001', ASSET_CAPTURE)

    attendance.process_detections([face(axis(0))], frame=FRAME)
    assert state.get_asset('Asha_001', ASSET_CAPTURE) is None

    record = attendance.process_detections([face(axis(0))], frame=FRAME, intent=INTENT_CHECK_OUT)
    assert record.manual_out is not None
    assert state.get_asset('Asha_001', ASSET_CAPTURE) == b'jpeg'


def test_manual_intent_and_validation(attendance, asha):
    attendance.intent = INTENT_CHECK_IN
    assert attendance.process_detections([face(axis(0))]).manual_in is not None

    with pytest.raises(ValueError):
        attendance.process_detections([face(axis(0))], intent='lunch')


def test_matcher_follows_enrollment(attendance, state, pushes):
    assert attendance.process_detections([face(axis(2))]) is None

    session = EnrollmentSession('Mei', entity='HQ', required_poses=('front',))
    session.add_embedding(axis(2))
    identity, check = attendance.enroll(session, image=b'photo')

    assert not check.flagged
    assert identity.has_image
    assert state.get_asset(identity.id) == b'photo'
    assert attendance.process_detections([face(axis(2))]).name == 'Mei'
    assert len(pushes) == 2


def test_enrollment_flags_lookalike(attendance, asha, state):
    session = EnrollmentSession('Ravi', required_poses=('front',))
    session.add_embedding(axis(0) + axis(1, 0.1))

    identity, check = attendance.enroll(session)

    assert check.duplicate_of == 'Asha'
    assert [i.id for i in state.identities()] == ['Asha_001', 'Ravi_001']
    assert not identity.has_image


def test_duplicate_scan_commits_flags(attendance, state, pushes):
    state.save_identities([
        make_identity('A_001', name='A', created_at=at(0)),
        make_identity('B_001', name='B', descriptors=[axis(0) + axis(1, 0.2)], created_at=at(1)),
    ])

    scan = attendance.scan_duplicates()

    assert scan.found == 1
    assert state.identities()[1].duplicate_of == 'A'
    assert len(pushes) == 1


def test_admin_actions_push(attendance, asha, state, pushes):
    attendance.delete_identity(AdminContext('root', role=ROLE_SUPER_ADMIN), 'Asha_001')

    assert state.active_identities() == []
    assert len(pushes) == 1


def test_detection_tick(config, state, remote, asha):
    client = AttendanceClient(config, state, store_client=remote, detector=lambda frame: [face(axis(0))])
    client.push_in_background = lambda date=None, profile_ids=(): None

    assert client.detection_tick(lambda: None) is None
    assert client.detection_tick(lambda: FRAME).name == 'Asha'

    with pytest.raises(RuntimeError):
        AttendanceClient(config, state, store_client=remote).detection_tick(lambda: FRAME)


def test_background_push_reaches_store(config, state, remote, repository, asha):
    client = AttendanceClient(config, state, store_client=remote)

    client.push_in_background().join(5)

    assert [i.id for i in repository.snapshot().identities] == ['Asha_001']


def test_background_push_failure_is_only_logged(config, state, remote, asha):
    remote.online = False
    client = AttendanceClient(config, state, store_client=remote)

    client.push_in_background().join(5)

    assert [i.id for i in state.identities()] == ['Asha_001']


def test_stop_runs_final_sync(config, state, remote, repository, asha):
    client = AttendanceClient(config, state, store_client=remote, detector=lambda frame: [])
    client.start(lambda: None)

    report = client.stop()

    assert report.ok
    assert [i.id for i in repository.snapshot().identities] == ['Asha_001']


def test_peer_identity_of_another_dimension_does_not_stop_attendance(config, state, remote, repository, asha):
    repository.merge(Snapshot(identities=[make_identity('Wide_001', descriptors=[axis(0, dim=4)])], date=day_key()))
    client = AttendanceClient(config, state, store_client=remote)
    client.push_in_background = lambda date=None, profile_ids=(): None

    client.sync_now()

    assert [i.id for i in state.identities()] == ['Asha_001']
    assert client.process_detections([face(axis(0))]).name == 'Asha'

    session = EnrollmentSession('Mei', required_poses=('front',))
    session.add_embedding(axis(2))
    identity, _ = client.enroll(session)
    assert identity.dim == 8


def test_recognition_uploads_no_profile_assets(config, state, remote):
    people = [make_identity(f'P{i}_001', name=f'P{i}', descriptors=[axis(i)], has_image=True) for i in range(5)]
    state.save_identities(people)
    for person in people:
        state.put_asset(person.id, b'photo', ASSET_PROFILE)
    client = AttendanceClient(config, state, store_client=remote)
    workers = []
    push = client.push_in_background
    client.push_in_background = lambda date=None, profile_ids=(): workers.append(push(date, profile_ids))

    for _ in range(4):
        assert client.process_detections([face(axis(0))]).name == 'P0'
    for worker in workers:
        worker.join(5)

    assert len(workers) == 4
    assert [post for post in remote.asset_posts if post[1] == ASSET_PROFILE] == []


def test_enrollment_uploads_only_the_new_profile(config, state, remote):
    state.save_identities([make_identity('Asha_001', name='Asha', has_image=True)])
    state.put_asset('Asha_001', b'asha', ASSET_PROFILE)
    client = AttendanceClient(config, state, store_client=remote)
    workers = []
    push = client.push_in_background
    client.push_in_background = lambda date=None, profile_ids=(): workers.append(push(date, profile_ids))

    session = EnrollmentSession('Mei', required_poses=('front',))
    session.add_embedding(axis(2))
    identity, _ = client.enroll(session, image=b'photo')
    workers[0].join(5)

    assert remote.asset_posts == [(identity.id, ASSET_PROFILE)]
