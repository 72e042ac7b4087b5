from faceguard.merge import merge_identities, merge_logs, remote_wins
from faceguard.models import AttendanceRecord
from tests.conftest import at, make_identity


def _by_id(identities):
    return {i.id: i.to_dict() for i in identities}


def test_newer_remote_replaces_local():
    local = make_identity('Asha_001', name='Asha', entity='A', last_updated=100)
    remote = make_identity('Asha_001', name='Asha', entity='B', last_updated=200)

    merged, adopted = merge_identities([local], [remote])
    assert merged[0].entity == 'B'
    assert adopted == 1

    merged, adopted = merge_identities([remote], [local])
    assert merged[0].entity == 'B'
    assert adopted == 0


def test_equal_timestamps_resolve_by_client_id_on_both_sides():
    from_a = make_identity('Asha_001', entity='A', last_updated=100, updated_by='client-a')
    from_b = make_identity('Asha_001', entity='B', last_updated=100, updated_by='client-b')

    on_a, _ = merge_identities([from_a], [from_b])
    on_b, _ = merge_identities([from_b], [from_a])

    assert on_a[0].entity == on_b[0].entity == 'B'


def test_full_tie_keeps_local():
    local = make_identity('Asha_001', entity='A', last_updated=100, updated_by='client-a')
    remote = make_identity('Asha_001', entity='B', last_updated=100, updated_by='client-a')

    assert not remote_wins(local, remote)


def test_unknown_remote_records_are_appended():
    local = make_identity('Asha_001')
    remote = make_identity('Ravi_001')

    merged, adopted = merge_identities([local], [remote])

    assert [i.id for i in merged] == ['Asha_001', 'Ravi_001']
    assert adopted == 1


def test_merge_is_idempotent():
    local = [make_identity('Asha_001', last_updated=100), make_identity('Mei_001', last_updated=50)]
    remote = [make_identity('Asha_001', entity='B', last_updated=300), make_identity('Ravi_001', last_updated=10)]

    once, _ = merge_identities(local, remote)
    twice, adopted_again = merge_identities(once, remote)

    assert _by_id(once) == _by_id(twice)
    assert adopted_again == 0


def test_disjoint_updates_converge_in_either_order():
    base = [make_identity('Asha_001', last_updated=100), make_identity('Ravi_001', last_updated=100)]
    update_a = [make_identity('Asha_001', entity='A', last_updated=200)]
    update_b = [make_identity('Ravi_001', entity='B', last_updated=250)]

    ab, _ = merge_identities(merge_identities(base, update_a)[0], update_b)
    ba, _ = merge_identities(merge_identities(base, update_b)[0], update_a)

    assert _by_id(ab) == _by_id(ba)
    assert _by_id(ab)['Asha_001']['entity'] == 'A'
    assert _by_id(ab)['Ravi_001']['entity'] == 'B'


def test_tombstone_wins_over_older_live_copy():
    live = make_identity('Asha_001', last_updated=100)
    tombstone = make_identity('Asha_001', last_updated=200, deleted=True)

    merged, _ = merge_identities([live], [tombstone])

    assert merged[0].deleted


def test_missing_timestamp_counts_as_zero():
    local = AttendanceRecord(name='Ravi', first_seen=at(0), last_seen=at(5))
    remote = AttendanceRecord(name='Ravi', first_seen=at(0), last_seen=at(30), last_updated=1)

    merged, adopted = merge_logs({'Ravi': local}, {'Ravi': remote})

    assert merged['Ravi'].last_seen == at(30)
    assert adopted == 1


def test_log_merge_keeps_records_of_both_sides():
    ravi = AttendanceRecord(name='Ravi', first_seen=at(0), last_seen=at(5), last_updated=10)
    asha = AttendanceRecord(name='Asha', first_seen=at(2), last_seen=at(3), last_updated=20)

    merged, _ = merge_logs({'Ravi': ravi}, {'Asha': asha})

    assert set(merged) == {'Ravi', 'Asha'}
