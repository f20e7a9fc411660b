import pytest

from disk_io import DiskIoCorrelator, DiskIoRecord, IoType


def test_issue_and_completion_merge(block_issue, block_complete):
    events = [
        block_issue(1.0, device=1, minor=0, sector=100, sector_length=8),
        block_complete(3.5, device=1, minor=0, sector=100, sector_length=8),
    ]

    records = DiskIoCorrelator(events).correlate()

    assert len(records) == 1
    record = records[0]
    assert record.issue is events[0]
    assert record.complete is events[1]
    assert record.matched
    assert record.duration() == 2.5
    assert record.start_time() == 1.0
    assert record.end_time() == 3.5


def test_unmatched_issue_is_issue_only(block_issue, block_complete):
    events = [block_issue(1.0, sector=100), block_complete(2.0, sector=200)]

    correlator = DiskIoCorrelator(events)
    records = correlator.correlate()

    assert len(records) == 2
    issue_only, completion_only = records
    assert issue_only.complete is None
    assert issue_only.duration() == 0.0
    assert issue_only.end_time() == 1.0
    assert completion_only.issue is None
    assert completion_only.length() == 0
    assert correlator.outstanding_keys() == [(8, 0, 100, 8)]


def test_key_includes_device_and_length(block_issue, block_complete):
    events = [
        block_issue(0.0, device=8, minor=0, sector=100, sector_length=8),
        block_complete(1.0, device=8, minor=16, sector=100, sector_length=8),
        block_complete(2.0, device=8, minor=0, sector=100, sector_length=16),
        block_complete(3.0, device=8, minor=0, sector=100, sector_length=8),
    ]

    records = DiskIoCorrelator(events).correlate()

    assert len(records) == 3
    assert records[0].matched
    assert records[0].complete is events[3]
    assert all(r.issue is None for r in records[1:])


def test_reissue_leaves_previous_issue_unmatched(block_issue, block_complete):
    events = [block_issue(0.0), block_issue(1.0), block_complete(2.0)]

    correlator = DiskIoCorrelator(events)
    records = correlator.correlate()

    assert len(records) == 2
    assert records[0].issue is events[0] and records[0].complete is None
    assert records[1].issue is events[1] and records[1].complete is events[2]
    assert correlator.reissued == 1


def test_every_issue_emits_exactly_one_record(block_issue, block_complete):
    events = [
        block_issue(0.0, sector=1), block_issue(0.1, sector=2), block_issue(0.2, sector=3),
        block_complete(0.3, sector=2), block_complete(0.4, sector=1),
    ]

    records = DiskIoCorrelator(events).correlate()

    issues = [e for e in events if e.event_name == "block:block_rq_issue"]
    assert sorted(id(r.issue) for r in records) == sorted(id(e) for e in issues)
    assert [r.sector() for r in records] == [1, 2, 3]


def test_queue_depth_for_overlapping_requests(block_issue, block_complete):
    events = [
        block_issue(0.0, sector=100),
        block_issue(1.0, sector=200),
        block_complete(2.0, sector=100),
        block_complete(3.0, sector=200),
    ]

    first, second = DiskIoCorrelator(events).correlate()

    assert first.init_queue_depth == 0
    assert second.init_queue_depth == 1
    assert first.complete_queue_depth == 2
    assert second.complete_queue_depth == 1


def test_queue_depth_is_per_device(block_issue, block_complete):
    events = [
        block_issue(0.0, device=8, minor=0, sector=1),
        block_issue(0.5, device=8, minor=16, sector=1),
        block_complete(1.0, device=8, minor=0, sector=1),
        block_complete(1.5, device=8, minor=16, sector=1),
    ]

    records = DiskIoCorrelator(events).correlate()

    assert [r.init_queue_depth for r in records] == [0, 0]
    assert [r.complete_queue_depth for r in records] == [1, 1]


def test_unmatched_requests_do_not_touch_queue_depth(block_issue, block_complete):
    events = [
        block_complete(0.0, sector=7),
        block_issue(0.5, sector=999),
        block_issue(1.0, sector=100),
        block_complete(2.0, sector=100),
    ]

    records = DiskIoCorrelator(events).correlate()
    completion_only, issue_only, matched = records

    assert matched.init_queue_depth == 0
    assert matched.complete_queue_depth == 1
    assert (issue_only.init_queue_depth, issue_only.complete_queue_depth) == (0, 0)
    assert (completion_only.init_queue_depth, completion_only.complete_queue_depth) == (0, 0)


@pytest.mark.parametrize('sector,sector_length,length,expected', [
    (100, 8, 4096, 100 * 512),
    (100, 8, 32768, 100 * 4096),
    (100, 0, 4096, 100 * 512),
    (0, 0, 0, 0),
])
def test_offset_from_issue(block_issue, sector, sector_length, length, expected):
    record = DiskIoRecord(issue=block_issue(0.0, sector=sector, sector_length=sector_length, length=length))

    assert record.offset() == expected


def test_offset_of_completion_only_uses_sector_size(block_complete):
    record = DiskIoRecord(complete=block_complete(0.0, sector=10), sector_size=4096)

    assert record.offset() == 40960


def test_default_sector_size_is_configurable(block_issue):
    records = DiskIoCorrelator([block_issue(0.0, sector=3, sector_length=0)], sector_size=4096).correlate()

    assert records[0].offset() == 3 * 4096


@pytest.mark.parametrize('flags,expected', [
    ("R", IoType.READ),
    ("RA", IoType.READ),
    ("WS", IoType.WRITE),
    ("FWS", IoType.WRITE),
    ("FF", IoType.FLUSH),
    ("DS", IoType.TRIM),
    ("N", IoType.UNKNOWN),
    ("", IoType.UNKNOWN),
])
def test_io_type_from_flags(block_issue, flags, expected):
    assert DiskIoRecord(issue=block_issue(0.0, flags=flags)).io_type() == expected


def test_record_identity_from_first_event(block_issue, block_complete):
    issue = block_issue(0.0, cpu=2, tid=55)
    record = DiskIoRecord(issue=issue, complete=block_complete(1.0, cpu=3, tid=0))

    assert record.cpu() == 2
    assert record.thread_id() == 55
    assert record.process_label() == "proc (55)"
    assert record.to_dict()['device'] == "8:0"


def test_summary(block_issue, block_complete):
    events = [
        block_issue(0.0, sector=1, flags="R"),
        block_issue(1.0, sector=2, flags="WS"),
        block_complete(2.0, sector=1, flags="R"),
        block_complete(3.0, sector=9, flags="WS"),
    ]
    correlator = DiskIoCorrelator(events)
    correlator.correlate()

    summary = correlator.summarize()

    assert summary['total_records'] == 3
    assert summary['matched'] == 1
    assert summary['issue_only'] == 1
    assert summary['completion_only'] == 1
    assert summary['io_types'] == {'Read': 1, 'Write': 2}
    assert summary['average_durations_ms'] == {'Read': 2.0}
