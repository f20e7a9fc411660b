import pytest

from trace_events import EventKind, NonFrameMarker, StackFrame
from trace_parser import PerfScriptParser, TraceParseError

PERF_SCRIPT = """\
# ========
# captured on    : Thu Oct 17 15:37:51 2019
# ========
#
bash  1234/1235 [002]  5418.114326:     250000 cpu-clock:
\tffffffff8109f4c0 native_safe_halt+0x10 ([kernel.kallsyms])
\tffffffff8109f000 default_idle+0x20 ([kernel.kallsyms])
\t    7f0000001000 main+0x5 (/usr/bin/bash)

swapper     0 [000]  5418.114330: sched:sched_switch: prev_comm=swapper/0 prev_pid=0 prev_prio=120 prev_state=R ==> next_comm=bash next_pid=1235 next_prio=120
\tffffffff81a00000 __schedule+0x2e0 ([kernel.kallsyms])
\t-- stack truncated --

bash  1235 [002]  5418.114400: sched:sched_wakeup: comm=worker pid=77 prio=120 target_cpu=001

kworker/2:1   300 [002]  5418.114500: block:block_rq_issue: 8,0 WS 4096 () 2048 + 8 [kworker/2:1]

swapper     0 [002]  5418.115500: block:block_rq_complete: 8,0 WS () 2048 + 8 [0]

worker    77 [001]  5418.115600: sched:sched_process_exit: comm=worker pid=77 prio=120

Web Content  4000/4001 [001]  5418.116000:     250000 cpu-clock:  ffffffff81000000 do_syscall_64+0x1 ([kernel.kallsyms])
"""


@pytest.fixture
def trace_file(tmp_path):
    path = tmp_path / "perf.data.txt"
    path.write_text(PERF_SCRIPT)
    return path


@pytest.fixture
def events(trace_file):
    return PerfScriptParser(trace_file).parse()


def test_parses_every_event(events):
    assert [e.kind for e in events] == [
        EventKind.SAMPLE,
        EventKind.SCHEDULER_SWITCH,
        EventKind.WAKEUP,
        EventKind.BLOCK_REQUEST_ISSUE,
        EventKind.BLOCK_REQUEST_COMPLETE,
        EventKind.THREAD_EXIT,
        EventKind.SAMPLE,
    ]


def test_header_fields(events):
    sample = events[0]

    assert sample.command == "bash"
    assert sample.process_id == 1234
    assert sample.thread_id == 1235
    assert sample.cpu == 2
    assert sample.timestamp == pytest.approx(5418114.326)
    assert sample.event_name == "cpu-clock"
    assert sample.payload.period == 250000

    # pid defaults to the thread id when perf prints only one
    assert events[1].process_id == events[1].thread_id == 0


def test_timestamps_never_decrease(events):
    timestamps = [e.timestamp for e in events]
    assert timestamps == sorted(timestamps)


def test_frames_are_leaf_to_root_and_normalized(events):
    assert events[0].frames == (
        StackFrame("ffffffff8109f4c0", "kernel.kallsyms", "native_safe_halt"),
        StackFrame("ffffffff8109f000", "kernel.kallsyms", "default_idle"),
        StackFrame("7f0000001000", "bash", "main"),
    )


def test_unrecognized_stack_line_becomes_marker(events):
    assert events[1].frames[-1] == NonFrameMarker("-- stack truncated --")


def test_scheduler_switch_payload(events):
    switch = events[1].scheduler_switch

    assert switch.prev_comm == "swapper/0"
    assert switch.prev_tid == 0
    assert switch.prev_state == "R"
    assert switch.next_comm == "bash"
    assert switch.next_tid == 1235


def test_wakeup_payload(events):
    wakeup = events[2].wakeup

    assert (wakeup.comm, wakeup.tid, wakeup.prio, wakeup.target_cpu) == ("worker", 77, 120, 1)


def test_block_payloads(events):
    issue = events[3].block_request
    complete = events[4].block_request

    assert events[3].command == "kworker/2:1"
    assert (issue.device, issue.device_minor, issue.flags) == (8, 0, "WS")
    assert (issue.length, issue.sector, issue.sector_length) == (4096, 2048, 8)
    assert complete.length == 0
    assert complete.key == issue.key


def test_thread_exit_payload(events):
    assert events[5].thread_exit.tid == 77


def test_command_with_spaces_and_inline_frame(events):
    sample = events[-1]

    assert sample.command == "Web Content"
    assert sample.process_id == 4000
    assert sample.frames == (StackFrame("ffffffff81000000", "kernel.kallsyms", "do_syscall_64"),)


def test_captured_on_header(trace_file):
    parser = PerfScriptParser(trace_file)
    parser.parse()

    assert parser.captured_on == "Thu Oct 17 15:37:51 2019"


def test_statistics(trace_file):
    parser = PerfScriptParser(trace_file)
    parser.parse()

    stats = parser.get_statistics()

    assert stats['total_events'] == 7
    assert stats['parse_errors'] == 0
    assert stats['event_kind_distribution']['sample'] == 2
    assert stats['time_range_ms'] == pytest.approx(5418116.0 - 5418114.326)


def test_malformed_header_is_skipped(tmp_path):
    path = tmp_path / "trace.txt"
    path.write_text(
        "this is not an event\n"
        "\n"
        "bash  10 [000]  1.000000:     250000 cpu-clock: \n"
    )
    parser = PerfScriptParser(path)

    events = parser.parse()

    assert len(events) == 1
    assert parser.parse_errors == 1


def test_strict_mode_rejects_malformed_header(tmp_path):
    path = tmp_path / "trace.txt"
    path.write_text("bash  10 [000]  1.000000:     250000 cpu-clock: \n\nnot an event\n")

    with pytest.raises(TraceParseError, match="unparseable"):
        PerfScriptParser(path, strict=True).parse()


def test_mismatched_payload_is_reported_as_other(tmp_path):
    path = tmp_path / "trace.txt"
    path.write_text(
        "bash  10 [000]  1.000000: sched:sched_switch: garbage\n"
        "\n"
        "bash  10 [000]  1.000100: irq:irq_handler_entry: irq=1 name=timer\n"
    )
    parser = PerfScriptParser(path)

    events = parser.parse()

    assert [e.kind for e in events] == [EventKind.OTHER, EventKind.OTHER]
    assert events[0].payload is None
    assert parser.payload_errors == 1


def test_missing_file_raises(tmp_path):
    with pytest.raises(TraceParseError):
        PerfScriptParser(tmp_path / "missing.txt").parse()


@pytest.mark.parametrize('event_name,expected', [
    ("cpu-clock", True),
    ("cs", True),
    ("cycles:u", True),
    ("cycles:ppp", True),
    ("sched:sched_switch", False),
    ("block:block_rq_issue", False),
])
def test_is_sample_event(event_name, expected):
    assert PerfScriptParser.is_sample_event(event_name) is expected
