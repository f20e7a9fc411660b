import pytest

from trace_events import (
    BlockRequest, EventKind, RawEvent, Sample, SchedulerSwitch, StackFrame, Wakeup,
)

# fixtures defined in this file will be available to all tests


@pytest.fixture
def make_event():
    """Build a RawEvent with sensible defaults for the fields a test does not care about."""
    def _make(kind=EventKind.OTHER, timestamp=0.0, cpu=0, tid=1, pid=None, command="proc",
              event_name="other", payload=None, frames=(), stack=None):
        return RawEvent(
            kind=kind,
            timestamp=timestamp,
            cpu=cpu,
            thread_id=tid,
            process_id=tid if pid is None else pid,
            command=command,
            event_name=event_name,
            payload=payload,
            frames=tuple(frames),
            stack=stack,
        )
    return _make


@pytest.fixture
def switch(make_event):
    def _switch(timestamp, cpu=0, tid=1, command="proc", next_tid=0, stack=None):
        payload = SchedulerSwitch(command, tid, 120, "S", "next", next_tid, 120)
        return make_event(EventKind.SCHEDULER_SWITCH, timestamp, cpu, tid, command=command,
                          event_name="sched:sched_switch", payload=payload, stack=stack)
    return _switch


@pytest.fixture
def wakeup(make_event):
    def _wakeup(timestamp, cpu=0, tid=1, woken_tid=2, woken_comm="woken", target_cpu=0, stack=None):
        payload = Wakeup(woken_comm, woken_tid, 120, target_cpu)
        return make_event(EventKind.WAKEUP, timestamp, cpu, tid, event_name="sched:sched_wakeup",
                          payload=payload, stack=stack)
    return _wakeup


@pytest.fixture
def sample(make_event):
    def _sample(timestamp, cpu=0, tid=1, event_name="cpu-clock", frames=(), stack=None):
        return make_event(EventKind.SAMPLE, timestamp, cpu, tid, event_name=event_name,
                          payload=Sample(250000), frames=frames, stack=stack)
    return _sample


@pytest.fixture
def block_issue(make_event):
    def _issue(timestamp, device=8, minor=0, sector=100, sector_length=8, length=4096,
               flags="W", cpu=0, tid=1):
        payload = BlockRequest(device, minor, flags, length, sector, sector_length)
        return make_event(EventKind.BLOCK_REQUEST_ISSUE, timestamp, cpu, tid,
                          event_name="block:block_rq_issue", payload=payload)
    return _issue


@pytest.fixture
def block_complete(make_event):
    def _complete(timestamp, device=8, minor=0, sector=100, sector_length=8, flags="W", cpu=0, tid=0):
        payload = BlockRequest(device, minor, flags, 0, sector, sector_length)
        return make_event(EventKind.BLOCK_REQUEST_COMPLETE, timestamp, cpu, tid,
                          event_name="block:block_rq_complete", payload=payload)
    return _complete


def frames(*names):
    """Leaf-to-root StackFrames from "module!symbol" strings."""
    result = []
    for name in names:
        module, symbol = name.split("!")
        result.append(StackFrame(f"{sum(map(ord, name)):x}", module, symbol))
    return result


@pytest.fixture
def make_frames():
    return frames
