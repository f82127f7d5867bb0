import asyncio

import pytest

from tracking_web.event_tracker import COPIED_TEXT_LIMIT, EventTracker, scroll_percentage


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float):
        self.now += ms


class RecordingSink:
    def __init__(self, fail: bool = False, delay: float = 0.0):
        self.fail = fail
        self.delay = delay
        self.events = []

    async def __call__(self, event_type, data):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionError("backend unreachable")
        self.events.append((event_type, data))

    def of_type(self, event_type):
        return [data for kind, data in self.events if kind == event_type]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sink():
    return RecordingSink()


def test_scroll_percentage_without_overflow_is_zero():
    assert scroll_percentage(0, 400, 400) == 0
    assert scroll_percentage(50, 300, 400) == 0


def test_scroll_percentage_rounds_and_clamps():
    assert scroll_percentage(100, 500, 300) == 50
    assert scroll_percentage(1, 500, 300) == 1
    assert scroll_percentage(999, 500, 300) == 100
    assert scroll_percentage(-20, 500, 300) == 0
    assert scroll_percentage(float("nan"), 500, 300) == 0


@pytest.mark.asyncio
async def test_typing_is_debounced_into_one_event(sink, clock):
    tracker = EventTracker(sink, clock=clock, typing_debounce_ms=60)
    for text in ("d", "de", "def"):
        tracker.on_prompt_input(text)
        clock.advance(100)
        await asyncio.sleep(0.005)
    assert sink.of_type("typing") == []

    await asyncio.sleep(0.15)
    await tracker.drain()
    assert sink.of_type("typing") == [{"inputLength": 3, "timeInField": 300, "keystrokeCount": 3}]


@pytest.mark.asyncio
async def test_idle_start_and_end(sink, clock):
    tracker = EventTracker(sink, clock=clock, idle_threshold_ms=20)
    tracker.start_session("pytest")
    await asyncio.sleep(0.05)
    assert tracker.idle
    assert sink.of_type("idleStart")[0]["idleThreshold"] == 20

    # Staying idle does not repeat idleStart.
    await asyncio.sleep(0.05)
    clock.advance(5000)
    tracker.on_activity("keydown")
    await tracker.drain()

    assert not tracker.idle
    assert len(sink.of_type("idleStart")) == 1
    assert sink.of_type("idleEnd")[0]["idleDuration"] == 5000
    await tracker.close()


@pytest.mark.asyncio
async def test_activity_keeps_user_active(sink, clock):
    tracker = EventTracker(sink, clock=clock, idle_threshold_ms=200)
    tracker.start_session()
    for _ in range(4):
        await asyncio.sleep(0.02)
        tracker.on_activity("pointerdown")
    assert not tracker.idle
    assert sink.of_type("idleEnd") == []
    await tracker.close()
    assert sink.of_type("idleStart") == []


def test_unknown_activity_signal_rejected(sink):
    tracker = EventTracker(sink)
    with pytest.raises(ValueError):
        tracker.on_activity("mousewheel")


@pytest.mark.asyncio
async def test_session_duration(sink, clock):
    tracker = EventTracker(sink, clock=clock)
    tracker.start_session("Mozilla/5.0")
    clock.advance(12345)
    tracker.end_session()
    await tracker.close()

    assert sink.of_type("sessionStart")[0]["userAgent"] == "Mozilla/5.0"
    assert sink.of_type("sessionEnd")[0]["sessionDuration"] == 12345


@pytest.mark.asyncio
async def test_sink_failures_never_reach_the_caller(clock):
    sink = RecordingSink(fail=True)
    tracker = EventTracker(sink, clock=clock)
    tracker.on_paste("print('hi')", "")
    tracker.on_prompt_focus("")
    await tracker.drain()
    assert tracker.pending == 0


@pytest.mark.asyncio
async def test_dispatch_does_not_wait_for_delivery(clock):
    sink = RecordingSink(delay=0.05)
    tracker = EventTracker(sink, clock=clock)
    tracker.on_prompt_blur("abc")
    assert tracker.pending == 1
    assert sink.events == []
    await tracker.drain()
    assert sink.of_type("promptBlur")[0]["finalLength"] == 3


@pytest.mark.asyncio
async def test_clipboard_payloads(sink, clock):
    tracker = EventTracker(sink, clock=clock)
    tracker.on_paste("xyz", "ab")
    tracker.on_copy("ab", "abcd")
    tracker.on_cut("cd", "abcd")
    await tracker.drain()

    paste = sink.of_type("paste")[0]
    assert paste == {"pastedLength": 3, "source": "clipboard", "previousLength": 2, "resultingLength": 5}
    assert sink.of_type("copy")[0]["copiedLength"] == 2
    assert sink.of_type("cut")[0]["remainingLength"] == 2


@pytest.mark.asyncio
async def test_response_copy_truncates_and_skips_empty(sink, clock):
    tracker = EventTracker(sink, clock=clock)
    response = "x" * 500
    tracker.on_response_copy("", response)
    tracker.on_response_copy(response, response)
    await tracker.drain()

    copies = sink.of_type("responseCopy")
    assert len(copies) == 1
    assert copies[0]["copiedLength"] == 500
    assert len(copies[0]["copiedText"]) == COPIED_TEXT_LIMIT


@pytest.mark.asyncio
async def test_submit_and_response_view(sink, clock):
    tracker = EventTracker(sink, clock=clock)
    submitted_at = tracker.on_prompt_submit("What is a closure?")
    clock.advance(850)
    tracker.on_response_received("A function with captured state.", submitted_at, token_count=None)
    await tracker.drain()

    assert sink.of_type("promptSubmit")[0]["promptLength"] == len("What is a closure?")
    view = sink.of_type("responseView")[0]
    assert view["responseTime"] == 850
    assert view["tokenCount"] is None


@pytest.mark.asyncio
async def test_prompt_clear_only_when_text_present(sink, clock):
    tracker = EventTracker(sink, clock=clock)
    tracker.on_prompt_clear("")
    tracker.on_prompt_clear("draft", "resetButton")
    tracker.on_context_reset("draft", "old answer")
    await tracker.drain()

    clears = sink.of_type("promptClear")
    assert len(clears) == 1
    assert (clears[0]["clearedLength"], clears[0]["method"]) == (5, "resetButton")
    reset = sink.of_type("contextReset")[0]
    assert (reset["previousPromptLength"], reset["previousResponseLength"]) == (5, 10)


@pytest.mark.asyncio
async def test_response_scroll_without_overflow(sink, clock):
    tracker = EventTracker(sink, clock=clock)
    tracker.on_response_scroll(0, 300, 300)
    await tracker.drain()
    assert sink.of_type("responseScroll")[0]["scrollPercentage"] == 0


@pytest.mark.asyncio
async def test_for_client_routes_to_log_event(clock):
    calls = []

    class StubClient:
        async def log_event(self, user_id, event_type, data):
            calls.append((user_id, event_type, data))
            return True

    tracker = EventTracker.for_client(StubClient(), "A01234567", clock=clock)
    tracker.on_prompt_focus("hi")
    await tracker.drain()
    assert calls[0][:2] == ("A01234567", "promptFocus")


@pytest.mark.asyncio
async def test_idle_detection_can_be_left_to_the_browser(sink, clock):
    tracker = EventTracker(sink, clock=clock, idle_threshold_ms=10, track_idle=False)
    tracker.start_session()
    await asyncio.sleep(0.05)
    tracker.on_activity("keydown")
    await tracker.drain()

    assert not tracker.idle
    assert sink.of_type("idleStart") == []
    assert [kind for kind, _ in sink.events] == ["sessionStart"]
    await tracker.close()
