import asyncio
import json

import httpx
import pytest

from client import SessionTracker


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class RecordingServer:
    """MockTransport handler recording every progress event"""

    def __init__(self, fail_types=(), session_id=7):
        self.events = []
        self.fail_types = set(fail_types)
        self.session_id = session_id

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.events.append(body)
        if body["type"] in self.fail_types:
            return httpx.Response(500, json={"error": "boom"})
        if body["type"] == "session_start":
            return httpx.Response(200, json={"sessionId": self.session_id})
        return httpx.Response(200, json={"success": True})

    def of_type(self, event_type):
        return [e["data"] for e in self.events if e["type"] == event_type]


class SlowServer(RecordingServer):
    """Delays the given event types and records how many requests overlap"""

    def __init__(self, slow_types=(), delay=0.05, **kwargs):
        super().__init__(**kwargs)
        self.slow_types = set(slow_types)
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0
        self.next_session_id = 1

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            body = json.loads(request.content)
            if body["type"] in self.slow_types:
                await asyncio.sleep(self.delay)
            if body["type"] == "session_start":
                self.session_id = self.next_session_id
                self.next_session_id += 1
            return RecordingServer.__call__(self, request)
        finally:
            self.in_flight -= 1


def make_tracker(server, clock=None, **kwargs):
    return SessionTracker(
        "http://testserver",
        token="token",
        transport=httpx.MockTransport(server),
        clock=clock or FakeClock(),
        **kwargs,
    )


class TestSessionLifecycle:
    @pytest.mark.asyncio
    async def test_start_session_is_idempotent(self):
        server = RecordingServer()
        async with make_tracker(server) as tracker:
            assert await tracker.start_session(3, 10) == 7
            assert await tracker.start_session(3, 10) == 7
            assert tracker.is_active

        assert len(server.of_type("session_start")) == 1

    @pytest.mark.asyncio
    async def test_overlapping_starts_open_one_session(self):
        server = SlowServer(slow_types={"session_start"})
        async with make_tracker(server) as tracker:
            ids = await asyncio.gather(tracker.start_session(1, 3), tracker.start_session(1, 3))
            assert ids == [1, 1]

        assert len(server.of_type("session_start")) == 1
        assert [e["sessionId"] for e in server.of_type("session_end")] == [1]

    @pytest.mark.asyncio
    async def test_start_after_close_is_dropped(self):
        server = RecordingServer()
        tracker = make_tracker(server)
        await tracker.close()

        assert await tracker.start_session(1, 3) is None
        assert not tracker.is_active
        assert server.events == []

    @pytest.mark.asyncio
    async def test_failed_start_leaves_tracker_inactive(self):
        server = RecordingServer(fail_types={"session_start"})
        async with make_tracker(server) as tracker:
            assert await tracker.start_session(3, 10) is None
            assert not tracker.is_active
            tracker.track_slide_view("intro")
            tracker.track_interaction("click", "next")
            await tracker.flush()

        assert [e["type"] for e in server.events] == ["session_start"]

    @pytest.mark.asyncio
    async def test_leaving_context_ends_session(self):
        server = RecordingServer()
        async with make_tracker(server) as tracker:
            await tracker.start_session(3, 4)
            tracker.track_slide_view("intro", completed=True)

        ends = server.of_type("session_end")
        assert len(ends) == 1
        assert ends[0]["sessionId"] == 7
        assert ends[0]["completedSlides"] == 1
        assert server.events[-1]["type"] == "session_end"
        assert tracker.session_id is None

    @pytest.mark.asyncio
    async def test_close_is_bounded_by_timeout(self):
        async def slow_server(request):
            body = json.loads(request.content)
            if body["type"] == "session_end":
                await asyncio.sleep(5)
            if body["type"] == "session_start":
                return httpx.Response(200, json={"sessionId": 1})
            return httpx.Response(200, json={})

        tracker = SessionTracker(
            "http://testserver", transport=httpx.MockTransport(slow_server), close_timeout=0.05
        )
        await tracker.start_session(1, 1)
        await tracker.close()

    @pytest.mark.asyncio
    async def test_flush_after_timed_out_close_is_dropped(self):
        server = SlowServer(slow_types={"session_end"}, delay=5)
        tracker = make_tracker(server, close_timeout=0.05)
        await tracker.start_session(1, 2)
        await tracker.close()

        tracker.mark_slide_completed("s1")
        await tracker.flush()

        assert server.of_type("slide_complete") == []

    @pytest.mark.asyncio
    async def test_close_swallows_connection_errors(self):
        def broken_server(request):
            raise httpx.ConnectError("connection refused", request=request)

        tracker = SessionTracker("http://testserver", transport=httpx.MockTransport(broken_server))
        assert await tracker.start_session(1, 1) is None
        await tracker.close()


class TestBuffering:
    @pytest.mark.asyncio
    async def test_slide_time_sent_as_whole_second_deltas(self):
        server = RecordingServer()
        clock = FakeClock()
        async with make_tracker(server, clock=clock) as tracker:
            await tracker.start_session(3, 10)

            tracker.track_slide_view("a", module_id="m1")
            clock.advance(2.6)
            tracker.track_slide_view("b", module_id="m1")
            await tracker.flush()

            views = server.of_type("slide_view")
            assert [(v["slideId"], v["timeSpent"]) for v in views] == [("a", 2), ("b", 0)]

            # half a second on b is kept back
            clock.advance(0.5)
            await tracker.flush()
            assert len(server.of_type("slide_view")) == 2

            clock.advance(0.5)
            await tracker.flush()
            views = server.of_type("slide_view")
            assert (views[-1]["slideId"], views[-1]["timeSpent"]) == ("b", 1)

    @pytest.mark.asyncio
    async def test_interactions_are_batched(self):
        server = RecordingServer()
        async with make_tracker(server) as tracker:
            await tracker.start_session(3, 10)
            tracker.track_slide_view("intro")
            tracker.track_interaction("click", "next")
            tracker.track_interaction("video", "play", {"position": 12})
            await tracker.flush()

        batches = server.of_type("interaction")
        assert len(batches) == 1
        assert batches[0]["sessionId"] == 7
        assert [e["eventName"] for e in batches[0]["events"]] == ["next", "play"]
        assert batches[0]["events"][0]["slideId"] == "intro"

    @pytest.mark.asyncio
    async def test_failed_interactions_are_dropped(self):
        server = RecordingServer(fail_types={"interaction"})
        async with make_tracker(server) as tracker:
            await tracker.start_session(3, 10)
            tracker.track_interaction("click", "next")
            await tracker.flush()
            await tracker.flush()

        assert len(server.of_type("interaction")) == 1

    @pytest.mark.asyncio
    async def test_mark_slide_completed_sends_slide_complete(self):
        server = RecordingServer()
        async with make_tracker(server) as tracker:
            await tracker.start_session(3, 4)
            tracker.track_slide_view("quiz", module_id="m2", lesson_id=9)
            tracker.mark_slide_completed("quiz", achievement_id=5)
            await tracker.flush()

            progress = tracker.get_progress()
            assert progress["completedSlides"] == ["quiz"]
            assert progress["completionRate"] == 25.0

        completes = server.of_type("slide_complete")
        assert completes == [{"sessionId": 7, "slideId": "quiz", "moduleId": "m2", "lessonId": 9, "achievementId": 5}]
        assert server.of_type("slide_view")[0]["completed"] is True

    @pytest.mark.asyncio
    async def test_tracking_without_session_is_a_no_op(self):
        server = RecordingServer()
        async with make_tracker(server) as tracker:
            tracker.track_slide_view("intro")
            tracker.track_interaction("click", "next")
            tracker.mark_slide_completed("intro")
            await tracker.flush()

        assert server.events == []


class TestFlushSerialization:
    @pytest.mark.asyncio
    async def test_overlapping_flushes_send_each_update_once(self):
        server = SlowServer(slow_types={"slide_complete"})
        async with make_tracker(server) as tracker:
            await tracker.start_session(3, 4)
            tracker.mark_slide_completed("s1")
            tracker.mark_slide_completed("s2")
            tracker.track_interaction("click", "next")

            await asyncio.gather(tracker.flush(), tracker.flush())

            assert [c["slideId"] for c in server.of_type("slide_complete")] == ["s1", "s2"]
            assert len(server.of_type("interaction")) == 1
            assert server.max_in_flight == 1

    @pytest.mark.asyncio
    async def test_end_session_waits_for_running_auto_flush(self):
        server = SlowServer(slow_types={"slide_complete"})
        async with make_tracker(server, flush_interval=0.01) as tracker:
            await tracker.start_session(3, 4)
            tracker.mark_slide_completed("s1")
            tracker.mark_slide_completed("s2")

            # let the periodic flush get part-way through the completions
            await asyncio.sleep(0.03)
            await tracker.end_session()

        assert [c["slideId"] for c in server.of_type("slide_complete")] == ["s1", "s2"]
        assert server.events[-1]["type"] == "session_end"
        assert server.max_in_flight == 1
