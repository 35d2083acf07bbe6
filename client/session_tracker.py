"""
Session tracker client

Buffers slide time, completions and interactions for one learning session and
reports them to ``POST /progress``. The tracker is an explicit object owned by
the caller:

    async with SessionTracker("https://learn.example.com", token=token) as tracker:
        await tracker.start_session(course_id=12, total_slides=40)
        tracker.track_slide_view("intro", module_id="m1")
        tracker.track_interaction("click", "play_video")
        await tracker.flush()

Leaving the context ends the session. Transport failures are logged and the
affected updates are dropped; they never propagate to the caller.
"""

import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import httpx

from utils.structured_logging import get_logger, LogCategory

logger = get_logger("client.session_tracker")

PROGRESS_PATH = "/progress"
DEFAULT_TIMEOUT = 10.0
DEFAULT_CLOSE_TIMEOUT = 5.0


@dataclass
class PendingSlideView:
    """Unsent state of one slide; ``seconds`` keeps the fractional remainder between flushes"""

    slide_id: str
    module_id: Optional[str] = None
    sub_module_id: Optional[str] = None
    lesson_id: Optional[int] = None
    seconds: float = 0.0
    scroll_depth: Optional[int] = None
    completed: bool = False
    dirty: bool = True


@dataclass
class PendingCompletion:
    slide_id: str
    module_id: Optional[str] = None
    lesson_id: Optional[int] = None
    achievement_id: Optional[int] = None


class SessionTracker:
    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        *,
        flush_interval: Optional[float] = None,
        close_timeout: float = DEFAULT_CLOSE_TIMEOUT,
        device_info: Optional[Dict[str, Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._client = httpx.AsyncClient(
            base_url=base_url, headers=headers, timeout=DEFAULT_TIMEOUT, transport=transport
        )
        self._flush_interval = flush_interval
        self._close_timeout = close_timeout
        self._device_info = device_info
        self._clock = clock

        self.session_id: Optional[int] = None
        self.course_id: Optional[int] = None
        self.total_slides = 0

        self._session_started_at: Optional[float] = None
        self._current_slide: Optional[str] = None
        self._slide_started_at: Optional[float] = None
        self._views: "OrderedDict[str, PendingSlideView]" = OrderedDict()
        self._pending_completions: List[PendingCompletion] = []
        self._interactions: List[Dict[str, Any]] = []
        self._completed_slides: "OrderedDict[str, None]" = OrderedDict()

        self._start_lock = asyncio.Lock()
        self._flush_lock = asyncio.Lock()
        self._auto_flush_task: Optional[asyncio.Task] = None
        self._closed = False

    async def __aenter__(self) -> "SessionTracker":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def is_active(self) -> bool:
        return self.session_id is not None

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _post_event(self, event_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._client.post(PROGRESS_PATH, json={"type": event_type, "data": data})
        response.raise_for_status()
        return response.json()

    async def _send(self, event_type: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if self._client.is_closed:
            logger.warning(
                f"Dropped {event_type} update after close",
                category=LogCategory.TRACKING,
                session_id=self.session_id,
            )
            return None
        try:
            return await self._post_event(event_type, data)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(
                f"Dropped {event_type} update",
                category=LogCategory.TRACKING,
                error_type=type(e).__name__,
                error_message=str(e),
                session_id=self.session_id,
            )
            return None

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def start_session(self, course_id: int, total_slides: int) -> Optional[int]:
        """Open a session once per tracker; returns its id, or None when the server could not be reached"""
        if self._closed:
            return None

        # Overlapping callers wait for the first start and share its id
        async with self._start_lock:
            if self.session_id is not None:
                return self.session_id

            data: Dict[str, Any] = {"courseId": course_id, "totalSlides": total_slides}
            if self._device_info:
                data["deviceInfo"] = self._device_info

            result = await self._send("session_start", data)
            if not result or "sessionId" not in result:
                return None

            self.session_id = result["sessionId"]
            self.course_id = course_id
            self.total_slides = total_slides
            self._session_started_at = self._clock()
            self._completed_slides.clear()

            if self._flush_interval:
                self._auto_flush_task = asyncio.create_task(self._auto_flush())

        logger.info(
            "Tracking session started",
            category=LogCategory.TRACKING,
            session_id=self.session_id,
            course_id=course_id,
        )
        return self.session_id

    async def end_session(self) -> Optional[Dict[str, Any]]:
        """Flush everything buffered, then close the session on the server"""
        if self.session_id is None:
            return None

        await self._stop_auto_flush()
        await self.flush()

        snapshot = self.get_progress()
        result = await self._send(
            "session_end",
            {
                "sessionId": self.session_id,
                "completedSlides": len(self._completed_slides),
                "progressSnapshot": {
                    "currentSlideId": self._current_slide,
                    "completedSlides": snapshot["completedSlides"],
                    "completionRate": snapshot["completionRate"],
                },
            },
        )

        self.session_id = None
        self._current_slide = None
        self._slide_started_at = None
        return result

    async def close(self) -> None:
        """End the session within ``close_timeout`` seconds and release the HTTP client; never raises"""
        if self._closed:
            return
        self._closed = True
        try:
            await asyncio.wait_for(self.end_session(), timeout=self._close_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Session end timed out during close",
                category=LogCategory.TRACKING,
                session_id=self.session_id, extra={"timeout": self._close_timeout},
            )
        except Exception as e:
            logger.error("Session end failed during close", category=LogCategory.TRACKING, exception=e)
        finally:
            self._cancel_auto_flush()
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Buffering
    # ------------------------------------------------------------------

    def _credit_current_slide(self) -> None:
        if self._current_slide is None or self._slide_started_at is None:
            return
        now = self._clock()
        view = self._views.get(self._current_slide)
        if view is not None:
            view.seconds += max(0.0, now - self._slide_started_at)
        self._slide_started_at = now

    def _pending_view(self, slide_id: str) -> PendingSlideView:
        view = self._views.get(slide_id)
        if view is None:
            view = PendingSlideView(slide_id=slide_id)
            self._views[slide_id] = view
        return view

    def track_slide_view(
        self,
        slide_id: str,
        module_id: Optional[str] = None,
        sub_module_id: Optional[str] = None,
        completed: bool = False,
        lesson_id: Optional[int] = None,
        scroll_depth: Optional[int] = None,
    ) -> None:
        """Make ``slide_id`` the visible slide, crediting elapsed time to the previous one"""
        if self.session_id is None:
            return

        self._credit_current_slide()
        self._current_slide = slide_id
        self._slide_started_at = self._clock()

        view = self._pending_view(slide_id)
        view.module_id = module_id or view.module_id
        view.sub_module_id = sub_module_id or view.sub_module_id
        view.lesson_id = lesson_id or view.lesson_id
        if scroll_depth is not None:
            view.scroll_depth = max(view.scroll_depth or 0, scroll_depth)
        view.completed = view.completed or completed
        view.dirty = True
        if completed:
            self._completed_slides[slide_id] = None

    def track_interaction(self, event_type: str, event_name: str, event_data: Optional[Dict[str, Any]] = None) -> None:
        if self.session_id is None:
            return
        self._interactions.append(
            {
                "eventType": event_type,
                "eventName": event_name,
                "eventData": event_data or {},
                "slideId": self._current_slide,
            }
        )

    def mark_slide_completed(self, slide_id: str, achievement_id: Optional[int] = None) -> None:
        if self.session_id is None:
            return
        view = self._pending_view(slide_id)
        view.completed = True
        self._completed_slides[slide_id] = None
        self._pending_completions.append(
            PendingCompletion(
                slide_id=slide_id,
                module_id=view.module_id,
                lesson_id=view.lesson_id,
                achievement_id=achievement_id,
            )
        )

    # ------------------------------------------------------------------
    # Flushing
    # ------------------------------------------------------------------

    async def flush(self) -> None:
        """Send buffered slide deltas, completions and one interaction batch"""
        if self.session_id is None:
            return

        async with self._flush_lock:
            self._credit_current_slide()
            session_id = self.session_id

            for view in list(self._views.values()):
                whole_seconds = int(view.seconds)
                if whole_seconds == 0 and not view.dirty:
                    continue
                view.seconds -= whole_seconds
                view.dirty = False

                data: Dict[str, Any] = {
                    "sessionId": session_id,
                    "slideId": view.slide_id,
                    "timeSpent": whole_seconds,
                    "completed": view.completed,
                }
                if view.module_id:
                    data["moduleId"] = view.module_id
                if view.sub_module_id:
                    data["subModuleId"] = view.sub_module_id
                if view.lesson_id:
                    data["lessonId"] = view.lesson_id
                if view.scroll_depth is not None:
                    data["scrollDepth"] = view.scroll_depth
                await self._send("slide_view", data)

            completions, self._pending_completions = self._pending_completions, []
            for completion in completions:
                data = {"sessionId": session_id, "slideId": completion.slide_id}
                if completion.module_id:
                    data["moduleId"] = completion.module_id
                if completion.lesson_id:
                    data["lessonId"] = completion.lesson_id
                if completion.achievement_id is not None:
                    data["achievementId"] = completion.achievement_id
                await self._send("slide_complete", data)

            events, self._interactions = self._interactions, []
            if events:
                await self._send("interaction", {"sessionId": session_id, "events": events})

    async def _auto_flush(self) -> None:
        while True:
            await asyncio.sleep(self._flush_interval)
            await self.flush()

    async def _stop_auto_flush(self) -> None:
        """Cancel the periodic task between flushes, never part-way through one"""
        if self._auto_flush_task is None:
            return
        async with self._flush_lock:
            self._cancel_auto_flush()

    def _cancel_auto_flush(self) -> None:
        if self._auto_flush_task is not None:
            self._auto_flush_task.cancel()
            self._auto_flush_task = None

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def get_progress(self) -> Dict[str, Any]:
        completed = list(self._completed_slides)
        elapsed = self._clock() - self._session_started_at if self._session_started_at is not None else 0.0
        return {
            "sessionId": self.session_id,
            "courseId": self.course_id,
            "completedSlides": completed,
            "completionRate": len(completed) * 100.0 / self.total_slides if self.total_slides else 0.0,
            "elapsedSeconds": elapsed,
        }
