from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Protocol

from ..config import settings
from .extraction import LocalRuleExtractor, extractor
from .fields import AnalysisRequest, ExtractionResult, FieldKey, TranscriptEvent
from .remote import RemoteExtractionError, RemoteExtractor, RemoteNotConfiguredError
from .scheduler import DebounceScheduler, SchedulerState

LOGGER = logging.getLogger(__name__)


class DisplaySink(Protocol):
    def on_field_updated(self, field: FieldKey, value: str) -> None: ...

    def on_analysis_state_changed(self, active: bool) -> None: ...


class TranscriptBuffer:
    """Finalized transcript segments of one recording session."""

    def __init__(self) -> None:
        self._segments: List[str] = []

    def append(self, segment: str) -> None:
        self._segments.append(segment)

    @property
    def segments(self) -> tuple[str, ...]:
        return tuple(self._segments)

    def text(self) -> str:
        return "".join(self._segments)

    def __len__(self) -> int:
        return len(self._segments)


class ExtractionCoordinator:
    """Drives buffering, debouncing, local and remote extraction for one session."""

    def __init__(
        self,
        display: DisplaySink,
        remote: Optional[RemoteExtractor] = None,
        *,
        local: Optional[LocalRuleExtractor] = None,
        quiet_seconds: float | None = None,
        min_chars: int | None = None,
    ) -> None:
        self._display = display
        self.remote = remote if remote is not None else RemoteExtractor()
        self._local = local or extractor
        self._min_chars = settings.min_analysis_chars if min_chars is None else min_chars
        self._buffer = TranscriptBuffer()
        self._scheduler = DebounceScheduler(self._on_quiet, quiet_seconds)
        self._latest_request_id = 0
        self._displayed: Dict[FieldKey, Optional[str]] = {field: None for field in FieldKey}
        self._analysis_active = False
        self._remote_tasks: set[asyncio.Task] = set()

    # ------------------------------
    # 会话状态
    # ------------------------------
    @property
    def latest_request_id(self) -> int:
        return self._latest_request_id

    @property
    def transcript(self) -> str:
        return self._buffer.text()

    @property
    def scheduler(self) -> DebounceScheduler:
        return self._scheduler

    @property
    def analysis_active(self) -> bool:
        return self._analysis_active

    def displayed(self) -> ExtractionResult:
        return ExtractionResult.from_mapping(self._displayed)

    def start_session(self) -> None:
        """Drop the previous transcript and invalidate anything still in flight."""
        self._scheduler.cancel()
        self._buffer = TranscriptBuffer()
        self._latest_request_id += 1
        self._set_active(False)
        LOGGER.info("Recording session started, request id floor=%s", self._latest_request_id)

    def stop_session(self) -> None:
        self._scheduler.cancel()
        self._buffer = TranscriptBuffer()
        self._latest_request_id += 1
        self._set_active(False)
        LOGGER.info("Recording session stopped")

    # ------------------------------
    # 转写输入
    # ------------------------------
    def handle_event(self, event: TranscriptEvent) -> bool:
        """Feed one speech-engine event; returns whether it (re)armed the scheduler."""
        if not event.is_final or not event.text:
            return False
        self._buffer.append(event.text)
        self._latest_request_id += 1
        self._scheduler.arm()
        self._set_active(True)
        return True

    def append_final(self, text: str) -> bool:
        return self.handle_event(TranscriptEvent(text=text, is_final=True))

    # ------------------------------
    # 分析
    # ------------------------------
    async def analyze_now(self) -> ExtractionResult:
        """Analyze the buffer immediately and wait for the remote answer.

        Extraction failures never propagate; the return value is what the display
        shows afterwards.
        """
        if not self._scheduler.flush():
            self._latest_request_id += 1
            self._fire()
        await self.drain()
        return self.displayed()

    async def drain(self) -> None:
        while self._remote_tasks:
            await asyncio.gather(*list(self._remote_tasks), return_exceptions=True)

    def _on_quiet(self, generation: int) -> None:
        LOGGER.debug("Quiet window elapsed (generation=%s)", generation)
        self._fire()

    def _fire(self) -> Optional[AnalysisRequest]:
        # the id was reserved when the timer was armed
        text = self._buffer.text()
        request = AnalysisRequest(text=text, request_id=self._latest_request_id)
        if len(text.strip()) < self._min_chars:
            LOGGER.debug("Skipping analysis of short transcript (%d chars)", len(text.strip()))
            self._set_active(False)
            return None
        try:
            local_result = self._local.extract(text)
        except Exception:
            LOGGER.exception("Local extraction #%s failed", request.request_id)
            self._set_active(False)
            return None
        LOGGER.info("Local extraction #%s: %s", request.request_id, local_result.as_dict())
        self._apply(request, local_result, source="local")
        task = asyncio.get_running_loop().create_task(self._resolve_remote(request))
        self._remote_tasks.add(task)
        task.add_done_callback(self._remote_tasks.discard)
        return request

    async def _resolve_remote(self, request: AnalysisRequest) -> None:
        try:
            result = await self.remote.extract(request.text)
        except RemoteNotConfiguredError:
            LOGGER.debug("No remote credential, keeping local result #%s", request.request_id)
        except RemoteExtractionError as exc:
            LOGGER.warning("Remote extraction #%s failed, keeping local result: %s", request.request_id, exc)
        except Exception:
            LOGGER.exception("Unexpected remote extraction failure #%s", request.request_id)
        else:
            self._apply(request, result, source="remote")
        finally:
            if self._is_current(request) and self._scheduler.state is SchedulerState.IDLE:
                self._set_active(False)

    # ------------------------------
    # 合并策略
    # ------------------------------
    def _is_current(self, request: AnalysisRequest) -> bool:
        return request.request_id == self._latest_request_id

    def _apply(self, request: AnalysisRequest, result: ExtractionResult, *, source: str) -> bool:
        if not self._is_current(request):
            LOGGER.info(
                "Discarding stale %s result #%s (latest=%s)",
                source,
                request.request_id,
                self._latest_request_id,
            )
            return False
        for field, value in result.items():
            if value is None or value == self._displayed[field]:
                continue
            self._displayed[field] = value
            self._display.on_field_updated(field, value)
        return True

    def _set_active(self, active: bool) -> None:
        if active == self._analysis_active:
            return
        self._analysis_active = active
        self._display.on_analysis_state_changed(active)


__all__ = ["DisplaySink", "TranscriptBuffer", "ExtractionCoordinator"]
