# motorconnect/utils/debounce.py

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional

from motorconnect.core.config import settings
from motorconnect.schemas.commission import FeeCalculationResponse
from .commission_service import CommissionService

logger = logging.getLogger(__name__)


class Debouncer:
    """
    Runs an async callback once the triggers stop for `delay` seconds.
    Each trigger cancels the pending timer, so the last arguments win.
    """

    def __init__(self, callback: Callable[..., Awaitable[Any]], delay: float):
        self.callback = callback
        self.delay = delay
        self._handle: Optional[asyncio.TimerHandle] = None
        self.task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self, *args, **kwargs) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._fire, args, kwargs)

    def _fire(self, args, kwargs) -> None:
        self._handle = None
        self.task = asyncio.ensure_future(self.callback(*args, **kwargs))
        self.task.add_done_callback(self._report_failure)

    @staticmethod
    def _report_failure(task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Debounced callback failed: {task.exception()}")

    def cancel(self) -> None:
        """Drop the pending timer; a callback that already started keeps running"""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


PreviewListener = Callable[[Optional[FeeCalculationResponse]], Any]


class FeePreviewSession:
    """
    Debounced fee preview for one editor: price/category changes are
    collapsed and the listener gets the latest preview (or None when cleared).
    """

    def __init__(
        self,
        service: CommissionService,
        on_update: PreviewListener,
        delay: Optional[float] = None,
    ):
        self.service = service
        self.on_update = on_update
        self.debouncer = Debouncer(
            self._calculate,
            settings.FEE_DEBOUNCE_MS / 1000 if delay is None else delay,
        )

    async def _notify(self, preview: Optional[FeeCalculationResponse]) -> None:
        result = self.on_update(preview)
        if inspect.isawaitable(result):
            await result

    async def _calculate(self, price: float, category_slug: str) -> None:
        preview = await self.service.calculate_fees(price, category_slug)
        if preview is not None:
            await self._notify(preview)

    async def update(self, price: float, category_slug: str) -> None:
        if price <= 0 or not category_slug:
            self.debouncer.cancel()
            # clearing also supersedes any request still in flight
            await self.service.calculate_fees(price, category_slug)
            await self._notify(None)
            return
        self.debouncer.trigger(price, category_slug)

    def close(self) -> None:
        self.debouncer.cancel()
        if self.debouncer.task is not None and not self.debouncer.task.done():
            self.debouncer.task.cancel()
