"""
Automation Loop - Drives units through the pipeline without manual steps

Watches the studio and, for the active unit:
1. idle       -> start extraction
2. extracted  -> start scripting and asset images at the same time
3. scripted + assets ready -> start shooting (once)
4. asset batch done -> look ahead: extract the next unit while this one renders
   completed -> advance to the next unit, or stop when none is left

Failures of extraction, scripting or asset images on the active unit switch
automation off.
Stopping never aborts work already in flight.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set, Tuple

from core.batch import BatchReport, CancellationToken
from core.models.storyboard import UnitStatus
from core.retry import GenerationError
from core.studio import StoryboardStudio

logger = logging.getLogger(__name__)

SHOOT_TRIGGER_RESET = 1.0  # seconds


class AutomationLoop:
    """
    Cross-unit scheduler attached to a StoryboardStudio as a listener.

    Args:
        studio: Studio to drive
        make_films: Also generate scene videos once a unit is completed
        narrate: Also generate narration once a unit is completed
        shoot_trigger_reset: Seconds before the shoot trigger flag clears
    """

    def __init__(
        self,
        studio: StoryboardStudio,
        make_films: bool = False,
        narrate: bool = False,
        shoot_trigger_reset: float = SHOOT_TRIGGER_RESET,
    ):
        self.studio = studio
        self.make_films = make_films
        self.narrate = narrate
        self.shoot_trigger_reset = shoot_trigger_reset

        self.enabled = False
        self.active_unit_id: Optional[str] = None
        self.error: Optional[BaseException] = None
        self.stop_reason: Optional[str] = None
        self.cancel_token = CancellationToken()
        self.finished = asyncio.Event()

        self._tasks: Set[asyncio.Task] = set()
        self._pending: Set[Tuple[str, str]] = set()
        self._shoot_triggered: Set[str] = set()
        self._asset_batch_started: Set[str] = set()
        self._asset_batch_done: Set[str] = set()
        self._remove_listener: Optional[Callable[[], None]] = None
        self._evaluating = False
        self._dirty = False

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self, unit_id: Optional[str] = None) -> None:
        """Enable automation starting at unit_id (default: studio focus, else first unit)"""
        units = self.studio.units
        if not units:
            logger.info("Nothing to automate: no units loaded")
            self.finished.set()
            return
        self.active_unit_id = unit_id or self.studio.active_unit_id or units[0].unit_id
        self.studio.get_unit(self.active_unit_id)

        self.enabled = True
        self.error = None
        self.stop_reason = None
        self.finished.clear()
        if self.cancel_token.cancelled:
            self.cancel_token = CancellationToken()
        self._shoot_triggered.clear()
        self._asset_batch_started.clear()
        self._asset_batch_done.clear()
        if self._remove_listener is None:
            self._remove_listener = self.studio.add_listener(self._on_change)
        logger.info(f"Automation started at unit {self.studio.get_unit(self.active_unit_id).index + 1}")
        self.studio.set_active(self.active_unit_id)

    def stop(self, reason: str = "stopped", cancel_pending: bool = False) -> None:
        """
        Disable automation. In-flight work finishes; with cancel_pending,
        batch tasks that have not started yet are skipped.
        """
        if cancel_pending:
            self.cancel_token.cancel()
        if not self.enabled:
            self.finished.set()
            return
        self.enabled = False
        self.stop_reason = reason
        if self._remove_listener is not None:
            self._remove_listener()
            self._remove_listener = None
        log = logger.error if self.error is not None else logger.info
        log(f"Automation stopped: {reason}")
        self.finished.set()

    async def wait_idle(self) -> None:
        """Wait until no task started by the loop is running"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
            await asyncio.sleep(0)

    async def run(self, unit_id: Optional[str] = None) -> None:
        """Start, then wait until automation stops or runs out of work"""
        self.start(unit_id)
        await self.wait_idle()
        if self.enabled:
            self.stop("no more work to start")

    # =========================================================================
    # EVALUATION
    # =========================================================================

    def _on_change(self, studio: StoryboardStudio) -> None:
        if self.enabled:
            self.evaluate()

    def evaluate(self) -> None:
        """Apply the policies to the active unit (re-entrant calls are folded)"""
        if self._evaluating:
            self._dirty = True
            return
        self._evaluating = True
        try:
            self._dirty = True
            while self._dirty and self.enabled:
                self._dirty = False
                self._evaluate_once()
        finally:
            self._evaluating = False

    def _evaluate_once(self) -> None:
        unit = self.studio.find_unit(self.active_unit_id)
        if unit is None:
            self.stop("active unit was deleted")
            return
        unit_id = unit.unit_id

        # Self-heal
        if unit.status == UnitStatus.IDLE:
            self._start_extract(unit_id)
            return

        # Fan-out
        if unit.status == UnitStatus.EXTRACTED:
            if not unit.scenes:
                self._spawn(("script", unit_id), lambda: self._script(unit_id))
            self._start_asset_batch(unit_id)

        # Convergence
        if unit.status == UnitStatus.SCRIPTED and unit.scenes:
            self._start_asset_batch(unit_id)
            if self._assets_ready(unit_id) and unit_id not in self._shoot_triggered:
                self._trigger_shoot(unit_id)

        # Auto-advance
        if unit.status == UnitStatus.COMPLETED:
            self._finish_unit(unit_id)

    def _start_extract(self, unit_id: str) -> None:
        if unit_id in self.studio.guards["extract"]:
            return
        self._spawn(("extract", unit_id), lambda: self._extract(unit_id))

    def _start_asset_batch(self, unit_id: str) -> None:
        if unit_id in self._asset_batch_started:
            return
        self._asset_batch_started.add(unit_id)
        if self._assets_ready(unit_id):
            logger.debug(f"Assets of unit {unit_id} already have images")
            self.on_asset_batch_complete(unit_id)
            return
        self._spawn(("assets", unit_id), lambda: self._asset_images(unit_id))

    def _assets_ready(self, unit_id: str) -> bool:
        return all(a.has_image for a in self.studio.displayed_assets(unit_id))

    def _trigger_shoot(self, unit_id: str) -> None:
        self._shoot_triggered.add(unit_id)
        asyncio.get_running_loop().call_later(
            self.shoot_trigger_reset, self._shoot_triggered.discard, unit_id
        )
        self._spawn(("shoot", unit_id), lambda: self._shoot(unit_id))

    def on_asset_batch_complete(self, unit_id: str, report: Optional[BatchReport] = None) -> None:
        """Look ahead to the next unit, then re-check convergence"""
        self._asset_batch_done.add(unit_id)
        if report is not None and report.failed:
            logger.warning(f"Unit asset batch finished with {len(report.failed)} failures")
        if not self.enabled:
            return
        if unit_id == self.active_unit_id:
            if report is not None and report.failed and not self._assets_ready(unit_id):
                self.error = GenerationError(report.failed[0].error or "asset image failed")
                self.stop(f"asset images failed: {self.error}")
                return
            following = self.studio.next_unit(unit_id)
            if following is not None and following.status == UnitStatus.IDLE:
                logger.info(f"Look-ahead: extracting unit {following.index + 1}")
                self._start_extract(following.unit_id)
        self.evaluate()

    def _finish_unit(self, unit_id: str) -> None:
        if self.make_films:
            self._spawn(("film", unit_id), lambda: self.studio.make_film(unit_id, self.cancel_token))
        if self.narrate:
            self._spawn(("narrate", unit_id), lambda: self.studio.generate_narration(unit_id, self.cancel_token))

        following = self.studio.next_unit(unit_id)
        if following is None:
            self.stop("all units completed")
            return
        logger.info(f"Unit {self.studio.get_unit(unit_id).index + 1} completed, advancing to unit {following.index + 1}")
        self.active_unit_id = following.unit_id
        self.studio.active_unit_id = following.unit_id
        if following.status == UnitStatus.IDLE:
            self._start_extract(following.unit_id)
        self._dirty = True

    # =========================================================================
    # TASKS
    # =========================================================================

    def _spawn(self, key: Tuple[str, str], factory: Callable[[], Awaitable]) -> None:
        if key in self._pending:
            return
        self._pending.add(key)
        task = asyncio.ensure_future(factory())
        self._tasks.add(task)

        def done(t: asyncio.Task) -> None:
            self._tasks.discard(t)
            self._pending.discard(key)
            if not t.cancelled() and t.exception() is not None:
                logger.warning(f"Automation task {key} failed: {t.exception()}")

        task.add_done_callback(done)

    async def _extract(self, unit_id: str) -> None:
        try:
            await self.studio.extract(unit_id)
        except Exception as e:
            if unit_id == self.active_unit_id:
                self.error = e
                self.stop(f"extraction failed: {e}")
            else:
                logger.warning(f"Look-ahead extraction failed: {e}")

    async def _asset_images(self, unit_id: str) -> None:
        try:
            await self.studio.generate_asset_images(
                unit_id,
                cancel_token=self.cancel_token,
                on_complete=lambda report: self.on_asset_batch_complete(unit_id, report),
            )
        except Exception as e:
            self.error = e
            self.stop(f"asset images failed: {e}")

    async def _script(self, unit_id: str) -> None:
        try:
            await self.studio.script(unit_id)
        except Exception as e:
            self.error = e
            self.stop(f"scripting failed: {e}")

    async def _shoot(self, unit_id: str) -> None:
        try:
            await self.studio.shoot(unit_id, self.cancel_token)
        except Exception as e:
            self.error = e
            self.stop(f"shooting failed: {e}")
