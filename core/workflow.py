# TileCacheExporter/core/workflow.py
# -*- coding: utf-8 -*-

"""End-to-end export workflow (UI-agnostic).

Flow:
    viewport change -> RegionTracker
    request_export  -> ExportParameterResolver -> ExportJobController
    job finished    -> ResultPresenter / error reporter
    suspend         -> SessionCleanup (deferred while a job is active)
"""

from __future__ import annotations

import logging
import time
import uuid
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Callable, Optional

from .cleanup import SessionCleanup
from .config import ExportConfig
from .controller import ControllerState, ExportJobController
from .errors import ConcurrentJobError, ExportError
from .models import ExportJob, ExportParameters, GeoRegion
from .presenter import ResultPresenter
from .region import RegionOverlay, RegionTracker
from .resolver import ExportParameterResolver

logger = logging.getLogger(__name__)


class TileExportWorkflow:
    """Wire region tracking, parameter resolution, the job and cleanup.

    Args:
        capability: Exporter (``create_default_parameters`` +
            ``export_tile_cache``).
        config: Export configuration.
        dispatcher: Runs continuations on the orchestrating thread.
        preview: Preview surface for ``ResultPresenter``.
        progress: Progress surface for ``ExportJobController``.
        report_error: Shows user-visible failures.
        overlay: Receives every new region (selection box drawing).
        executor: Executor for resolution and export; a single worker
            thread is created when omitted.
        owns_executor: Shut ``executor`` down in ``shutdown()``; defaults to
            ``True`` only for the executor created here.
        auto_acknowledge: Return the controller to idle right after the
            terminal handling of each job.
    """

    def __init__(
        self,
        capability,
        config: ExportConfig,
        *,
        dispatcher,
        preview,
        progress=None,
        report_error: Optional[Callable[[ExportError], None]] = None,
        overlay: Optional[RegionOverlay] = None,
        executor: Optional[Executor] = None,
        owns_executor: Optional[bool] = None,
        auto_acknowledge: bool = True,
    ) -> None:
        self.config = config
        self.dispatcher = dispatcher
        self.report_error = report_error
        self.auto_acknowledge = auto_acknowledge

        self._owns_executor = executor is None if owns_executor is None else bool(owns_executor)
        self.executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="tile-export")

        self.region_tracker = RegionTracker(
            inset_left_px=config.inset_left_px,
            inset_top_px=config.inset_top_px,
            inset_right_px=config.inset_right_px,
            inset_bottom_px=config.inset_bottom_px,
            overlay=overlay,
        )
        self.resolver = ExportParameterResolver(capability, self.executor)
        self.presenter = ResultPresenter(preview)
        self.controller = ExportJobController(
            capability,
            self.executor,
            dispatcher,
            progress=progress,
            presenter=self.presenter,
            report_error=self._report,
        )
        self.controller.add_finished_listener(self._on_job_finished)
        self.cleanup = SessionCleanup(config.working_dir)

        self._resolving: Optional[Future] = None
        self._purge_pending = False

    @property
    def region(self) -> Optional[GeoRegion]:
        return self.region_tracker.region

    @property
    def busy(self) -> bool:
        return self._resolving is not None or self.controller.state is not ControllerState.IDLE

    def on_viewport_changed(self, viewport, map_ready: bool) -> Optional[GeoRegion]:
        return self.region_tracker.on_viewport_changed(viewport, map_ready)

    def request_export(
        self,
        current_scale: float,
        max_allowed_scale: Optional[float] = None,
    ) -> "Future[ExportParameters]":
        """Resolve parameters for the tracked region and start the export.

        Raises:
            RegionUndefinedError: If no region has been tracked yet.
            ConcurrentJobError: While a resolution or a job is in progress.
            ValidationError: For invalid scales.
        """
        region = self.region_tracker.require_region()
        if self.busy:
            raise ConcurrentJobError("An export is already being prepared or running.")
        if max_allowed_scale is None:
            max_allowed_scale = self.config.default_max_scale

        future = self.resolver.resolve_async(region, current_scale, max_allowed_scale)
        self._resolving = future
        future.add_done_callback(lambda f: self.dispatcher.post(self._on_parameters_resolved, f))
        return future

    def cancel(self) -> bool:
        return self.controller.cancel()

    def close_preview(self) -> None:
        self.presenter.clear()

    def new_destination(self) -> str:
        stamp = time.strftime("%Y%m%d_%H%M%S")
        return str(self.config.cache_root / f"{stamp}_{uuid.uuid4().hex[:6]}")

    def suspend(self) -> Optional[bool]:
        """Clear the preview and purge the working directory.

        Returns:
            Purge result, or ``None`` if the purge was deferred until the
            active job finishes (or purging is disabled).
        """
        # A resolution still in flight is dropped; its result is ignored.
        self._resolving = None
        self.presenter.clear()
        if not self.config.purge_on_suspend:
            return None

        if self.controller.is_active:
            self.controller.cancel()
            self._purge_pending = True
            logger.info("Export running; working directory purge deferred until it finishes")
            return None
        return self._purge()

    def shutdown(self) -> None:
        """Suspend the session; an owned executor is shut down as well."""
        self.suspend()
        if self._owns_executor:
            self.controller.shutdown()

    def _on_parameters_resolved(self, future: "Future[ExportParameters]") -> None:
        if future is not self._resolving:
            return
        self._resolving = None

        try:
            params = future.result()
        except ExportError as err:
            self._report(err)
            return

        try:
            self.controller.start(params, self.new_destination())
        except ConcurrentJobError as err:
            self._report(err)

    def _on_job_finished(self, job: ExportJob) -> None:
        if self.auto_acknowledge:
            self.controller.acknowledge()
        if self._purge_pending:
            self._purge_pending = False
            self.presenter.clear()
            self._purge()

    def _purge(self) -> bool:
        ok = self.cleanup.purge()
        if not ok:
            logger.warning("Working directory %s was not fully cleared", self.cleanup.root)
        return ok

    def _report(self, err: ExportError) -> None:
        if self.report_error is None:
            return
        try:
            self.report_error(err)
        except Exception:
            logger.exception("Error reporter failed for %s", err.code)
