# TileCacheExporter/core/controller.py
# -*- coding: utf-8 -*-

"""Lifecycle of the (single) tile export job.

States::

    IDLE -> STARTING -> RUNNING -> SUCCEEDED | FAILED | CANCELLED -> IDLE

Notes:
    - All state changes happen on the orchestrating thread. The exporter runs
      on ``executor`` and its progress / completion signals are posted back
      through ``dispatcher``.
    - Cancellation is cooperative. The exporter's final report decides the
      terminal state, even after ``cancel()``.
    - The progress surface is dismissed exactly once per job; progress arriving
      after that is dropped.
"""

from __future__ import annotations

import concurrent.futures
import enum
import logging
from concurrent.futures import Executor, Future
from typing import Any, Callable, List, Optional

from .errors import (
    CancelledError,
    ConcurrentJobError,
    ExportError,
    JobFailedError,
)
from .models import ExportJob, ExportParameters, JobStatus, TileCache

logger = logging.getLogger(__name__)

ErrorReporter = Callable[[ExportError], None]
FinishedListener = Callable[[ExportJob], None]


class ControllerState(enum.Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ControllerState.SUCCEEDED, ControllerState.FAILED, ControllerState.CANCELLED)


class ExportJobController:
    """Start, supervise and finish export jobs, one at a time.

    Args:
        capability: Exporter providing ``export_tile_cache(parameters,
            destination, *, progress_cb, cancel_token)``.
        executor: Executor the export runs on.
        dispatcher: Posts continuations back to the orchestrating thread.
        progress: Surface with ``show(job)``, ``set_progress(percent, key, args)``
            and ``dismiss()``.
        presenter: ``ResultPresenter`` receiving successful artifacts.
        report_error: Callback for user-visible failures (including cancel).
    """

    def __init__(
        self,
        capability,
        executor: Executor,
        dispatcher,
        *,
        progress=None,
        presenter=None,
        report_error: Optional[ErrorReporter] = None,
    ) -> None:
        self.capability = capability
        self.executor = executor
        self.dispatcher = dispatcher
        self.progress = progress
        self.presenter = presenter
        self.report_error = report_error

        self.state = ControllerState.IDLE
        self._job: Optional[ExportJob] = None
        self._progress_visible = False
        self._finished_listeners: List[FinishedListener] = []

    @property
    def job(self) -> Optional[ExportJob]:
        return self._job

    @property
    def is_active(self) -> bool:
        return self.state in (ControllerState.STARTING, ControllerState.RUNNING)

    def add_finished_listener(self, listener: FinishedListener) -> None:
        """Register a callback run after a job's terminal handling."""
        self._finished_listeners.append(listener)

    def start(self, parameters: ExportParameters, destination: str) -> ExportJob:
        """Start exporting ``parameters`` into ``destination``.

        Raises:
            ConcurrentJobError: If the controller is not idle. The current
                job is left untouched.
        """
        if self.state is not ControllerState.IDLE:
            job_id = self._job.job_id if self._job is not None else "?"
            raise ConcurrentJobError(f"Job {job_id} is {self.state.value}")

        job = ExportJob(parameters=parameters, destination=str(destination))
        self._job = job
        self._progress_visible = False
        self.state = ControllerState.STARTING
        logger.info(
            "Starting export job %s: %d tiles, levels %s -> %s",
            job.job_id,
            parameters.tile_count,
            parameters.levels,
            job.destination,
        )

        try:
            future = self.executor.submit(self._run, job)
        except RuntimeError as ex:
            self._finish(job, JobStatus.FAILED, error=JobFailedError(str(ex), reason_code="ERR_NOT_STARTED"))
            return job

        job.status = JobStatus.RUNNING
        self.state = ControllerState.RUNNING
        if self.progress is not None:
            self.progress.show(job)
            self._progress_visible = True

        future.add_done_callback(lambda f: self.dispatcher.post(self._on_done, job, f))
        return job

    def cancel(self) -> bool:
        """Request cancellation of the running job.

        Returns:
            ``True`` if a request was sent. The job still finishes with
            whatever the exporter reports.
        """
        if self.state is not ControllerState.RUNNING or self._job is None:
            return False
        self._job.cancel_token.cancel()
        logger.info("Cancellation requested for job %s", self._job.job_id)
        return True

    def shutdown(self) -> None:
        """Cancel the running job and shut the executor down without waiting.

        The job still reports its terminal state through ``dispatcher``.
        """
        self.cancel()
        self.executor.shutdown(wait=False)

    def acknowledge(self) -> bool:
        """Return to ``IDLE`` after a terminal state; the job is discarded."""
        if not self.state.is_terminal:
            return False
        self._job = None
        self.state = ControllerState.IDLE
        return True

    # ------------------------------------------------------------------
    # Worker thread
    # ------------------------------------------------------------------
    def _run(self, job: ExportJob) -> TileCache:
        def progress_cb(percent: int, key: str = "", args: Optional[dict] = None) -> None:
            self.dispatcher.post(self._on_progress, job, percent, key, args or {})

        return self.capability.export_tile_cache(
            job.parameters,
            job.destination,
            progress_cb=progress_cb,
            cancel_token=job.cancel_token,
        )

    # ------------------------------------------------------------------
    # Orchestrating thread
    # ------------------------------------------------------------------
    def _on_progress(self, job: ExportJob, percent: Any, key: str, args: dict) -> None:
        if job is not self._job or self.state is not ControllerState.RUNNING:
            return
        if not self._progress_visible and self.progress is not None:
            return
        try:
            value = int(percent)
        except (TypeError, ValueError):
            logger.debug("Dropping malformed progress %r for job %s", percent, job.job_id)
            return

        value = max(0, min(100, value))
        if value < job.progress:
            logger.debug("Dropping decreasing progress %d < %d", value, job.progress)
            return

        job.progress = value
        if self.progress is not None:
            self.progress.set_progress(value, key, args)

    def _on_done(self, job: ExportJob, future: "Future[TileCache]") -> None:
        if job is not self._job or job.status.is_terminal:
            return

        try:
            artifact = future.result()
        except CancelledError as ex:
            self._finish(job, JobStatus.CANCELLED, error=ex)
        except concurrent.futures.CancelledError:
            self._finish(job, JobStatus.CANCELLED, error=CancelledError("ERR_CANCELLED", "Job was discarded."))
        except Exception as ex:
            self._finish(job, JobStatus.FAILED, error=JobFailedError.from_exception(ex))
        else:
            if artifact is None:
                self._finish(
                    job,
                    JobStatus.FAILED,
                    error=JobFailedError("Exporter returned no tile cache.", reason_code="ERR_NO_RESULT"),
                )
            else:
                self._finish(job, JobStatus.SUCCEEDED, artifact=artifact)

    def _finish(
        self,
        job: ExportJob,
        status: JobStatus,
        *,
        artifact: Optional[TileCache] = None,
        error: Optional[ExportError] = None,
    ) -> None:
        job.status = status
        job.artifact = artifact if status is JobStatus.SUCCEEDED else None
        job.error = error
        if status is JobStatus.SUCCEEDED:
            job.progress = 100
        self.state = ControllerState[status.name]
        self._dismiss_progress()

        if status is JobStatus.SUCCEEDED:
            logger.info("Export job %s succeeded: %s", job.job_id, artifact.path)
            if self.presenter is not None:
                try:
                    self.presenter.present(artifact)
                except Exception as ex:
                    logger.exception("Preview of %s failed", artifact.path)
                    self._report(ExportError("ERR_PREVIEW_FAILED", str(ex)))
        elif status is JobStatus.CANCELLED:
            logger.info("Export job %s cancelled", job.job_id)
            self._report(error or CancelledError("ERR_CANCELLED", "Cancelled by user."))
        else:
            logger.error("Job did not succeed: %s", error.details if error is not None else "")
            self._report(error)

        for listener in list(self._finished_listeners):
            try:
                listener(job)
            except Exception:
                logger.exception("Finished listener failed for job %s", job.job_id)

    def _dismiss_progress(self) -> None:
        if not self._progress_visible:
            return
        self._progress_visible = False
        try:
            self.progress.dismiss()
        except Exception:
            logger.exception("Dismissing progress surface failed")

    def _report(self, error: Optional[ExportError]) -> None:
        if error is None or self.report_error is None:
            return
        try:
            self.report_error(error)
        except Exception:
            logger.exception("Error reporter failed for %s", error.code)
