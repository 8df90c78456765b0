import unittest

from core.controller import ControllerState, ExportJobController
from core.dispatch import QueuedDispatcher
from core.errors import (
    CancelledError,
    ConcurrentJobError,
    ExportError,
    JobFailedError,
    format_error,
)
from core.models import ExportParameters, GeoRegion, JobStatus
from core.presenter import PresentationMode, ResultPresenter

from .utilities import (
    DeferredExecutor,
    FakeCapability,
    RecordingPreview,
    RecordingProgress,
    RecordingReporter,
)


def make_params():
    region = GeoRegion(-1.0, 50.0, 1.0, 52.0, crs_authid="EPSG:4326")
    return ExportParameters(region=region, min_scale=17_471_320.75, max_scale=545_978.77, levels=(5, 6, 7, 8, 9, 10), tile_count=42)


class ExportJobControllerTests(unittest.TestCase):
    def setUp(self):
        self.executor = DeferredExecutor()
        self.dispatcher = QueuedDispatcher()
        self.progress = RecordingProgress()
        self.preview = RecordingPreview()
        self.presenter = ResultPresenter(self.preview)
        self.reporter = RecordingReporter()

    def _controller(self, capability):
        return ExportJobController(
            capability,
            self.executor,
            self.dispatcher,
            progress=self.progress,
            presenter=self.presenter,
            report_error=self.reporter,
        )

    def _finish_work(self):
        self.executor.run_pending()
        self.dispatcher.drain()

    def test_successful_job_presents_artifact(self):
        controller = self._controller(FakeCapability(progress=(10, 50, 100)))

        job = controller.start(make_params(), "/tmp/cache")
        self.assertEqual(controller.state, ControllerState.RUNNING)
        self.assertEqual(job.status, JobStatus.RUNNING)
        self.assertEqual(self.progress.shown, [job.job_id])

        self._finish_work()

        self.assertEqual(controller.state, ControllerState.SUCCEEDED)
        self.assertEqual(job.status, JobStatus.SUCCEEDED)
        self.assertEqual(self.preview.shown, [job.artifact])
        self.assertEqual(job.artifact.path, "/tmp/cache")
        self.assertEqual(self.presenter.mode, PresentationMode.PREVIEW)
        self.assertEqual(self.progress.values, [10, 50, 100])
        self.assertEqual(self.progress.dismiss_count, 1)
        self.assertEqual(self.reporter.errors, [])

        self.assertTrue(controller.acknowledge())
        self.assertEqual(controller.state, ControllerState.IDLE)
        self.assertIsNone(controller.job)

    def test_second_start_is_rejected_and_first_proceeds(self):
        capability = FakeCapability()
        controller = self._controller(capability)

        first = controller.start(make_params(), "/tmp/first")
        with self.assertRaises(ConcurrentJobError):
            controller.start(make_params(), "/tmp/second")

        self.assertIs(controller.job, first)
        self.assertEqual(controller.state, ControllerState.RUNNING)
        self.assertEqual(first.status, JobStatus.RUNNING)

        self._finish_work()
        self.assertEqual(first.status, JobStatus.SUCCEEDED)
        self.assertEqual([dest for _p, dest in capability.export_calls], ["/tmp/first"])

    def test_start_rejected_until_terminal_state_acknowledged(self):
        controller = self._controller(FakeCapability())
        controller.start(make_params(), "/tmp/a")
        self._finish_work()

        with self.assertRaises(ConcurrentJobError):
            controller.start(make_params(), "/tmp/b")
        self.assertEqual(controller.state, ControllerState.SUCCEEDED)

        controller.acknowledge()
        job = controller.start(make_params(), "/tmp/b")
        self.assertEqual(job.destination, "/tmp/b")

    def test_each_start_allocates_new_identity(self):
        controller = self._controller(FakeCapability())
        ids = set()
        for _ in range(3):
            ids.add(controller.start(make_params(), "/tmp/x").job_id)
            self._finish_work()
            controller.acknowledge()
        self.assertEqual(len(ids), 3)

    def test_progress_is_clamped_and_non_decreasing(self):
        raw = (10, 5, 30, 150, -3, 30, 60, "bad")
        controller = self._controller(FakeCapability(progress=raw))
        job = controller.start(make_params(), "/tmp/cache")
        self._finish_work()

        self.assertEqual(self.progress.values, [10, 30, 100])
        self.assertEqual(self.progress.values, sorted(self.progress.values))
        self.assertTrue(all(0 <= v <= 100 for v in self.progress.values))
        self.assertEqual(job.progress, 100)

    def test_failure_reports_diagnostic(self):
        error = ExportError("ERR_RENDER_TILE_FAILED", "timeout")
        controller = self._controller(FakeCapability(error=error))
        job = controller.start(make_params(), "/tmp/cache")
        self._finish_work()

        self.assertEqual(controller.state, ControllerState.FAILED)
        self.assertEqual(job.status, JobStatus.FAILED)
        self.assertIsNone(job.artifact)
        self.assertEqual(self.preview.shown, [])
        self.assertEqual(self.progress.dismiss_count, 1)

        self.assertEqual(len(self.reporter.errors), 1)
        reported = self.reporter.errors[0]
        self.assertIsInstance(reported, JobFailedError)
        self.assertEqual(reported.reason_code, "ERR_RENDER_TILE_FAILED")
        self.assertIn("timeout", format_error(reported))

        self.assertTrue(controller.acknowledge())
        self.assertEqual(controller.state, ControllerState.IDLE)

    def test_unexpected_exception_becomes_job_failure(self):
        controller = self._controller(FakeCapability(error=RuntimeError("boom")))
        controller.start(make_params(), "/tmp/cache")
        self._finish_work()

        reported = self.reporter.errors[0]
        self.assertIsInstance(reported, JobFailedError)
        self.assertEqual(reported.reason_code, "ERR_UNEXPECTED")
        self.assertEqual(reported.details, "boom")

    def test_missing_result_is_a_failure(self):
        capability = FakeCapability()
        capability.export_tile_cache = lambda *a, **k: None
        controller = self._controller(capability)
        controller.start(make_params(), "/tmp/cache")
        self._finish_work()

        self.assertEqual(controller.state, ControllerState.FAILED)
        self.assertEqual(self.preview.shown, [])

    def test_cancel_reaches_cancelled_state(self):
        controller = self._controller(FakeCapability(progress=(20,)))
        job = controller.start(make_params(), "/tmp/cache")

        self.assertTrue(controller.cancel())
        self.assertTrue(job.cancel_token.cancelled)
        self._finish_work()

        self.assertEqual(controller.state, ControllerState.CANCELLED)
        self.assertEqual(job.status, JobStatus.CANCELLED)
        self.assertIsNone(job.artifact)
        self.assertEqual(self.preview.shown, [])
        self.assertEqual(self.progress.dismiss_count, 1)
        self.assertEqual(len(self.reporter.errors), 1)
        self.assertIsInstance(self.reporter.errors[0], CancelledError)

    def test_success_racing_cancel_wins(self):
        controller = self._controller(FakeCapability(honor_cancel=False))
        job = controller.start(make_params(), "/tmp/cache")
        controller.cancel()
        self._finish_work()

        self.assertEqual(controller.state, ControllerState.SUCCEEDED)
        self.assertEqual(self.preview.shown, [job.artifact])

    def test_failure_racing_cancel_wins(self):
        capability = FakeCapability(honor_cancel=False, error=ExportError("ERR_RENDER_EMPTY", "blank"))
        controller = self._controller(capability)
        controller.start(make_params(), "/tmp/cache")
        controller.cancel()
        self._finish_work()

        self.assertEqual(controller.state, ControllerState.FAILED)

    def test_cancel_without_running_job(self):
        controller = self._controller(FakeCapability())
        self.assertFalse(controller.cancel())

        controller.start(make_params(), "/tmp/cache")
        self._finish_work()
        self.assertFalse(controller.cancel())
        self.assertEqual(controller.state, ControllerState.SUCCEEDED)

    def test_late_progress_after_dismissal_is_ignored(self):
        capability = FakeCapability(progress=(40,))
        controller = self._controller(capability)
        controller.start(make_params(), "/tmp/cache")
        self._finish_work()

        capability.last_progress_cb(99, "STEP_WRITE_TILES", {})
        self.dispatcher.drain()

        self.assertEqual(self.progress.values, [40])
        self.assertEqual(self.progress.dismiss_count, 1)

    def test_terminal_signal_handled_once(self):
        controller = self._controller(FakeCapability())
        finished = []
        controller.add_finished_listener(finished.append)
        job = controller.start(make_params(), "/tmp/cache")
        self.executor.run_pending()

        # Deliver the completion a second time.
        future = self.dispatcher._queue.queue[-1][1][1]
        self.dispatcher.post(controller._on_done, job, future)
        self.dispatcher.drain()

        self.assertEqual(finished, [job])
        self.assertEqual(len(self.preview.shown), 1)
        self.assertEqual(self.progress.dismiss_count, 1)

    def test_submit_failure_fails_job_without_progress(self):
        self.executor.shutdown()
        controller = self._controller(FakeCapability())
        job = controller.start(make_params(), "/tmp/cache")

        self.assertEqual(controller.state, ControllerState.FAILED)
        self.assertEqual(job.status, JobStatus.FAILED)
        self.assertEqual(self.progress.shown, [])
        self.assertEqual(self.progress.dismiss_count, 0)
        self.assertEqual(self.reporter.errors[0].reason_code, "ERR_NOT_STARTED")

    def test_preview_failure_is_reported_not_raised(self):
        self.preview.fail = True
        controller = self._controller(FakeCapability())
        controller.start(make_params(), "/tmp/cache")
        self._finish_work()

        self.assertEqual(controller.state, ControllerState.SUCCEEDED)
        self.assertEqual(self.presenter.mode, PresentationMode.SELECTION)
        self.assertEqual([e.code for e in self.reporter.errors], ["ERR_PREVIEW_FAILED"])

    def test_shutdown_cancels_running_job_and_stops_executor(self):
        controller = self._controller(FakeCapability(progress=(20,)))
        job = controller.start(make_params(), "/tmp/cache")

        controller.shutdown()
        self.assertTrue(job.cancel_token.cancelled)
        self.assertTrue(self.executor.is_shutdown)

        # Work already queued still reports back.
        self._finish_work()
        self.assertEqual(controller.state, ControllerState.CANCELLED)
        self.assertIsInstance(self.reporter.errors[-1], CancelledError)

        controller.acknowledge()
        late = controller.start(make_params(), "/tmp/cache")
        self.assertEqual(late.status, JobStatus.FAILED)
        self.assertEqual(self.reporter.errors[-1].reason_code, "ERR_NOT_STARTED")

    def test_shutdown_without_job(self):
        controller = self._controller(FakeCapability())
        controller.shutdown()
        self.assertTrue(self.executor.is_shutdown)
        self.assertEqual(controller.state, ControllerState.IDLE)
        self.assertEqual(self.reporter.errors, [])

    def test_acknowledge_only_from_terminal_state(self):
        controller = self._controller(FakeCapability())
        self.assertFalse(controller.acknowledge())
        controller.start(make_params(), "/tmp/cache")
        self.assertFalse(controller.acknowledge())
        self.assertEqual(controller.state, ControllerState.RUNNING)


if __name__ == "__main__":
    unittest.main()
