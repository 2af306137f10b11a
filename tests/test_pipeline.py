"""Tests for stage logs, progress sinks and cancellation tokens."""

from docker_fleet.core.exceptions import MigrationError, PipelineError
from docker_fleet.core.pipeline import (
    CallbackProgress,
    CancellationToken,
    NullProgress,
    PipelineLog,
    PipelineLogSummary,
)


class TestPipelineLog:
    """Test the append-only stage trail."""

    def test_entries_are_recorded_in_order(self):
        log = PipelineLog("dep1", "migration")

        log.info("stopping", "Stopping container", container="web")
        log.warn("archiving", "Path missing", path="/data")
        log.error("creating", "Create failed", RuntimeError("boom"))

        assert [e.level for e in log.entries] == ["info", "warn", "error"]
        assert [e.stage for e in log.entries] == ["stopping", "archiving", "creating"]
        assert log.entries[0].details == {"container": "web"}
        assert log.entries[2].details == {"error": "boom"}
        assert all(e.elapsed_ms >= 0 for e in log.entries)

    def test_error_without_exception(self):
        log = PipelineLog("dep1")

        log.error("failed", "Something went wrong")

        assert log.entries[0].details == {}

    def test_summary(self):
        log = PipelineLog("dep1")
        log.info("init", "Starting")

        summary = log.summary()

        assert isinstance(summary, PipelineLogSummary)
        assert summary.deployment_id == "dep1"
        assert summary.total_time_ms >= 0
        assert len(summary.logs) == 1

        log.info("complete", "Done")
        assert len(summary.logs) == 1

    def test_started_at_ms_is_epoch_millis(self):
        log = PipelineLog("dep1")

        assert log.started_at_ms > 1_600_000_000_000


class TestProgress:
    """Test progress sinks."""

    def test_null_progress_accepts_reports(self):
        NullProgress().report("stopping", 5, "Stopping")

    def test_callback_progress_builds_events(self):
        received = []
        progress = CallbackProgress(received.append)

        progress.report("archiving", 15, "Archiving 1 volume(s)")

        (event,) = received
        assert event.stage == "archiving"
        assert event.percent == 15
        assert event.label == "Archiving volumes"
        assert event.message == "Archiving 1 volume(s)"
        assert progress.events == received

    def test_unknown_stage_label(self):
        progress = CallbackProgress(lambda event: None)

        progress.report("custom", 1, "x")

        assert progress.events[0].label == "Custom"

    def test_failing_callback_does_not_raise(self):
        def explode(event):
            raise ValueError("subscriber gone")

        progress = CallbackProgress(explode)
        progress.report("stopping", 5, "Stopping")

        assert len(progress.events) == 1


class TestCancellationToken:
    """Test cooperative cancellation."""

    def test_not_cancelled_by_default(self):
        assert CancellationToken().cancelled is False

    def test_cancel(self):
        token = CancellationToken()
        token.cancel()

        assert token.cancelled is True

    def test_predicate(self):
        flag = {"stop": False}
        token = CancellationToken(lambda: flag["stop"])

        assert token.cancelled is False
        flag["stop"] = True
        assert token.cancelled is True


class TestPipelineErrors:
    """Test errors carrying stage logs."""

    def test_to_dict_includes_stage_and_log(self):
        log = PipelineLog("dep1")
        log.info("stopping", "Stopping")

        error = PipelineError("failed", "stopping", log.summary())
        data = error.to_dict()

        assert data["error"] == "failed"
        assert data["stage"] == "stopping"
        assert data["log"]["deployment_id"] == "dep1"
        assert data["log"]["logs"][0]["message"] == "Stopping"

    def test_migration_error_reports_orphaned_target(self):
        error = MigrationError(
            "late failure", "cleanup", None, {"server_id": "target", "container_id": "abc"}
        )

        data = error.to_dict()

        assert data["log"] is None
        assert data["orphaned_target"] == {"server_id": "target", "container_id": "abc"}
