"""Tests for CLI commands"""

from unittest.mock import Mock, patch

import httpx
import pytest
from typer.testing import CliRunner

from cli.client.base import APIClient, HubJobsError
from cli.main import app
from cli.utils.config_manager import ConfigManager, coerce_value


@pytest.fixture
def runner():
    """CLI test runner"""
    return CliRunner()


@pytest.fixture
def mock_client():
    """Mock API client usable as a context manager"""
    client = Mock()
    client.__enter__ = Mock(return_value=client)
    client.__exit__ = Mock(return_value=None)
    return client


class TestMainCommands:
    """Test main CLI commands"""

    def test_quickstart(self, runner):
        """Test quickstart command"""
        result = runner.invoke(app, ["quickstart"])
        assert result.exit_code == 0
        assert "Quick Start Guide" in result.stdout
        assert "hubjobs serve" in result.stdout

    @patch("cli.main.HubJobsClient")
    def test_status_success(self, mock_client_class, runner, mock_client):
        """Test status command with successful connection"""
        mock_client.health_check.return_value = {
            "version": "1.0.0",
            "environment": "development",
            "database": {"connected": True},
        }
        mock_client.system_status.return_value = {
            "queues": [
                {
                    "queue_name": "emailQueue",
                    "stats": {"pending": 2, "total": 2},
                    "processing": True,
                }
            ],
            "scheduler": [],
        }
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["status"])
        assert result.exit_code == 0
        assert "Connected Successfully" in result.stdout
        assert "emailQueue" in result.stdout

    @patch("cli.main.HubJobsClient")
    def test_status_failure(self, mock_client_class, runner, mock_client):
        """Test status command with connection failure"""
        mock_client.health_check.side_effect = HubJobsError("Connection failed")
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["status"])
        assert result.exit_code == 1
        assert "Connection Failed" in result.stdout


class TestQueueCommands:
    """Test queue commands"""

    @patch("cli.commands.queue.HubJobsClient")
    def test_list_empty(self, mock_client_class, runner, mock_client):
        """Test listing a queue without jobs"""
        mock_client.list_jobs.return_value = {"jobs": [], "count": 0}
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["queue", "list", "emailQueue", "--status", "failed"])
        assert result.exit_code == 0
        assert "No jobs found" in result.stdout
        mock_client.list_jobs.assert_called_once_with(
            "emailQueue", status="failed", limit=20, offset=0
        )

    @patch("cli.commands.queue.HubJobsClient")
    def test_stats_defaults_to_configured_queues(self, mock_client_class, runner, mock_client):
        """Test stats without a queue name covers display.queues"""
        mock_client.queue_stats.side_effect = lambda name: {
            "queue_name": name,
            "stats": {"pending": 0, "total": 0},
        }
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["queue", "stats"])
        assert result.exit_code == 0
        assert [c.args[0] for c in mock_client.queue_stats.call_args_list] == [
            "emailQueue",
            "fileProcessingQueue",
            "exportQueue",
        ]

    @patch("cli.commands.queue.HubJobsClient")
    def test_add_job(self, mock_client_class, runner, mock_client):
        """Test adding a job with options"""
        mock_client.add_job.return_value = {"id": "job-1"}
        mock_client_class.return_value = mock_client

        result = runner.invoke(
            app, ["queue", "add", "emailQueue", '{"to": "a@example.com"}', "--priority", "5"]
        )
        assert result.exit_code == 0
        assert "Added job job-1" in result.stdout
        mock_client.add_job.assert_called_once_with(
            "emailQueue",
            {"to": "a@example.com"},
            priority=5,
            max_attempts=3,
            delay_seconds=0,
        )

    def test_add_job_rejects_invalid_json(self, runner):
        """Test payload validation happens before any request"""
        result = runner.invoke(app, ["queue", "add", "emailQueue", "{not json"])
        assert result.exit_code == 1
        assert "not valid JSON" in result.stdout

    @patch("cli.commands.queue.HubJobsClient")
    def test_retry_failure(self, mock_client_class, runner, mock_client):
        """Test retry of a job that is not failed"""
        mock_client.retry_job.side_effect = HubJobsError("API Error 400: not in failed state")
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["queue", "retry", "emailQueue", "job-1"])
        assert result.exit_code == 1
        assert "Failed to retry job" in result.stdout

    @patch("cli.commands.queue.HubJobsClient")
    def test_delete_requires_confirmation(self, mock_client_class, runner, mock_client):
        """Test that delete asks before removing a job"""
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["queue", "delete", "emailQueue", "job-1"], input="n\n")
        assert "Aborted" in result.stdout
        mock_client.delete_job.assert_not_called()

        result = runner.invoke(app, ["queue", "delete", "emailQueue", "job-1", "--yes"])
        assert result.exit_code == 0
        mock_client.delete_job.assert_called_once_with("emailQueue", "job-1")

    @patch("cli.commands.queue.HubJobsClient")
    def test_cleanup(self, mock_client_class, runner, mock_client):
        """Test queue cleanup"""
        mock_client.cleanup_jobs.return_value = {"deleted_count": 12, "older_than_days": 3}
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["queue", "cleanup", "exportQueue", "-d", "3"])
        assert result.exit_code == 0
        assert "Deleted 12 jobs" in result.stdout


class TestScheduleCommands:
    """Test scheduled task commands"""

    @patch("cli.commands.schedule.HubJobsClient")
    def test_trigger_success(self, mock_client_class, runner, mock_client):
        """Test manual trigger"""
        mock_client.trigger_scheduled_job.return_value = {
            "success": True,
            "message": "Deleted 3 expired sessions",
            "data": {"deleted": 3},
        }
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["schedule", "trigger", "cleanupExpiredSessions"])
        assert result.exit_code == 0
        assert "Deleted 3 expired sessions" in result.stdout

    @patch("cli.commands.schedule.HubJobsClient")
    def test_trigger_unsuccessful_outcome(self, mock_client_class, runner, mock_client):
        """Test that a failed run exits non-zero"""
        mock_client.trigger_scheduled_job.return_value = {
            "success": False,
            "message": "External sync failed",
            "data": None,
        }
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["schedule", "trigger", "syncExternalData"])
        assert result.exit_code == 1

    @patch("cli.commands.schedule.HubJobsClient")
    def test_create_paused(self, mock_client_class, runner, mock_client):
        """Test creating a paused scheduled task"""
        mock_client.create_scheduled_job.return_value = {
            "name": "processPayouts",
            "cron_expression": "0 6 * * *",
        }
        mock_client_class.return_value = mock_client

        result = runner.invoke(
            app, ["schedule", "create", "processPayouts", "0 6 * * *", "--paused"]
        )
        assert result.exit_code == 0
        mock_client.create_scheduled_job.assert_called_once_with(
            "processPayouts", "0 6 * * *", status="paused"
        )

    @patch("cli.commands.schedule.HubJobsClient")
    def test_list_empty(self, mock_client_class, runner, mock_client):
        """Test listing with no timers"""
        mock_client.list_scheduled_jobs.return_value = {"jobs": [], "tasks": []}
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["schedule", "list"])
        assert result.exit_code == 0
        assert "No scheduled tasks" in result.stdout


class TestMaintenanceCommands:
    """Test maintenance commands"""

    def test_unknown_cleanup_type(self, runner):
        result = runner.invoke(app, ["maintenance", "cleanup", "everything"])
        assert result.exit_code == 1
        assert "Unknown cleanup type" in result.stdout

    @patch("cli.commands.maintenance.HubJobsClient")
    def test_cleanup_with_errors(self, mock_client_class, runner, mock_client):
        """Test that sweep errors are printed and exit non-zero"""
        mock_client.run_cleanup.return_value = {
            "success": False,
            "results": {"tempFiles": 4},
            "errors": ["Expired files cleanup failed: disk unavailable"],
        }
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["maintenance", "cleanup"])
        assert result.exit_code == 1
        assert "tempFiles" in result.stdout
        assert "disk unavailable" in result.stdout

    @patch("cli.commands.maintenance.HubJobsClient")
    def test_stats(self, mock_client_class, runner, mock_client):
        mock_client.cleanup_stats.return_value = {
            "expiredFiles": 3,
            "tempFiles": 1,
            "quarantinedFiles": 0,
            "duplicateFiles": 2,
            "totalStorageUsed": 5 * 1024 * 1024,
        }
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["maintenance", "stats"])
        assert result.exit_code == 0
        assert "5.0 MB" in result.stdout


class TestAPIClient:
    """Test envelope handling of the HTTP client"""

    def test_unwraps_success_envelope(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/queues/emailQueue/stats"
            return httpx.Response(200, json={"ok": True, "data": {"queue_name": "emailQueue"}})

        with APIClient("http://api.test", transport=httpx.MockTransport(handler)) as client:
            assert client.get("/queues/emailQueue/stats") == {"queue_name": "emailQueue"}

    def test_error_envelope_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                404, json={"ok": False, "error": {"message": "Job not found", "code": 404}}
            )

        with APIClient("http://api.test", transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(HubJobsError, match="Job not found"):
                client.get("/queues/emailQueue/jobs/x")

    def test_validation_error_keeps_details(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                422,
                json={
                    "ok": False,
                    "error": {
                        "message": "Request validation failed",
                        "code": 422,
                        "details": {"errors": [{"loc": ["body", "options", "priority"], "msg": "too big"}]},
                    },
                },
            )

        with APIClient("http://api.test", transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(HubJobsError) as exc_info:
                client.post("/queues/jobs", json={"queue_name": "emailQueue"})

        assert exc_info.value.status_code == 422
        assert exc_info.value.details["errors"][0]["loc"][-1] == "priority"

    def test_connection_error_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused")

        with APIClient("http://api.test", transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(HubJobsError, match="Connection failed"):
                client.get("/healthz")


class TestConfigManager:
    """Test CLI configuration persistence"""

    def test_set_and_get(self, tmp_path):
        manager = ConfigManager(config_dir=tmp_path)

        assert manager.get("api.timeout") == 30
        manager.set("api.base_url", "http://jobs.internal:9000")

        assert manager.get("api.base_url") == "http://jobs.internal:9000"
        assert manager.config_file.exists()
        # Defaults are merged into existing sections
        assert manager.get("api.timeout") == 30

    def test_missing_key_returns_default(self, tmp_path):
        manager = ConfigManager(config_dir=tmp_path)
        assert manager.get("api.nope", "fallback") == "fallback"

    def test_reset(self, tmp_path):
        manager = ConfigManager(config_dir=tmp_path)
        manager.set("display.jobs_per_page", 50)

        manager.reset()

        assert manager.get("display.jobs_per_page") == 20

    def test_coerce_value(self):
        assert coerce_value("45") == 45
        assert coerce_value("false") is False
        assert coerce_value("http://jobs.internal:9000") == "http://jobs.internal:9000"
        assert coerce_value("emailQueue, reportQueue") == ["emailQueue", "reportQueue"]


class TestConfigCommands:
    """Test the config sub-commands against a temporary config file"""

    @pytest.fixture(autouse=True)
    def temp_config(self, tmp_path, monkeypatch):
        manager = ConfigManager(config_dir=tmp_path)
        monkeypatch.setattr("cli.commands.config.config", manager)
        return manager

    def test_set_queues_list(self, runner, temp_config):
        result = runner.invoke(app, ["config", "set", "display.queues", "emailQueue,reportQueue"])

        assert result.exit_code == 0
        assert temp_config.get("display.queues") == ["emailQueue", "reportQueue"]

    def test_set_rejects_bad_values(self, runner, temp_config):
        result = runner.invoke(app, ["config", "set", "api.base_url", "jobs.internal"])
        assert result.exit_code == 1

        result = runner.invoke(app, ["config", "set", "api.timeout", "soon"])
        assert result.exit_code == 1
        assert temp_config.get("api.timeout") == 30

    def test_get_missing_key(self, runner):
        result = runner.invoke(app, ["config", "get", "api.nope"])
        assert result.exit_code == 1

    def test_reset_with_yes(self, runner, temp_config):
        temp_config.set("api.timeout", 5)

        result = runner.invoke(app, ["config", "reset", "--yes"])

        assert result.exit_code == 0
        assert temp_config.get("api.timeout") == 30
