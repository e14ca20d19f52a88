"""
Tests for the Task Runner and send failure monitoring.

A send failure must never escape the fire action: it is logged with the
guild and job context, counted, and the next fire is the retry.
"""
import asyncio

import pytest
from freezegun import freeze_time

from echobot.models.schemas import EchoPayload, JobDefinition
from echobot.services.task_runner import SendFailureMonitor, TaskRunner

from conftest import FakeChannel, FakeGateway


def _job(payload="hello", identifier="j1"):
    return JobDefinition(
        identifier=identifier,
        textChannelId="C1",
        expression="* * * * *",
        payload=payload,
    )


class TestTaskRunner:

    @pytest.mark.unit
    def test_fire_sends_payload(self):
        gateway = FakeGateway(channels=["C1"])
        monitor = SendFailureMonitor()
        fire = TaskRunner(gateway, monitor).build_action("G1", _job(), FakeChannel("C1"))

        assert asyncio.run(fire()) is True

        assert gateway.sent == [("C1", "hello")]
        assert monitor.get_status() == {}

    @pytest.mark.unit
    def test_fire_sends_structured_payload(self):
        gateway = FakeGateway(channels=["C1"])
        payload = {"content": "daily", "embed": {"title": "Standup"}}
        fire = TaskRunner(gateway, SendFailureMonitor()).build_action(
            "G1", _job(payload=payload), FakeChannel("C1")
        )

        asyncio.run(fire())

        _, sent = gateway.sent[0]
        assert isinstance(sent, EchoPayload)
        assert sent.embed == {"title": "Standup"}

    @pytest.mark.unit
    def test_send_failure_is_logged_not_raised(self, caplog):
        gateway = FakeGateway(channels=["C1"])
        gateway.send_error = RuntimeError("Missing Permissions")
        monitor = SendFailureMonitor()
        fire = TaskRunner(gateway, monitor).build_action("G1", _job(), FakeChannel("C1"))

        assert asyncio.run(fire()) is False

        assert "[guild:G1] [job:j1] Error in echo job" in caplog.text
        assert "Missing Permissions" in caplog.text
        assert monitor.get_status()["j1"]["failure_count"] == 1

    @pytest.mark.unit
    def test_success_after_failure_resets_count(self):
        gateway = FakeGateway(channels=["C1"])
        monitor = SendFailureMonitor()
        fire = TaskRunner(gateway, monitor).build_action("G1", _job(), FakeChannel("C1"))

        gateway.send_error = RuntimeError("down")
        asyncio.run(fire())
        gateway.send_error = None
        asyncio.run(fire())

        status = monitor.get_status()["j1"]
        assert status["failure_count"] == 0
        assert status["last_error"] is None

    @pytest.mark.unit
    def test_action_is_named_after_job(self):
        fire = TaskRunner(FakeGateway(), SendFailureMonitor()).build_action(
            "G1", _job(identifier="abc"), FakeChannel("C1")
        )

        assert fire.__name__ == "echo_abc"


class TestSendFailureMonitor:

    @pytest.mark.unit
    def test_record_failure_counts(self):
        monitor = SendFailureMonitor()

        assert monitor.record_failure("j1", "e1") == 1
        assert monitor.record_failure("j1", "e2") == 2
        assert monitor.get_status()["j1"]["last_error"] == "e2"

    @pytest.mark.unit
    def test_failures_outside_window_are_dropped(self):
        monitor = SendFailureMonitor(window_hours=24)

        with freeze_time("2024-01-01 08:00:00"):
            monitor.record_failure("j1", "old")
        with freeze_time("2024-01-02 09:00:00"):
            count = monitor.record_failure("j1", "new")

        assert count == 1
        assert monitor.get_status()["j1"]["last_failure"].startswith("2024-01-02T09:00:00")

    @pytest.mark.unit
    def test_failures_are_per_job(self):
        monitor = SendFailureMonitor()

        monitor.record_failure("j1", "e")
        monitor.record_success("j2")

        status = monitor.get_status()
        assert status["j1"]["failure_count"] == 1
        assert "j2" not in status
