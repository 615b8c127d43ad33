"""Click recorder and background task supervisor tests."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from shortlink.classifier import GeoInfo, UserAgentInfo
from shortlink.enums import DeviceType
from shortlink.errors import RecordingFailure, StorageFailure
from shortlink.recorder import LOOPBACK_IP, ClickRecorder, extract_client_ip, snapshot_headers
from shortlink.repository import LinkRepository
from shortlink.resolver import ClickTaskSupervisor

# ============================================================================
# TEST FIXTURES AND UTILITIES
# ============================================================================


@pytest.fixture
def mock_repository() -> AsyncMock:
    repository = AsyncMock(spec=LinkRepository)
    repository.create_click = AsyncMock()
    repository.update_link_last_click_at = AsyncMock()
    return repository


@pytest.fixture
def mock_classifier() -> MagicMock:
    classifier = MagicMock()
    classifier.classify_user_agent = MagicMock(return_value=UserAgentInfo(device=DeviceType.MOBILE))
    classifier.classify_ip = MagicMock(return_value=GeoInfo(country="Germany", city="Berlin"))
    return classifier


@pytest.fixture
def mock_logger() -> MagicMock:
    return MagicMock()


@pytest.fixture
def recorder(mock_repository: AsyncMock, mock_classifier: MagicMock, mock_logger: MagicMock) -> ClickRecorder:
    return ClickRecorder(mock_repository, mock_classifier, mock_logger)


# ============================================================================
# HEADER HANDLING
# ============================================================================


class TestExtractClientIp:
    def test_first_forwarded_entry_wins(self) -> None:
        headers = {"x-forwarded-for": " 81.2.69.142 , 10.0.0.1", "x-real-ip": "10.0.0.2"}
        assert extract_client_ip(headers) == "81.2.69.142"

    def test_real_ip_when_not_forwarded(self) -> None:
        assert extract_client_ip({"x-real-ip": "81.2.69.142"}) == "81.2.69.142"

    def test_empty_forwarded_falls_through(self) -> None:
        assert extract_client_ip({"x-forwarded-for": " , 10.0.0.1", "x-real-ip": "81.2.69.142"}) == "81.2.69.142"

    def test_loopback_default(self) -> None:
        assert extract_client_ip({}) == LOOPBACK_IP == "127.0.0.1"


def test_snapshot_headers_keeps_only_recorded_headers() -> None:
    headers = {
        "user-agent": "curl/8.0",
        "referer": "",
        "x-forwarded-for": "81.2.69.142",
        "authorization": "Bearer secret",
    }
    assert snapshot_headers(headers) == {"user-agent": "curl/8.0", "x-forwarded-for": "81.2.69.142"}


# ============================================================================
# RECORDING
# ============================================================================


class TestRecordClick:
    @pytest.mark.asyncio
    async def test_writes_click_and_last_click_at_with_same_timestamp(
        self, recorder: ClickRecorder, mock_repository: AsyncMock, mock_classifier: MagicMock
    ) -> None:
        headers = {
            "user-agent": "Mozilla/5.0 (iPhone)",
            "referer": "https://t.co/abc",
            "x-forwarded-for": "81.2.69.142",
        }

        await recorder.record_click("link-1", headers)

        mock_classifier.classify_user_agent.assert_called_once_with("Mozilla/5.0 (iPhone)")
        mock_classifier.classify_ip.assert_called_once_with("81.2.69.142")

        args, kwargs = mock_repository.create_click.call_args
        assert args == ("link-1",)
        assert kwargs["referrer"] == "https://t.co/abc"
        assert kwargs["device"] == "mobile"
        assert kwargs["country"] == "Germany"
        assert kwargs["city"] == "Berlin"

        update_args = mock_repository.update_link_last_click_at.call_args.args
        assert update_args == ("link-1", kwargs["timestamp"])

    @pytest.mark.asyncio
    async def test_missing_headers_use_defaults(
        self, recorder: ClickRecorder, mock_repository: AsyncMock, mock_classifier: MagicMock
    ) -> None:
        await recorder.record_click("link-1", {})

        kwargs = mock_repository.create_click.call_args.kwargs
        assert kwargs["referrer"] is None
        assert kwargs["user_agent"] == ""
        mock_classifier.classify_ip.assert_called_once_with(LOOPBACK_IP)

    @pytest.mark.asyncio
    async def test_failure_raises_after_both_writes(
        self, recorder: ClickRecorder, mock_repository: AsyncMock
    ) -> None:
        mock_repository.create_click.side_effect = StorageFailure("disk full")

        with pytest.raises(RecordingFailure) as exc_info:
            await recorder.record_click("link-1", {})

        assert exc_info.value.link_id == "link-1"
        assert isinstance(exc_info.value.__cause__, StorageFailure)
        mock_repository.update_link_last_click_at.assert_awaited_once()


# ============================================================================
# TASK SUPERVISOR
# ============================================================================


class TestClickTaskSupervisor:
    @pytest.mark.asyncio
    async def test_failures_are_logged_not_raised(self, mock_logger: MagicMock) -> None:
        supervisor = ClickTaskSupervisor(mock_logger)

        async def failing() -> None:
            raise RecordingFailure("link-1", StorageFailure("disk full"))

        supervisor.spawn(failing(), name="record-click-test")
        await supervisor.drain()

        assert supervisor.pending == 0
        mock_logger.error.assert_called_once()
        assert "link-1" in mock_logger.error.call_args.args[0]

    @pytest.mark.asyncio
    async def test_drain_waits_for_in_flight_tasks(self, mock_logger: MagicMock) -> None:
        supervisor = ClickTaskSupervisor(mock_logger)
        finished: list[int] = []

        async def slow(index: int) -> None:
            await asyncio.sleep(0.01)
            finished.append(index)

        for index in range(3):
            supervisor.spawn(slow(index))
        assert supervisor.pending == 3

        await supervisor.drain()

        assert sorted(finished) == [0, 1, 2]
        assert supervisor.pending == 0
        mock_logger.error.assert_not_called()
