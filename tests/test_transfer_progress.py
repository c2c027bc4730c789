"""Tests for transfer progress bookkeeping."""

import pytest

from assetpin.storage.progress import TransferProgress, format_bytes


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.mark.parametrize(
    "num_bytes,expected",
    [
        (0, "0 Bytes"),
        (512, "512 Bytes"),
        (1536, "1.5 KB"),
        (1024 * 1024, "1 MB"),
        (3.25 * 1024 ** 3, "3.25 GB"),
    ],
)
def test_format_bytes(num_bytes, expected):
    assert format_bytes(num_bytes) == expected


class TestTransferProgress:
    """Tests for TransferProgress."""

    def test_reports_once_per_window(self):
        clock = FakeClock()
        reports = []
        progress = TransferProgress(100, reports.append, interval_seconds=1.0, clock=clock)

        clock.now = 0.5
        progress.advance(10)
        assert reports == []

        clock.now = 1.0
        progress.advance(10)

        assert len(reports) == 1
        snapshot = reports[0]
        assert snapshot.bytes_transferred == 20
        assert snapshot.instant_speed == pytest.approx(20.0)
        assert snapshot.average_speed == pytest.approx(20.0)
        assert snapshot.eta_seconds == pytest.approx(4.0)
        assert snapshot.percent == 20.0

    def test_instant_speed_uses_current_window(self):
        clock = FakeClock()
        reports = []
        progress = TransferProgress(100, reports.append, interval_seconds=1.0, clock=clock)

        clock.now = 1.0
        progress.advance(20)
        clock.now = 1.5
        progress.advance(30)
        clock.now = 2.0
        final = progress.finish()

        assert len(reports) == 2
        assert final.instant_speed == pytest.approx(30.0)
        assert final.average_speed == pytest.approx(25.0)
        # remaining 50 bytes at the average speed
        assert final.eta_seconds == pytest.approx(2.0)

    def test_finish_reports_complete(self):
        clock = FakeClock()
        reports = []
        progress = TransferProgress(50, reports.append, interval_seconds=10.0, clock=clock)

        clock.now = 2.0
        progress.advance(50)
        final = progress.finish()

        assert reports == [final]
        assert final.percent == 100.0
        assert final.eta_seconds == 0.0

    def test_eta_unknown_before_any_bytes(self):
        clock = FakeClock()
        progress = TransferProgress(50, lambda s: None, clock=clock)

        clock.now = 1.0
        snapshot = progress.snapshot()

        assert snapshot.average_speed == 0.0
        assert snapshot.eta_seconds is None

    def test_payload_fields(self):
        clock = FakeClock()
        progress = TransferProgress(2048, lambda s: None, clock=clock)
        clock.now = 1.0
        progress.advance(1024)

        payload = progress.snapshot().as_payload()

        assert payload["bytesTransferred"] == 1024
        assert payload["totalBytes"] == 2048
        assert payload["percent"] == 50.0
        assert payload["transferred"] == "1 KB"
        assert payload["total"] == "2 KB"
        assert payload["averageSpeedFormatted"] == "1 KB/s"
        assert payload["etaSeconds"] == 1.0
