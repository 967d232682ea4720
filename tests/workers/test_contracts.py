from __future__ import annotations

from datetime import UTC, datetime
from uuid import uuid4

import pytest

from platform_sync.workers.contracts import Platform, SyncProgress, SyncStatus


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("spotify", Platform.SPOTIFY),
        ("Apple Music", Platform.APPLE_MUSIC),
        ("youtube-music", Platform.YOUTUBE_MUSIC),
        (" DEEZER ", Platform.DEEZER),
        (Platform.TIDAL, Platform.TIDAL),
    ],
)
def test_platform_parse_is_lenient(raw: str | Platform, expected: Platform) -> None:
    assert Platform.parse(raw) is expected


def test_platform_parse_rejects_unknown_names() -> None:
    with pytest.raises(ValueError, match="napster"):
        Platform.parse("napster")


def test_display_names() -> None:
    assert Platform.YOUTUBE_MUSIC.display_name == "YouTube Music"
    assert Platform.APPLE_MUSIC.display_name == "Apple Music"


def test_terminal_statuses() -> None:
    terminal = {status for status in SyncStatus if status.is_terminal}

    assert terminal == {
        SyncStatus.COMPLETED,
        SyncStatus.PARTIALLY_COMPLETED,
        SyncStatus.FAILED,
        SyncStatus.CANCELLED,
    }


def test_progress_percentage() -> None:
    now = datetime.now(UTC)
    progress = SyncProgress(
        platform=Platform.SPOTIFY,
        sync_run_id=uuid4(),
        status=SyncStatus.RUNNING,
        items_processed=30,
        errors=0,
        started_at=now,
        updated_at=now,
        total_items=120,
    )

    assert progress.progress_percentage == pytest.approx(25.0)
    assert SyncProgress(
        platform=Platform.SPOTIFY,
        sync_run_id=uuid4(),
        status=SyncStatus.RUNNING,
        items_processed=3,
        errors=0,
        started_at=now,
        updated_at=now,
    ).progress_percentage is None
