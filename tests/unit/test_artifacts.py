from __future__ import annotations

import pytest

from orbital.artifacts import ArtifactStorage, download_filename, screenshot_filename

JOB_ID = "3f2b8c1e-9d4a-4b7e-8f00-1234567890ab"


def test_screenshot_filename() -> None:
    assert screenshot_filename(3) == "screenshot-3.png"


@pytest.mark.parametrize(
    ("suggested", "expected"),
    [
        ("report.pdf", "download-2-report.pdf"),
        ("my report (final).CSV", "download-2-my_report__final_.csv"),
        ("../../etc/passwd", "download-2-passwd"),
        ("", "download-2-file"),
    ],
)
def test_download_filename_is_sanitised(suggested: str, expected: str) -> None:
    assert download_filename(2, suggested) == expected


def test_url_for(artifacts: ArtifactStorage) -> None:
    assert artifacts.url_for(JOB_ID, "screenshot-0.png") == (
        f"http://testserver/artifacts/{JOB_ID}/screenshot-0.png"
    )


def test_resolve_existing_file(artifacts: ArtifactStorage) -> None:
    (artifacts.job_dir(JOB_ID) / "screenshot-0.png").write_bytes(b"png")

    path = artifacts.resolve(JOB_ID, "screenshot-0.png")
    assert path is not None
    assert path.read_bytes() == b"png"


@pytest.mark.parametrize(
    ("job_id", "filename"),
    [
        ("not-a-uuid", "screenshot-0.png"),
        (JOB_ID, "../secret.png"),
        (JOB_ID, "screenshot-0.exe"),
        (JOB_ID, "missing.png"),
    ],
)
def test_resolve_rejects_bad_or_missing_names(
    artifacts: ArtifactStorage, job_id: str, filename: str
) -> None:
    assert artifacts.resolve(job_id, filename) is None
