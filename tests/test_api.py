"""HTTP surface tests using the FastAPI TestClient."""

from __future__ import annotations

import asyncio
import time

from fastapi.testclient import TestClient

from conftest import CAPTURE_URI, FakeDescriber, FakeSynthesizer, FakeWebcam, images
from scanner.errors import CaptureUnavailable
from scanner.main import create_app
from scanner.prompts import DEFAULT_PROMPT
from scanner.session_manager import ScanSessionManager


def _build(settings, entity, *, webcam=None, describer=None, synthesizer=None):
    webcam = webcam or FakeWebcam()
    manager = ScanSessionManager(
        settings=settings,
        capture=webcam,
        describer=describer or FakeDescriber(entity),
        synthesizer=synthesizer or FakeSynthesizer(images(4)),
    )
    return create_app(settings, manager=manager, webcam=webcam), manager, webcam


def _wait_for_phase(client: TestClient, phase: str, timeout: float = 5.0) -> dict:
    deadline = time.monotonic() + timeout
    while True:
        body = client.get("/session").json()
        if body["phase"] == phase or time.monotonic() > deadline:
            return body
        time.sleep(0.01)


def test_healthz(settings, entity) -> None:
    app, _, _ = _build(settings, entity)
    with TestClient(app) as client:
        response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "phase": "idle"}


def test_debug_performance_reports_usage(settings, entity) -> None:
    app, _, _ = _build(settings, entity)
    with TestClient(app) as client:
        body = client.get("/debug/performance").json()

    assert {"cpu_percent", "memory_percent", "memory_used_mb", "memory_total_mb"} <= set(body)


def test_config_roundtrip(settings, entity) -> None:
    app, manager, _ = _build(settings, entity)
    with TestClient(app) as client:
        initial = client.get("/config").json()
        updated = client.put("/config", json={"instruction": "   ", "exclusions": "gente", "resolution": "2K"})

    assert initial["resolution"] == "1K"
    assert initial["instruction"] == DEFAULT_PROMPT
    assert updated.status_code == 200
    assert updated.json() == {"instruction": DEFAULT_PROMPT, "exclusions": "gente", "resolution": "2K"}
    assert manager.configuration.exclusions == "gente"


def test_scan_runs_to_done(settings, entity) -> None:
    app, _, _ = _build(settings, entity)
    with TestClient(app) as client:
        started = client.post("/scan")
        body = _wait_for_phase(client, "done")

    assert started.status_code == 202
    assert started.json()["status"] == "started"
    assert body["phase"] == "done"
    assert body["error"] is None
    session = body["session"]
    assert session["session_id"] == started.json()["session_id"]
    assert session["entity"]["rarity"] == "Raro"
    assert session["capture"] == CAPTURE_URI
    assert len(session["visualizations"]) == 4


def test_scan_with_client_image_and_overrides(settings, entity) -> None:
    describer = FakeDescriber(entity)
    synthesizer = FakeSynthesizer(images(2))
    app, _, webcam = _build(settings, entity, describer=describer, synthesizer=synthesizer)
    with TestClient(app) as client:
        response = client.post(
            "/scan",
            json={"image": "data:image/png;base64,QUJD", "instruction": "busca", "exclusions": "", "resolution": "4K"},
        )
        body = _wait_for_phase(client, "done")

    assert response.status_code == 202
    assert webcam.capture.calls == 0
    assert describer.calls == [("data:image/png;base64,QUJD", "busca")]
    assert synthesizer.calls[0][1].value == "4K"
    assert synthesizer.calls[0][2] == ""
    assert body["session"]["resolution"] == "4K"


def test_session_without_images(settings, entity) -> None:
    app, _, _ = _build(settings, entity)
    with TestClient(app) as client:
        client.post("/scan")
        _wait_for_phase(client, "done")
        body = client.get("/session", params={"images": "false"}).json()

    assert body["session"]["visualization_count"] == 4
    assert "visualizations" not in body["session"]
    assert "capture" not in body["session"]


def test_scan_while_busy_is_ignored(settings, entity) -> None:
    # The gate is never opened; shutdown cancels the pending pipeline.
    describer = FakeDescriber(entity, gate=asyncio.Event())
    app, _, _ = _build(settings, entity, describer=describer)
    with TestClient(app) as client:
        first = client.post("/scan")
        second = client.post("/scan")

    assert first.status_code == 202
    assert second.status_code == 200
    assert second.json() == {"status": "ignored", "phase": "analyzing"}
    assert len(describer.calls) == 1


def test_capture_unavailable_returns_503(settings, entity) -> None:
    webcam = FakeWebcam(error=CaptureUnavailable(log_message="device busy"))
    app, _, _ = _build(settings, entity, webcam=webcam)
    with TestClient(app) as client:
        response = client.post("/scan")
        session = client.get("/session").json()

    assert response.status_code == 503
    assert response.json()["message"] == CaptureUnavailable.default_user_message
    assert session["phase"] == "idle"
    assert session["error"] == CaptureUnavailable.default_user_message


def test_description_failure_surfaces_error(settings, entity) -> None:
    from scanner.errors import DescriptionFailed

    app, _, _ = _build(settings, entity, describer=FakeDescriber(DescriptionFailed()))
    with TestClient(app) as client:
        client.post("/scan")
        deadline = time.monotonic() + 5.0
        body = client.get("/session").json()
        while body["error"] is None and time.monotonic() < deadline:
            time.sleep(0.01)
            body = client.get("/session").json()

    assert body["phase"] == "idle"
    assert body["session"] is None
    assert body["error"] == DescriptionFailed.default_user_message


def test_reset_returns_to_idle(settings, entity) -> None:
    app, _, _ = _build(settings, entity)
    with TestClient(app) as client:
        client.post("/scan")
        _wait_for_phase(client, "done")
        response = client.post("/reset")
        body = client.get("/session").json()

    assert response.json() == {"status": "ok", "phase": "idle"}
    assert body["session"] is None


def test_invalid_resolution_rejected(settings, entity) -> None:
    app, manager, _ = _build(settings, entity)
    with TestClient(app) as client:
        scan = client.post("/scan", json={"resolution": "8K"})
        config = client.put("/config", json={"resolution": "720p"})

    assert scan.status_code == 422
    assert config.status_code == 422
    assert manager.session is None


def test_camera_toggle(settings, entity) -> None:
    app, _, webcam = _build(settings, entity)
    with TestClient(app) as client:
        assert webcam.started
        off = client.post("/camera", json={"enabled": False})
        scan = client.post("/scan")
        on = client.post("/camera", json={"enabled": True})

    assert off.json() == {"status": "disabled", "camera_id": 0}
    assert scan.status_code == 503
    assert on.json()["status"] == "enabled"


def test_preview_streams_mjpeg(settings, entity) -> None:
    app, _, _ = _build(settings, entity)
    with TestClient(app) as client:
        response = client.get("/preview")

    assert response.headers["content-type"].startswith("multipart/x-mixed-replace")
    assert b"--frame\r\nContent-Type: image/jpeg" in response.content
    assert b"\xff\xd8frame" in response.content


def test_shutdown_releases_webcam(settings, entity) -> None:
    app, _, webcam = _build(settings, entity)
    with TestClient(app):
        assert webcam.active

    assert webcam.stopped
    assert not webcam.active
