#!/usr/bin/env python3
# One-shot scan: capture (or load) a frame, run describe + visualize, write the bundle to disk.

from __future__ import annotations

import argparse
import asyncio
import base64
import json
import logging
import mimetypes
import sys
from pathlib import Path
from typing import List, Optional

from .config import get_settings
from .errors import CaptureUnavailable, ScanFlowError
from .backend.describer import split_data_uri
from .logging_config import configure_logging
from .models import ResolutionTier, ScanConfiguration
from .sensors.webcam_service import WebcamService
from .session_manager import ScanSessionManager
from .state import ScanPhase, ScanSession

log = logging.getLogger("scanner.cli")

_EXTENSIONS = {"image/jpeg": "jpg", "image/jpg": "jpg", "image/png": "png", "image/webp": "webp"}

# Older interpreters do not map .webp.
mimetypes.add_type("image/webp", ".webp")


def load_image(path: Path) -> str:
    """Read an image file into a data URI; raises ValueError for unsupported types."""
    mime, _ = mimetypes.guess_type(path.name)
    if mime not in _EXTENSIONS:
        raise ValueError(f"unsupported image type: {path.suffix or path.name}")
    return f"data:{mime};base64," + base64.b64encode(path.read_bytes()).decode("ascii")


def _write_data_uri(data_uri: str, stem: Path) -> Path:
    mime, payload = split_data_uri(data_uri)
    target = stem.with_suffix("." + _EXTENSIONS.get(mime, "bin"))
    target.write_bytes(base64.b64decode(payload))
    return target


def write_bundle(session: ScanSession, out_dir: Path) -> List[Path]:
    """Write capture, entity JSON and visualizations; returns the written paths."""
    out_dir.mkdir(parents=True, exist_ok=True)
    written = [_write_data_uri(session.capture, out_dir / "capture")]
    entity_path = out_dir / "entity.json"
    entity = session.entity.model_dump(mode="json", by_alias=True) if session.entity else None
    entity_path.write_text(json.dumps(entity, ensure_ascii=False, indent=2), encoding="utf-8")
    written.append(entity_path)
    for index, image in enumerate(session.visualizations, start=1):
        written.append(_write_data_uri(image, out_dir / f"visualization-{index}"))
    return written


async def run_scan(
    manager: ScanSessionManager,
    configuration: ScanConfiguration,
    image: Optional[str],
) -> Optional[ScanSession]:
    """Drive one scan to completion; returns the finished session or None on failure."""
    started = await manager.trigger_scan(configuration, image=image)
    if started is None:
        log.error("Scanner busy; scan not started")
        return None
    await manager.wait_for_pipeline()
    if manager.phase is not ScanPhase.DONE:
        log.error("Scan failed: %s", manager.last_error)
        return None
    return manager.session


async def run(args: argparse.Namespace) -> int:
    settings = get_settings()
    configuration = ScanConfiguration(
        instruction=args.instruction,
        exclusions=settings.generation.default_exclusions if args.exclusions is None else args.exclusions,
        resolution=ResolutionTier(args.resolution) if args.resolution else settings.generation.default_resolution,
    )
    try:
        image = load_image(args.image) if args.image else None
    except (OSError, ValueError) as e:
        log.error("Cannot read image %s: %s", args.image, e)
        return 1
    webcam = WebcamService(settings.camera)
    manager = ScanSessionManager(settings=settings, capture=webcam)
    try:
        if image is None:
            async with webcam.acquired():
                session = await run_scan(manager, configuration, None)
        else:
            session = await run_scan(manager, configuration, image)
    except CaptureUnavailable as e:
        log.error("Capture unavailable: %s", e)
        return 1
    finally:
        await manager.stop()

    if session is None or session.entity is None:
        return 1

    written = write_bundle(session, args.output)
    log.info("%s [%s] - %d visualization(s)", session.entity.title, session.entity.rarity.value, len(session.visualizations))
    for path in written:
        log.info("wrote %s", path)
    return 0


def parse(argv: Optional[List[str]] = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Scan a scene for its hidden entity")
    ap.add_argument("--image", type=Path, help="Use this image instead of the camera")
    ap.add_argument("--instruction", default=None, help="Description instruction (built-in prompt when omitted)")
    ap.add_argument("--exclusions", default=None, help="Things the image model must avoid")
    ap.add_argument("--resolution", choices=[tier.value for tier in ResolutionTier], default=None)
    ap.add_argument("--output", type=Path, default=Path("scan-output"))
    ap.add_argument("--log", default="info", choices=["debug", "info", "warn", "error"])
    return ap.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse(argv)
    lvl = dict(debug="DEBUG", info="INFO", warn="WARNING", error="ERROR")[args.log]
    settings = get_settings()
    configure_logging(lvl, settings.log_directory, settings.log_retention_days)
    try:
        return asyncio.run(run(args))
    except ScanFlowError as e:
        log.error("%s", e.user_message)
        return 1


if __name__ == "__main__":
    sys.exit(main())
