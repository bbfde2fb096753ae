#!/usr/bin/env python3
"""
LineWatch - assembly line tag sync and defect detection
Version: 0.3.0
License: MIT
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Any, Optional, Sequence

from shared.errors import ConfigError, DriverConnectionError, ImageDecodeError, LineWatchError
from src.core.logic.models import event_to_dict
from src.linewatch_app.config import APP_NAME, SEMVER, LineConfig
from src.linewatch_app.runtime import build_detector, build_engine
from src.linewatch_app.sinks import LoggingEventSink

EXIT_CONNECT_FAILED = 1
EXIT_USAGE = 2


def configure_logger(debug: bool, log_file: Path | None) -> logging.Logger:
    logger = logging.getLogger(APP_NAME)
    logger.handlers.clear()
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    stream_h = logging.StreamHandler(sys.stderr)
    stream_h.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
    logger.addHandler(stream_h)
    if log_file:
        file_h = logging.FileHandler(log_file, encoding="utf-8")
        file_h.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
        logger.addHandler(file_h)
    return logger


def parse_assignment(text: str) -> tuple[str, Any]:
    """`Line.RunCmd=true` -> ("Line.RunCmd", True); non-JSON values stay strings."""
    name, sep, raw = text.partition("=")
    if not sep or not name.strip():
        raise ValueError(f"expected TAG=VALUE, got {text!r}")
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        value = raw
    if isinstance(value, (list, dict)) or value is None:
        raise ValueError(f"tag values must be bool, number or string, got {raw!r}")
    return name.strip(), value


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description=f"LineWatch v{SEMVER}")
    p.add_argument("--version", action="store_true")
    p.add_argument("--snapshot", action="store_true", help="one critical-tag sweep, print JSON")
    p.add_argument("--write", metavar="TAG=VALUE")
    p.add_argument("--run", action="store_true", help="stream engine events as JSON log lines")
    p.add_argument("--duration", type=float, default=0.0, help="seconds for --run, 0 = forever")
    p.add_argument("--detect", type=Path, metavar="IMAGE")

    p.add_argument("--mode", choices=["demo", "live"])
    p.add_argument("--poll-interval", type=float)
    p.add_argument("--seed", type=int)
    p.add_argument("--debug", action="store_true")
    p.add_argument("--log-file", type=Path)
    return p


def run_engine(config: LineConfig, duration_s: float, logger: logging.Logger) -> int:
    engine = build_engine(config, LoggingEventSink(logger), logger=logger)
    engine.start()
    deadline = time.monotonic() + duration_s if duration_s > 0 else None
    try:
        while deadline is None or time.monotonic() < deadline:
            time.sleep(0.2)
    except KeyboardInterrupt:
        logger.info("interrupted")
    finally:
        engine.stop()
    status = engine.status()
    logger.info(
        "poll cycles=%s failures=%s last_error=%s",
        status.poll_cycles,
        status.poll_failures,
        status.last_error,
    )
    return 0


def snapshot(config: LineConfig, logger: logging.Logger, write: Optional[str] = None) -> int:
    engine = build_engine(config, logger=logger)
    engine.connect()
    try:
        if write:
            name, value = parse_assignment(write)
            engine.write_tag(name, value)
            print(json.dumps({name: engine.tag_snapshot().get(name)}, ensure_ascii=False))
            return 0
        engine.poll_once()
        print(json.dumps(dict(engine.tag_snapshot()), ensure_ascii=False, indent=2))
        return 0
    finally:
        engine.disconnect()


def detect_file(config: LineConfig, image: Path, logger: logging.Logger) -> int:
    try:
        payload = image.read_bytes()
    except OSError as exc:
        logger.error("cannot read %s: %s", image, exc)
        return EXIT_USAGE
    try:
        result = build_detector(config, logger).detect(payload)
    except ImageDecodeError as exc:
        logger.error("frame dropped: %s", exc)
        return EXIT_USAGE
    print(json.dumps(event_to_dict(result), ensure_ascii=False, indent=2))
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logger = configure_logger(args.debug, args.log_file)

    if args.version:
        print(f"{APP_NAME} {SEMVER}")
        return 0
    try:
        config = LineConfig.from_env().with_overrides(
            mode=args.mode, poll_interval_s=args.poll_interval, seed=args.seed
        )
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_USAGE

    if args.detect:
        return detect_file(config, args.detect, logger)
    try:
        if args.snapshot or args.write:
            return snapshot(config, logger, write=args.write)
        if args.run:
            return run_engine(config, args.duration, logger)
    except DriverConnectionError as exc:
        logger.error("PLC unreachable: %s", exc)
        return EXIT_CONNECT_FAILED
    except (LineWatchError, ValueError) as exc:
        logger.error("%s", exc)
        return EXIT_USAGE

    print("Error: one of --snapshot, --write, --run, --detect or --version is required.", file=sys.stderr)
    return EXIT_USAGE


if __name__ == "__main__":
    raise SystemExit(main())
