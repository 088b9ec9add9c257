#!/usr/bin/env python3
"""
Discogs cover artwork fetcher for the music library.
- Sequential fetches to avoid throttling; each failed entity is retried once, then skipped.
- Saliency crop (face-boosted when OpenCV is installed) to a 600px square.
- Stores hq/large/small renditions as attachments in the library database.
"""

import os
import sys

ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

import argparse
import logging
import signal
import threading

from engine.core import EngineStatus, build_artwork_service, load_config, run_artwork_sync, validate_config
from engine.paths import CONFIG_DIR, DATA_DIR, LOG_DIR, build_engine_paths, ensure_dir, resolve_config_path


def _setup_logging(log_file, verbose=False):
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        filename=log_file,
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )
    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
    console.setLevel(level)
    logging.getLogger("").addHandler(console)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)


def _read_config(path_arg):
    try:
        config_path = resolve_config_path(path_arg)
    except ValueError as exc:
        logging.error("Invalid config path: %s", exc)
        return None
    if not os.path.exists(config_path):
        if path_arg:
            logging.error("Config file not found: %s", path_arg)
            return None
        logging.info("No config at %s; using defaults", config_path)
        return {}
    config = load_config(config_path)
    errors = validate_config(config)
    if errors:
        for error in errors:
            logging.error("Invalid config: %s", error)
        return None
    return config


def main():
    parser = argparse.ArgumentParser(description="Fetch cover artwork for library artists and albums.")
    parser.add_argument("--config", default=None)
    parser.add_argument("--entity", help="Fetch artwork for a single artist/album id and exit.")
    parser.add_argument(
        "--set",
        nargs=2,
        metavar=("ENTITY_ID", "SOURCE"),
        help="Store artwork for an entity from an explicit URL or absolute file path.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output.")
    args = parser.parse_args()

    paths = build_engine_paths()
    ensure_dir(DATA_DIR)
    ensure_dir(CONFIG_DIR)
    ensure_dir(LOG_DIR)
    _setup_logging(paths.log_file, verbose=args.verbose)

    config = _read_config(args.config)
    if config is None:
        logging.shutdown()
        sys.exit(2)

    if args.set:
        entity_id, source = args.set
        service = build_artwork_service(config, paths)
        try:
            service.save_artwork(entity_id, source)
        except Exception:
            logging.exception("Failed to store artwork for %s from %s", entity_id, source)
            logging.shutdown()
            sys.exit(1)
        logging.shutdown()
        return

    stop_event = threading.Event()

    def _handle_signal(signum, _frame):
        stop_event.set()
        logging.warning("Signal %s received; stopping after current entity", signum)

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    status = run_artwork_sync(
        config,
        paths=paths,
        status=EngineStatus(),
        stop_event=stop_event,
        entity_id=args.entity,
        run_source="manual",
    )

    if stop_event.is_set():
        logging.warning("Stopped by signal")
        logging.shutdown()
        sys.exit(130)

    if args.entity and status.run_failures:
        logging.shutdown()
        sys.exit(1)

    logging.shutdown()


if __name__ == "__main__":
    main()
