# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Loader Event Monitor - load a directory and print loader events as they happen.

Useful for checking how a plugin directory is discovered, and for watching
hot-reload in action while editing units.

Usage:
    python -m dirloader plugins
    python -m dirloader modules --nested --main-file main.py
    python -m dirloader plugins --watch --duration 60
    python -m dirloader plugins --ignore "test_*" --no-instantiate

Defaults are read from DIRLOADER_* environment variables (see LoaderSettings).
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from dirloader.config import LoaderSettings
from dirloader.errors import LoaderError
from dirloader.events import LoaderEventType
from dirloader.loader import Loader

logger = logging.getLogger(__name__)


@dataclass
class EventStatistics:
    """Counts of loader events seen by the monitor."""

    total_events: int = 0
    events_by_type: dict[str, int] = field(default_factory=dict)
    started_at: float = field(default_factory=time.time)

    def record_event(self, event_type: str) -> None:
        self.total_events += 1
        self.events_by_type[event_type] = self.events_by_type.get(event_type, 0) + 1

    def get_summary(self) -> str:
        duration = time.time() - self.started_at
        lines = [
            f"\n{'=' * 60}",
            "Loader Event Statistics",
            f"{'=' * 60}",
            f"Total Events: {self.total_events}",
            f"Duration: {duration:.2f} seconds",
        ]
        for event_type, count in sorted(
            self.events_by_type.items(), key=lambda x: x[1], reverse=True
        ):
            lines.append(f"  {event_type}: {count}")
        return "\n".join(lines)


class LoaderMonitor:
    """Subscribes to every loader event and prints it."""

    _COLORS = {
        LoaderEventType.READY: "\033[97m",  # White
        LoaderEventType.LOAD: "\033[92m",  # Green
        LoaderEventType.UNLOAD: "\033[93m",  # Yellow
        LoaderEventType.RELOAD: "\033[94m",  # Blue
        LoaderEventType.LOAD_MANY: "\033[96m",  # Cyan
        LoaderEventType.ERROR: "\033[91m",  # Red
    }

    def __init__(self, loader: Loader[Any]) -> None:
        self.loader = loader
        self.stats = EventStatistics()
        self._unsubscribers = [
            loader.on(event_type, self._handler(event_type)) for event_type in LoaderEventType
        ]

    def _handler(self, event_type: LoaderEventType) -> Any:
        def handle(*args: Any) -> None:
            self.stats.record_event(event_type.value)
            self._print_event(event_type, args)

        return handle

    def _print_event(self, event_type: LoaderEventType, args: tuple[Any, ...]) -> None:
        color = self._COLORS.get(event_type, "\033[0m")
        if event_type is LoaderEventType.LOAD:
            detail = f"{args[0]} -> {args[1]!r}"
        elif event_type is LoaderEventType.LOAD_MANY:
            detail = f"{len(args[0])} unit(s)"
        elif args:
            detail = ", ".join(repr(arg) for arg in args)
        else:
            detail = ""
        print(f"{color}{event_type.value}\033[0m {detail}".rstrip())

    def stop(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    def print_summary(self) -> None:
        print(self.stats.get_summary())
        for path, unit in sorted(self.loader.files.items()):
            print(f"  {self.loader.name_of_path(path)}: {path} ({type(unit).__name__})")


async def monitor_async(loader: Loader[Any], duration: Optional[float] = None) -> None:
    """Load the root, then keep running while the watcher delivers changes.

    Args:
        loader: Loader created with auto_load disabled
        duration: Seconds to keep watching (None for infinite)
    """
    monitor = LoaderMonitor(loader)
    start_time = time.time()

    try:
        await loader.load_files()

        if loader.config.watch:
            logger.info(f"Watching {loader.config.path} for changes")
            while duration is None or (time.time() - start_time) < duration:
                await asyncio.sleep(0.1)
    finally:
        monitor.stop()
        loader.close()
        monitor.print_summary()


def build_parser(settings: LoaderSettings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m dirloader",
        description="Load a directory of units and monitor loader events",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Load a flat directory once
  python -m dirloader plugins

  # Nested unit folders, each with a main.py
  python -m dirloader modules --nested --main-file main.py

  # Hot-reload for a minute
  python -m dirloader plugins --watch --duration 60
        """,
    )

    parser.add_argument(
        "path",
        nargs="?",
        default=settings.path,
        help="Directory to load (default: DIRLOADER_PATH)",
    )
    parser.add_argument(
        "--nested",
        action=argparse.BooleanOptionalAction,
        default=settings.nested,
        help="Each entry is a folder holding a main file",
    )
    parser.add_argument(
        "--main-file",
        default=settings.main_file,
        metavar="NAME",
        help="Main file name inside each unit folder",
    )
    parser.add_argument(
        "--ignore",
        action="append",
        default=list(settings.ignored),
        metavar="NAME",
        help="Entry name or glob pattern to skip (repeatable)",
    )
    parser.add_argument(
        "--instantiate",
        action=argparse.BooleanOptionalAction,
        default=settings.instantiate,
        help="Construct unit classes instead of storing modules",
    )
    parser.add_argument(
        "--watch",
        action=argparse.BooleanOptionalAction,
        default=settings.watch,
        help="Reload units when their files change",
    )
    parser.add_argument(
        "-d",
        "--duration",
        type=float,
        metavar="SECONDS",
        help="Watch for a specific duration (default: infinite)",
    )
    parser.add_argument(
        "--debounce",
        type=float,
        default=settings.debounce_delay,
        metavar="SECONDS",
        help="Coalesce change bursts within this window",
    )
    parser.add_argument(
        "--log-level",
        default=settings.log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help="Logging level",
    )
    return parser


def main(argv: Optional[list[str]] = None, settings: Optional[LoaderSettings] = None) -> int:
    """Main entry point."""
    parser = build_parser(settings or LoaderSettings())
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if not args.path:
        parser.error("a directory is required (argument or DIRLOADER_PATH)")

    try:
        loader: Loader[Any] = Loader(
            path=args.path,
            nested=args.nested,
            main_file=args.main_file,
            ignored=args.ignore,
            auto_load=False,
            classes={"instantiate": args.instantiate},
            watch=args.watch,
            watch_options={"debounce_delay": args.debounce},
        )
    except LoaderError as e:
        logger.error(f"{e}")
        return 2

    try:
        asyncio.run(monitor_async(loader, duration=args.duration))
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
    except LoaderError as e:
        logger.error(f"Error running monitor: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
