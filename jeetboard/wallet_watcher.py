#!/usr/bin/env python3
"""
File watcher for wallet mutations.

Watches the users file and, whenever it is created or updated, reloads it and
invalidates the cached fumble results of every wallet that was added to or
removed from a user. Leaderboard snapshots are not touched; they expire on
their own TTL.

Run via ``jeetboard watch`` or ``python -m jeetboard.wallet_watcher``.
"""

import logging
import sys
import time
from pathlib import Path
from typing import Dict, Optional, Set

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .config import JeetConfig
from .core.errors import UpstreamUnavailable
from .core.service import FumbleService
from .core.user_directory import FileUserDirectory

logger = logging.getLogger(__name__)


def diff_wallets(old: Dict[str, Set[str]], new: Dict[str, Set[str]]) -> Set[str]:
    """Addresses added to or removed from any user between two loads."""
    changed: Set[str] = set()
    for user_id in set(old) | set(new):
        changed |= old.get(user_id, set()) ^ new.get(user_id, set())
    return changed


class WalletChangeHandler(FileSystemEventHandler):
    """Handler for users file changes."""

    def __init__(self, directory: FileUserDirectory, service: FumbleService, debounce_seconds: float = 2.0):
        self.directory = directory
        self.users_path = directory.path.resolve()
        self.service = service
        self.debounce_seconds = debounce_seconds
        self.last_modified = 0.0
        self._known: Dict[str, Set[str]] = {}

    def prime(self):
        """Record the current wallet sets without invalidating anything."""
        try:
            self._known = self.directory.wallet_sets()
        except UpstreamUnavailable as e:
            logger.warning(f"[Watcher] Initial load failed: {e}")
            self._known = {}

    def _is_users_file(self, event) -> bool:
        return not event.is_directory and Path(event.src_path).resolve() == self.users_path

    def on_modified(self, event):
        """Handle file modification events."""
        if not self._is_users_file(event):
            return

        current_time = time.time()
        # Debounce: editors emit several events per save
        if current_time - self.last_modified < self.debounce_seconds:
            return
        self.last_modified = current_time

        if self.debounce_seconds:
            time.sleep(self.debounce_seconds)
        logger.info(f"[Watcher] Detected users file change: {event.src_path}")
        self.apply_reload()

    def on_created(self, event):
        """Handle file creation events."""
        if not self._is_users_file(event):
            return
        logger.info(f"[Watcher] Detected users file creation: {event.src_path}")
        if self.debounce_seconds:
            time.sleep(self.debounce_seconds)
        self.apply_reload()

    def apply_reload(self) -> Set[str]:
        """Reload the users file and invalidate changed wallets; returns their addresses."""
        try:
            self.directory.reload()
            current = self.directory.wallet_sets()
        except UpstreamUnavailable as e:
            logger.error(f"[Watcher] Reload failed, keeping previous wallets: {e}")
            return set()

        changed = diff_wallets(self._known, current)
        for address in sorted(changed):
            self.service.invalidate_wallet(address)
        self._known = current

        if changed:
            logger.info(f"[Watcher] Invalidated {len(changed)} changed wallets")
        return changed


def run_watcher(users_file: Optional[str] = None, service: Optional[FumbleService] = None):
    """Block watching the users file until interrupted."""
    users_path = Path(users_file or JeetConfig.get_users_file()).resolve()
    watch_dir = users_path.parent
    if not watch_dir.exists():
        print(f"Error: Watch directory does not exist: {watch_dir}")
        sys.exit(1)

    directory = FileUserDirectory(users_path)
    handler = WalletChangeHandler(directory, service or FumbleService.from_config())
    handler.prime()

    print("[Watcher] Starting users file watcher...")
    print(f"  Watch directory: {watch_dir}")
    print(f"  Users file: {users_path}")
    print("")

    observer = Observer()
    observer.schedule(handler, str(watch_dir), recursive=False)
    observer.start()

    try:
        print("[Watcher] Watching for wallet changes... (Press Ctrl+C to stop)")
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        print("\n[Watcher] Stopping watcher...")
        observer.stop()

    observer.join()
    print("[Watcher] Watcher stopped")


def main():
    """Main entry point for file watcher."""
    import argparse

    parser = argparse.ArgumentParser(description="Watch the users file and invalidate changed wallets")
    parser.add_argument(
        "--users-file",
        type=str,
        default=JeetConfig.get_users_file(),
        help="Path to the JSON users file to watch",
    )
    args = parser.parse_args()

    logging.basicConfig(level=JeetConfig.get_log_level(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    run_watcher(args.users_file)


if __name__ == "__main__":
    main()
