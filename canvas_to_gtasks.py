#!/usr/bin/env python3
"""
Canvas To-Do to Google Tasks One-Way Sync Tool

This program mirrors the Canvas LMS to-do items due in the next few days into
a single Google Tasks list. Each task carries a "CID:" line in its notes so
repeated runs update the same task instead of creating duplicates. Tasks are
never deleted and nothing flows back to Canvas.

Requirements:
- pip install requests python-dotenv google-api-python-client google-auth-oauthlib google-auth-httplib2

Setup:
1. Create a Canvas access token (Account > Settings > New Access Token)
2. Create a Google OAuth client of type "Desktop application"
3. Fill in canvas-to-gtasks.conf or the matching environment variables
4. Run once without GOOGLE_REFRESH_TOKEN to get one through the browser
"""

import argparse
import logging
import os
import sys
import time
import traceback
from datetime import datetime
from typing import Callable, Dict, List, Optional

from dotenv import load_dotenv

from canvas_todos import RemoteFetchError, fetch_canvas_todos, filter_by_window, normalize_todos
from confparser import ConfigurationError, SyncConfig, create_default_config, load_sync_config
from gtasks_client import GoogleTasksStore, run_local_oauth
from reconcile import MutationError, SyncSummary, apply_plan, index_tasks_by_cid, reconcile

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = 'canvas-to-gtasks.conf'
DRY_RUN_LIST_ID = 'dry_run_list'


# Logging configuration
class StdoutFilter(logging.Filter):
    """Filter to allow only DEBUG, INFO and WARNING to stdout."""
    def filter(self, record):
        return record.levelno < logging.ERROR


class StderrFilter(logging.Filter):
    """Filter to allow only ERROR and CRITICAL to stderr."""
    def filter(self, record):
        return record.levelno >= logging.ERROR


def setup_logging(verbose=False):
    """Configure dual-stream logging (INFO/WARNING to stdout, ERROR/CRITICAL to stderr)."""
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    root.handlers.clear()

    formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    stdout_handler.addFilter(StdoutFilter())
    stdout_handler.setFormatter(formatter)
    root.addHandler(stdout_handler)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.ERROR)
    stderr_handler.addFilter(StderrFilter())
    stderr_handler.setFormatter(formatter)
    root.addHandler(stderr_handler)

    # googleapiclient logs every discovery fetch at INFO
    logging.getLogger('googleapiclient.discovery_cache').setLevel(logging.ERROR)


class CanvasSyncManager:
    """Manages one-way synchronization from Canvas to-dos to a Google Tasks list."""

    def __init__(self, config: SyncConfig, store=None,
                 fetch_todos: Optional[Callable[[], List[Dict]]] = None,
                 dry_run: bool = False):
        self.config = config
        self.dry_run = dry_run
        self.store = store if store is not None else GoogleTasksStore.from_config(config)
        self.fetch_todos = fetch_todos or self._fetch_from_canvas

        if self.dry_run:
            logger.info("DRY-RUN MODE: No changes will be made")

    def _fetch_from_canvas(self) -> List[Dict]:
        return fetch_canvas_todos(self.config.canvas_base, self.config.canvas_token)

    def resolve_list_id(self) -> str:
        """Find or create the target list; dry runs never create it."""
        name = self.config.tasks_list_name
        if not self.dry_run:
            return self.store.ensure_list_exists(name)

        list_id = self.store.find_list_id(name)
        if list_id is None:
            logger.info(f"[DRY-RUN] Would create new Google Tasks list: '{name}'")
            return DRY_RUN_LIST_ID
        return list_id

    def sync_once(self, now: Optional[datetime] = None) -> SyncSummary:
        """Run one full fetch, reconcile and apply cycle."""
        list_id = self.resolve_list_id()

        todos = normalize_todos(self.fetch_todos())
        scoped = filter_by_window(todos, self.config.window_days, now=now)
        logger.debug(f"{len(scoped)} of {len(todos)} to-do(s) due within {self.config.window_days} days")

        existing = [] if list_id == DRY_RUN_LIST_ID else self.store.list_active_tasks(list_id)
        index = index_tasks_by_cid(existing)
        if index.duplicates:
            logger.warning(f"{len(index.duplicates)} CID(s) appear on more than one task")

        plan = reconcile(scoped, index)
        summary = apply_plan(
            self.store, list_id, plan,
            dry_run=self.dry_run,
            window_days=self.config.window_days,
        )

        logger.info(summary.format())
        return summary

    def run_continuous_sync(self):
        """Run continuous synchronization with the configured interval."""
        interval = self.config.sync_interval_minutes
        logger.info(f"Starting continuous sync with {interval} minute intervals")
        logger.info("Press Ctrl+C to stop")

        try:
            while True:
                try:
                    self.sync_once()
                except Exception as e:
                    logger.error(f"Error during synchronization: {e}")
                logger.info(f"Waiting {interval} minutes until next sync...")
                time.sleep(interval * 60)
        except KeyboardInterrupt:
            logger.info("Synchronization stopped by user")


def main(argv=None):
    """Main function with CLI interface."""
    parser = argparse.ArgumentParser(
        description="One-way sync from Canvas to-do items to a Google Tasks list"
    )
    parser.add_argument(
        '--daemon',
        action='store_true',
        help='Run continuous sync mode (default: run once and exit)'
    )
    parser.add_argument(
        '--config',
        default=DEFAULT_CONFIG_FILE,
        help=f'Config file path (default: {DEFAULT_CONFIG_FILE})'
    )
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable verbose logging'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Show what would be done without making any changes'
    )

    args = parser.parse_args(argv)
    setup_logging(args.verbose)
    load_dotenv()

    if not os.path.exists(args.config):
        create_default_config(args.config)
        logger.warning(f"Created default config file: {args.config}")
        logger.warning("Fill it in or set the matching environment variables")

    try:
        config = load_sync_config(args.config)

        # No refresh token yet: run the consent flow and let the user re-run
        if not config.has_refresh_token:
            refresh_token = run_local_oauth(config)
            logger.info("Add this to your environment and re-run:")
            logger.info(f'GOOGLE_REFRESH_TOKEN="{refresh_token}"')
            return 0

        config.validate_sync_env()

        if args.verbose:
            logger.info(f"Canvas: {config.canvas_base}, token: {'*' * 10}...{config.canvas_token[-4:]}")
            logger.info(f"Target list: '{config.tasks_list_name}', window: {config.window_days} days")

        sync_manager = CanvasSyncManager(config, dry_run=args.dry_run)

        if args.daemon:
            sync_manager.run_continuous_sync()
        else:
            sync_manager.sync_once()

    except ConfigurationError as e:
        logger.error(f"{e}. Please update {args.config} or the environment")
        return 1
    except RemoteFetchError as e:
        logger.error(f"Could not fetch Canvas to-dos: {e}")
        return 1
    except MutationError as e:
        logger.error(f"{e} (stopped after {e.summary.counts()})")
        return 1
    except Exception as e:
        logger.error(f"Sync failed: {e}")
        if args.verbose:
            logger.error(f"Full traceback: {traceback.format_exc()}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
