from __future__ import annotations

import os
import threading

import click
from flask import Flask
from flask.cli import AppGroup

from ..extensions import db
from .service import SweepResult, TrashService


class TrashPurgeScheduler:
    def __init__(self, app: Flask, interval_seconds: int) -> None:
        self._app = app
        self._interval_seconds = max(60, int(interval_seconds))
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="trash-purge-scheduler", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()

    def _run(self) -> None:
        while not self._stop_event.is_set():
            with self._app.app_context():
                try:
                    run_purge_sweep()
                except Exception as error:  # pragma: no cover - keeps the thread alive
                    self._app.logger.warning("trash purge sweep failed: %s", error)
                    db.session.rollback()
                finally:
                    db.session.remove()
            self._stop_event.wait(self._interval_seconds)


def run_purge_sweep() -> SweepResult:
    return TrashService.from_app().purge_expired()


def should_start_purge_scheduler(app: Flask) -> bool:
    if app.config.get("TESTING") or not app.config.get("PURGE_SCHEDULER_ENABLED", True):
        return False

    if app.debug:
        return os.environ.get("WERKZEUG_RUN_MAIN") == "true"
    return True


def start_purge_scheduler(app: Flask) -> TrashPurgeScheduler | None:
    if not should_start_purge_scheduler(app):
        return None
    scheduler = TrashPurgeScheduler(app=app, interval_seconds=int(app.config["PURGE_SWEEP_INTERVAL_SECONDS"]))
    scheduler.start()
    return scheduler


trash_cli = AppGroup("trash", help="Trash maintenance commands.")


@trash_cli.command("purge")
def purge_command() -> None:
    """Purge trashed items whose retention window has passed."""
    result = run_purge_sweep()
    click.echo(f"purged files={result.purged_files} folders={result.purged_folders} failed={len(result.failed)}")
    for item in result.failed:
        click.echo(f"  retry pending: {item}")
