"""Flask CLI commands: schema setup and the notification sweep."""
from __future__ import annotations

import time

import click
from flask import Flask, current_app
from flask.cli import with_appcontext
from sqlalchemy.exc import SQLAlchemyError

from .extensions import db
from .services.notifications import send_pending_notifications


@click.command("init-db")
@with_appcontext
def init_db_command() -> None:
    """Create all database tables."""
    db.create_all()
    click.echo("Database tables initialized")


@click.command("send-reminders")
@with_appcontext
def send_reminders_command() -> None:
    """Run one notification sweep."""
    summary = send_pending_notifications()
    click.echo(
        "Processed {processed}: {sent} sent, {failed} failed, {skipped} skipped".format(**summary)
    )


@click.command("sweep-notifications")
@click.option("--interval", type=int, default=None, help="Seconds between sweeps.")
@click.option("--iterations", type=int, default=0, help="Stop after N sweeps (0 runs forever).")
@with_appcontext
def sweep_notifications_command(interval: int | None, iterations: int) -> None:
    """Run the notification sweep on a fixed interval."""
    interval = interval or current_app.config.get("NOTIFICATION_SWEEP_INTERVAL_SECONDS", 60)
    completed = 0
    while True:
        try:
            send_pending_notifications()
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.exception("Notification sweep failed", exc_info=exc)
        completed += 1
        if iterations and completed >= iterations:
            break
        time.sleep(interval)


def register_commands(app: Flask) -> None:
    app.cli.add_command(init_db_command)
    app.cli.add_command(send_reminders_command)
    app.cli.add_command(sweep_notifications_command)
