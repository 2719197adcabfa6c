# ==============================================================================
# fleetpay/cli.py
# ------------------------------------------------------------------------------
# Flask CLI commands: seeding, running a reconciliation from JSON files,
# inspecting a week, and turning an exported CSV/XLSX into a payload.
# ==============================================================================

import json

import click
from flask import current_app


def _read_json(path, what):
    try:
        with open(path, encoding='utf-8') as handle:
            return json.load(handle)
    except (OSError, ValueError) as e:
        raise click.ClickException(f"Could not read {what} from {path}: {e}")


def register_commands(app):

    @app.cli.command("seed")
    def seed():
        """Seeds the database with default values."""
        from fleetpay.seed import seed_data
        seed_data()
        app.logger.info("Database has been seeded with default values.")

    @app.cli.command("reconcile-week")
    @click.argument("week_id")
    @click.argument("payloads_path", type=click.Path(exists=True, dir_okay=False))
    @click.argument("roster_path", type=click.Path(exists=True, dir_okay=False))
    def reconcile_week_command(week_id, payloads_path, roster_path):
        """Reconciles WEEK_ID (YYYY-Www) from a payloads JSON file and a roster JSON file."""
        from fleetpay.reconciliation.errors import ReconciliationError
        from fleetpay.reconciliation.service import reconcile_week

        payloads = _read_json(payloads_path, 'payloads')
        if isinstance(payloads, dict):
            payloads = [payloads]
        roster = _read_json(roster_path, 'roster')
        try:
            result = reconcile_week(week_id, payloads, roster)
        except ReconciliationError as e:
            raise click.ClickException(str(e))
        click.echo(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))

    @app.cli.command("week-status")
    @click.argument("week_id")
    def week_status_command(week_id):
        """Prints the lock status and data sources of WEEK_ID."""
        from fleetpay.reconciliation.errors import PayloadError
        from fleetpay.reconciliation.service import week_overview

        try:
            overview = week_overview(week_id)
        except PayloadError as e:
            raise click.ClickException(str(e))
        click.echo(json.dumps(overview, indent=2, ensure_ascii=False))

    @app.cli.command("load-rows")
    @click.argument("filepath", type=click.Path(exists=True, dir_okay=False))
    @click.option("--platform", required=True, help="Platform the export comes from.")
    @click.option("--week", "week_id", required=True, help="Week the export covers (YYYY-Www).")
    def load_rows_command(filepath, platform, week_id):
        """Reads an exported CSV/XLSX file and prints it as an ingestion payload."""
        from fleetpay.reconciliation.errors import PayloadError
        from fleetpay.reconciliation.validator import load_rows_file
        from fleetpay.reconciliation.weeks import parse_week_id

        try:
            week = parse_week_id(week_id)
        except PayloadError as e:
            raise click.ClickException(str(e))
        rows, errors = load_rows_file(filepath, tuple(current_app.config['ALLOWED_EXTENSIONS']))
        if errors:
            raise click.ClickException("; ".join(errors))
        payload = {
            'platform': platform,
            'weekStart': week.week_start.isoformat(),
            'weekEnd': week.week_end.isoformat(),
            'source': filepath,
            'rows': rows,
        }
        click.echo(json.dumps(payload, indent=2, ensure_ascii=False, default=str))
