# cli.py
"""
Flask CLI commands for the enrollment engine.
"""

import click
from flask import current_app
from flask.cli import with_appcontext

from enrollment_engine.extensions import db


@click.command("init-db")
@with_appcontext
def init_db():
    """Create all tables and the default roles."""
    from enrollment_engine.models import Role

    try:
        db.create_all()
        Role.create_default_roles()
        click.echo("Database initialized with default roles.")
    except Exception as e:
        db.session.rollback()
        click.echo(f"Error initializing database: {str(e)}", err=True)
        raise


@click.command("create-user")
@click.option("--name", prompt=True, help="Full name")
@click.option("--email", prompt=True, help="Email address")
@click.option("--registration", default=None, help="External registration number")
@click.option("--role", "roles", multiple=True, default=['participant'],
              type=click.Choice(['participant', 'instructor', 'admin']), help="Role (repeatable)")
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True, help="Password")
@with_appcontext
def create_user(name, email, registration, roles, password):
    """Create a user with one or more roles."""
    from enrollment_engine.models import User
    from enrollment_engine.utils.data_processing import clean_email, clean_text_field

    email = clean_email(email)
    if User.query.filter_by(email=email).first():
        click.echo(f"Error: a user with email {email} already exists", err=True)
        return

    try:
        user = User(name=clean_text_field(name), email=email, registration=registration)
        user.set_password(password)
        for role in roles:
            user.add_role(role)

        db.session.add(user)
        db.session.commit()
        click.echo(f"User '{user.name}' created (id {user.id}, roles: {', '.join(roles)})")
    except Exception as e:
        db.session.rollback()
        click.echo(f"Error creating user: {str(e)}", err=True)
        raise


@click.command("import-class-sessions")
@click.argument("class_id", type=int)
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False))
@with_appcontext
def import_class_sessions(class_id, file_path):
    """
    Replace the sessions of a class with the rows of a CSV or Excel sheet.

    The sheet needs date, start_time and end_time columns.

    Example usage:
        flask import-class-sessions 12 schedule.xlsx
    """
    from enrollment_engine.services.calendar_service import CalendarService

    result = CalendarService.import_sessions(class_id, file_path)
    if not result['success']:
        click.echo(f"Import failed: {result['message']}", err=True)
        raise SystemExit(1)

    click.echo(result['message'])
    for session in result['sessions']:
        click.echo(f"  {session['date']}  {session['start_time']}-{session['end_time']}")


@click.command("eligibility-report")
@click.argument("class_id", type=int)
@with_appcontext
def eligibility_report(class_id):
    """Print attendance ratio and evaluation eligibility of every enrollee of a class."""
    from enrollment_engine.services.enrollment_service import EnrollmentService
    from enrollment_engine.services.eligibility_service import EligibilityService

    roster = EnrollmentService.class_roster(class_id)
    if not roster['success']:
        click.echo(f"Error: {roster['message']}", err=True)
        raise SystemExit(1)

    click.echo(f"{'ID':<6} {'Name':<30} {'Present':<10} {'Ratio':<8} {'Phase':<12} {'Eligible':<8}")
    click.echo("-" * 80)

    eligible_count = 0
    for entry in roster['enrollees']:
        state = EligibilityService.evaluate(entry['participant_id'], class_id)
        eligible_count += state.eligible_for_evaluation
        click.echo(
            f"{entry['participant_id']:<6} {entry['name'][:30]:<30} "
            f"{state.sessions_present}/{state.sessions_total:<8} {state.ratio:<8.2f} {state.phase:<12} "
            f"{'yes' if state.eligible_for_evaluation else 'no':<8}"
        )

    click.echo(f"\n{eligible_count} of {len(roster['enrollees'])} participants eligible "
               f"(threshold {current_app.config.get('ATTENDANCE_THRESHOLD')})")


@click.command("notify-eligible")
@with_appcontext
def notify_eligible():
    """Send evaluation notifications to every participant who became eligible."""
    from enrollment_engine.services.eligibility_service import EligibilityService

    created = EligibilityService.sweep()
    click.echo(f"{created} evaluation notifications created.")


@click.command("generate-class-qr")
@click.argument("class_id", type=int)
@with_appcontext
def generate_class_qr(class_id):
    """Issue today's attendance code for a class and save it as a QR image."""
    from enrollment_engine.services.token_service import TokenService

    result = TokenService.generate_class_qr(class_id)
    if not result['success']:
        click.echo(f"Error: {result['message']}", err=True)
        raise SystemExit(1)

    click.echo(f"QR code saved to {result['qr_path']} (valid for {result['expires_in']} seconds)")


def register_cli_commands(app):
    """Register all CLI commands with the Flask application."""
    app.cli.add_command(init_db)
    app.cli.add_command(create_user)
    app.cli.add_command(import_class_sessions)
    app.cli.add_command(eligibility_report)
    app.cli.add_command(notify_eligible)
    app.cli.add_command(generate_class_qr)
