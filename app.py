import logging

from flask import Flask
from config import Config
from routes import health_bp, central_auth_bp, tenant_auth_bp, audit_bp

from models import db
from flask_migrate import Migrate
from werkzeug.middleware.proxy_fix import ProxyFix
from security import build_services
from security.errors import AuthError
from security.middleware import add_rate_limit_headers, screen_request
from stores import sql_stores
from utils.responses import auth_error_response


def configure_logging(app):
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logging.getLogger().setLevel(level)
    app.logger.setLevel(level)


def create_app(config_object=Config, stores=None):
    app = Flask(__name__)
    app.config.from_object(config_object)
    configure_logging(app)

    # Only trust X-Forwarded-For for the configured number of proxies
    if app.config.get("PROXY_FIX_X_FOR"):
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=app.config["PROXY_FIX_X_FOR"])

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(central_auth_bp)
    app.register_blueprint(tenant_auth_bp)
    app.register_blueprint(audit_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    # Security core, wired against the database unless told otherwise
    app.extensions["security"] = build_services(app.config, stores or sql_stores())

    app.before_request(screen_request)
    app.after_request(add_rate_limit_headers)

    @app.errorhandler(AuthError)
    def _auth_error(err):
        # mostly StoreUnavailable escaping a before_request hook
        return auth_error_response(err)

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    return app

#-------------------------
import click
from security.context import AuthContext


def register_cli(app):
    @app.cli.command("create-central-admin")
    @click.argument("email")
    @click.option("--role", default="super_admin", type=click.Choice(["super_admin", "admin"]))
    @click.password_option()
    def create_central_admin(email, role, password):
        """Create a central admin account (bootstrap)."""
        svc = app.extensions["security"]
        result = svc.auth.register(email.strip().lower(), password, AuthContext.central(),
                                   role=role, issue_token=False)
        if not result.success:
            raise click.ClickException(result.error.message)
        click.echo(f"{result.account.email} created as {role}")

    @app.cli.command("prune-login-attempts")
    @click.option("--days", type=int, default=None, help="Keep this many days of attempts.")
    def prune_login_attempts(days):
        """Delete login attempts older than the retention window."""
        deleted = app.extensions["security"].tracker.prune(days)
        click.echo(f"Deleted {deleted} login attempts")

    @app.cli.command("login-stats")
    @click.option("--days", type=int, default=7)
    def login_stats(days):
        """Print login attempt statistics."""
        tracker = app.extensions["security"].tracker
        for key, value in tracker.statistics(days).items():
            click.echo(f"{key}: {value}")
        for row in tracker.top_failed_ips(days=days):
            click.echo(f"  {row['ip_address']}: {row['failed_count']} failed")

    @app.cli.command("rate-limit-status")
    @click.argument("keys", nargs=-1, required=True)
    def rate_limit_status(keys):
        """Show hits and seconds left for rate limit keys (e.g. auth:global)."""
        for key, state in app.extensions["security"].limiter.status(keys).items():
            click.echo(f"{key}: {state['attempts']} attempts, {state['remaining_time']}s remaining")

    @app.cli.command("clear-rate-limit")
    @click.argument("keys", nargs=-1)
    @click.option("--forgive", "subjects", multiple=True,
                  help="Also drop progressive violations for SUBJECT (e.g. account:7).")
    def clear_rate_limit(keys, subjects):
        """Reset rate limit counters and, optionally, violation levels."""
        limiter = app.extensions["security"].limiter
        for key in keys:
            limiter.clear(key)
            click.echo(f"Cleared {key}")
        for subject in subjects:
            limiter.forgive(subject)
            click.echo(f"Forgave {subject}")

#-------------------------


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
