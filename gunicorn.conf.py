"""Gunicorn configuration for the SCIM gateway.

Secrets are read by scim_gateway/config/settings.py from /run/secrets
(Docker secrets) with an environment variable fallback. The post_fork hook
only reports what each worker will see.
"""
import os
from pathlib import Path

bind = os.environ.get("GUNICORN_BIND", "0.0.0.0:8000")
workers = int(os.environ.get("GUNICORN_WORKERS", "2"))
threads = int(os.environ.get("GUNICORN_THREADS", "4"))
timeout = int(os.environ.get("GUNICORN_TIMEOUT", "60"))
wsgi_app = "scim_gateway.flask_app:create_app()"
accesslog = "-"
errorlog = "-"
loglevel = os.environ.get("LOG_LEVEL", "info").lower()


def post_fork(server, worker):
    """Called just after a worker has been forked."""
    demo_mode = os.environ.get("DEMO_MODE", "false").lower() == "true"
    if demo_mode:
        worker.log.warning("DEMO_MODE=true - demo service credentials may be in use")

    secrets_dir = Path("/run/secrets")
    if secrets_dir.exists() and secrets_dir.is_dir():
        secret_files = [path.name for path in secrets_dir.glob("*") if path.is_file()]
        worker.log.info(f"Found {len(secret_files)} secrets in /run/secrets")
        for name in ("idm_service_client_secret", "schema_admin_token"):
            if name not in secret_files:
                worker.log.info(f"Secret '{name}' not mounted; falling back to environment")
    else:
        worker.log.info("No /run/secrets mount; secrets come from the environment")

    if not os.environ.get("SCHEMA_ADMIN_TOKEN") and not (secrets_dir / "schema_admin_token").exists():
        worker.log.info("Schema admin endpoints disabled (no SCHEMA_ADMIN_TOKEN)")
