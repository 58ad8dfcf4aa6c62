import os
import sys

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError
from django.db import connections

from practice.envcheck import validate_environment, validate_production


class Command(BaseCommand):
    help = "Deployment diagnostic: Python version, frontend build, environment and database connectivity."

    def handle(self, *args, **opts):
        has_error = False

        self.stdout.write(f"Python {sys.version.split()[0]}")
        if sys.version_info < (3, 10):
            self.stderr.write(self.style.ERROR("Python 3.10+ required"))
            has_error = True

        index = settings.FRONTEND_DIST / "index.html"
        if not settings.FRONTEND_DIST.is_dir():
            self.stderr.write(self.style.ERROR(f"frontend build missing: {settings.FRONTEND_DIST}"))
            has_error = True
        elif not index.is_file():
            self.stderr.write(self.style.ERROR(f"{index} missing"))
            has_error = True
        else:
            self.stdout.write(self.style.SUCCESS("frontend build present"))

        report = validate_environment(os.environ)
        for warning in report.warnings:
            self.stdout.write(self.style.WARNING(warning))
        for error in report.errors:
            self.stderr.write(self.style.ERROR(error))
        if not report.ok:
            has_error = True
        for problem in validate_production(os.environ):
            self.stdout.write(self.style.WARNING(problem))

        if not os.environ.get("DATABASE_URL"):
            self.stdout.write(self.style.WARNING("DATABASE_URL not set, using the local SQLite database"))
        try:
            connections["default"].ensure_connection()
            count = get_user_model().objects.count()
            self.stdout.write(self.style.SUCCESS(f"database reachable, {count} user(s)"))
        except Exception as e:
            self.stderr.write(self.style.ERROR(f"database connection failed: {e}"))
            has_error = True

        if has_error:
            raise CommandError("deployment check FAILED")
        self.stdout.write(self.style.SUCCESS("all systems operational"))
