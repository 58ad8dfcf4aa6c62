"""
Declarative validation of the process environment.

``ENV_VARS`` lists every variable the backend reads at startup together
with its constraints.  ``validate_environment`` checks a mapping (by
default ``os.environ``) against it, fills in defaults for missing
optional variables and returns an :class:`EnvReport`.  It is used by the
``check_deploy`` management command and can be run before the server
starts.
"""
from __future__ import annotations

import logging
import os
import secrets
from dataclasses import dataclass, field
from typing import Callable, Dict, List, MutableMapping, Optional

logger = logging.getLogger(__name__)


class InvalidEnvironment(EnvironmentError):
    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__(f'{len(errors)} invalid environment variable(s)')


@dataclass
class EnvVar:
    required: bool = False
    default: Optional[str] = None
    values: Optional[tuple] = None
    min_length: int = 0
    # (value, environ) -> error message or None
    validate: Optional[Callable[[str, MutableMapping[str, str]], Optional[str]]] = None


@dataclass
class EnvReport:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def _url_scheme(*schemes):
    def check(value, environ):
        if not value.startswith(schemes):
            return f"must start with {' or '.join(schemes)}"
        return None
    return check


def _google_client_id(value, environ):
    if not value.endswith('.apps.googleusercontent.com'):
        return 'must be a Google OAuth client id (*.apps.googleusercontent.com)'
    return None


def _jwt_secret(value, environ):
    if len(set(value)) < 10:
        return 'lacks entropy, generate it with generate_secret()'
    return None


def _refresh_secret(value, environ):
    if value == environ.get('JWT_SECRET'):
        return 'must differ from JWT_SECRET'
    return None


def _session_secret(value, environ):
    if value in (environ.get('JWT_SECRET'), environ.get('JWT_REFRESH_SECRET')):
        return 'must differ from the JWT secrets'
    return None


def _positive_int(value, environ):
    if not value.isdigit() or int(value) <= 0:
        return 'must be a positive integer'
    return None


ENV_VARS: Dict[str, EnvVar] = {
    'ENV': EnvVar(required=True, values=('dev', 'test', 'prod'), default='dev'),
    'FRONTEND_URL': EnvVar(required=True, default='http://localhost:3001',
                           validate=_url_scheme('http://', 'https://')),
    'GOOGLE_CLIENT_ID': EnvVar(required=True, validate=_google_client_id),
    'GOOGLE_CLIENT_SECRET': EnvVar(required=True, min_length=20),
    'JWT_SECRET': EnvVar(required=True, min_length=32, validate=_jwt_secret),
    'JWT_REFRESH_SECRET': EnvVar(required=True, min_length=32, validate=_refresh_secret),
    'SESSION_SECRET': EnvVar(required=True, min_length=32, validate=_session_secret),
    'DATABASE_URL': EnvVar(validate=_url_scheme('postgresql://', 'postgres://')),
    'REDIS_URL': EnvVar(validate=_url_scheme('redis://', 'rediss://')),
    'DB_CONN_MAX_AGE': EnvVar(default='120', validate=_positive_int),
    'STRIPE_SECRET_KEY': EnvVar(validate=_url_scheme('sk_')),
    'STRIPE_WEBHOOK_SECRET': EnvVar(validate=_url_scheme('whsec_')),
}

PRODUCTION_SECRETS = ('JWT_SECRET', 'JWT_REFRESH_SECRET', 'SESSION_SECRET')


def validate_environment(environ: Optional[MutableMapping[str, str]] = None,
                         raise_on_error: bool = False) -> EnvReport:
    environ = os.environ if environ is None else environ
    report = EnvReport()
    required_db = environ.get('ENV') == 'prod'

    for name, var in ENV_VARS.items():
        value = environ.get(name, '')
        if not value:
            if var.required or (name == 'DATABASE_URL' and required_db):
                if var.default is not None:
                    environ[name] = var.default
                    report.warnings.append(f'{name} missing, using default {var.default!r}')
                else:
                    report.errors.append(f'{name} is required')
            elif var.default is not None:
                environ[name] = var.default
                report.warnings.append(f'{name} missing, using default {var.default!r}')
            else:
                report.warnings.append(f'{name} not set (optional)')
            continue

        if var.values and value not in var.values:
            report.errors.append(f"{name}={value!r} invalid, expected one of: {', '.join(var.values)}")
        if var.min_length and len(value) < var.min_length:
            report.errors.append(f'{name} too short (min {var.min_length} characters)')
        if var.validate:
            problem = var.validate(value, environ)
            if problem:
                report.errors.append(f'{name}: {problem}')

    for warning in report.warnings:
        logger.warning(warning)
    for error in report.errors:
        logger.error(error)
    if report.errors and raise_on_error:
        raise InvalidEnvironment(report.errors)
    return report


def validate_production(environ: Optional[MutableMapping[str, str]] = None) -> List[str]:
    """Problems with a production deployment; empty outside ``ENV=prod``."""
    environ = os.environ if environ is None else environ
    if environ.get('ENV') != 'prod':
        return []
    problems = []
    if not environ.get('FRONTEND_URL', '').startswith('https://'):
        problems.append('FRONTEND_URL must use HTTPS in production')
    for name in PRODUCTION_SECRETS:
        value = environ.get(name, '')
        if value and len(value) < 64:
            problems.append(f'{name} should be 64+ characters in production')
    if not environ.get('REDIS_URL'):
        problems.append('REDIS_URL recommended in production (shared cache, sessions and revocations)')
    if not environ.get('DATABASE_URL'):
        problems.append('DATABASE_URL required in production')
    if not environ.get('SENTRY_DSN'):
        problems.append('SENTRY_DSN not set, errors will not be reported')
    return problems


def generate_secret(nbytes: int = 32) -> str:
    return secrets.token_hex(nbytes)
