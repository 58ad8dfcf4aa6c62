import pytest

from practice.envcheck import (
    InvalidEnvironment,
    generate_secret,
    validate_environment,
    validate_production,
)


@pytest.fixture
def environ():
    return {
        'ENV': 'dev',
        'FRONTEND_URL': 'http://localhost:3001',
        'GOOGLE_CLIENT_ID': '1234-abc.apps.googleusercontent.com',
        'GOOGLE_CLIENT_SECRET': 'GOCSPX-0123456789abcdefghij',
        'JWT_SECRET': generate_secret(),
        'JWT_REFRESH_SECRET': generate_secret(),
        'SESSION_SECRET': generate_secret(),
    }


def test_complete_environment_is_ok(environ):
    report = validate_environment(environ)
    assert report.ok, report.errors
    # optional variables with defaults are filled in
    assert environ['DB_CONN_MAX_AGE'] == '120'
    assert any('REDIS_URL' in w for w in report.warnings)


def test_missing_required_variables(environ):
    del environ['GOOGLE_CLIENT_SECRET']
    del environ['ENV']
    report = validate_environment(environ)
    assert 'GOOGLE_CLIENT_SECRET is required' in report.errors
    # ENV has a default
    assert environ['ENV'] == 'dev'


def test_enumerated_values(environ):
    environ['ENV'] = 'staging'
    assert not validate_environment(environ).ok


@pytest.mark.parametrize('name,value', [
    ('JWT_SECRET', 'short'),
    ('JWT_SECRET', 'a' * 64),
    ('FRONTEND_URL', 'ftp://example.com'),
    ('GOOGLE_CLIENT_ID', 'not-a-client-id'),
    ('DATABASE_URL', 'mysql://db/doctic'),
    ('REDIS_URL', 'http://cache'),
    ('STRIPE_SECRET_KEY', 'pk_live_123'),
    ('STRIPE_WEBHOOK_SECRET', 'secret'),
    ('DB_CONN_MAX_AGE', '-5'),
])
def test_invalid_values(environ, name, value):
    environ[name] = value
    report = validate_environment(environ)
    assert any(e.startswith(name) for e in report.errors), report.errors


def test_secrets_must_differ(environ):
    environ['JWT_REFRESH_SECRET'] = environ['JWT_SECRET']
    environ['SESSION_SECRET'] = environ['JWT_SECRET']
    errors = validate_environment(environ).errors
    assert 'JWT_REFRESH_SECRET: must differ from JWT_SECRET' in errors
    assert 'SESSION_SECRET: must differ from the JWT secrets' in errors


def test_database_url_required_in_production(environ):
    environ['ENV'] = 'prod'
    assert 'DATABASE_URL is required' in validate_environment(environ).errors


def test_raise_on_error(environ):
    environ['JWT_SECRET'] = 'short'
    with pytest.raises(InvalidEnvironment) as exc:
        validate_environment(environ, raise_on_error=True)
    assert exc.value.errors


def test_production_checks(environ):
    assert validate_production(environ) == []
    environ['ENV'] = 'prod'
    environ['JWT_SECRET'] = generate_secret(20)
    problems = validate_production(environ)
    assert 'FRONTEND_URL must use HTTPS in production' in problems
    assert 'DATABASE_URL required in production' in problems
    assert any(p.startswith('JWT_SECRET should be 64+') for p in problems)

    environ.update(FRONTEND_URL='https://app.doctic.example', DATABASE_URL='postgresql://db/doctic',
                   REDIS_URL='redis://cache:6379/0', SENTRY_DSN='https://key@sentry.example/1',
                   JWT_SECRET=generate_secret(48), JWT_REFRESH_SECRET=generate_secret(48),
                   SESSION_SECRET=generate_secret(48))
    assert validate_production(environ) == []


def test_generate_secret():
    secret = generate_secret()
    assert len(secret) == 64
    assert secret != generate_secret()
