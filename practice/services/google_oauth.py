import logging
import secrets
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import urlencode

import requests
from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils import timezone

logger = logging.getLogger(__name__)

User = get_user_model()

AUTHORIZE_URL = 'https://accounts.google.com/o/oauth2/v2/auth'
TOKEN_URL = 'https://oauth2.googleapis.com/token'
USERINFO_URL = 'https://openidconnect.googleapis.com/v1/userinfo'
SESSION_STATE_KEY = 'google_oauth_state'


class OAuthError(RuntimeError):
    pass


@dataclass
class GoogleProfile:
    google_id: str
    email: str
    given_name: str = ''
    family_name: str = ''
    picture: str = ''
    email_verified: bool = False


def enabled() -> bool:
    return bool(settings.GOOGLE_CLIENT_ID and settings.GOOGLE_CLIENT_SECRET)


def authorization_url(redirect_uri: str, session) -> str:
    """Consent page URL; the anti-forgery ``state`` is stored in ``session``."""
    if not enabled():
        raise OAuthError('Google login not enabled on server')
    state = secrets.token_urlsafe(24)
    session[SESSION_STATE_KEY] = state
    params = {
        'client_id': settings.GOOGLE_CLIENT_ID,
        'redirect_uri': redirect_uri,
        'response_type': 'code',
        'scope': 'openid email profile',
        'state': state,
        'access_type': 'online',
        'prompt': 'select_account',
    }
    return f'{AUTHORIZE_URL}?{urlencode(params)}'


def check_state(session, state: Optional[str]) -> None:
    expected = session.pop(SESSION_STATE_KEY, None)
    if not expected or not state or not secrets.compare_digest(expected, state):
        raise OAuthError('OAuth state mismatch')


def exchange_code(code: str, redirect_uri: str) -> str:
    """Trade an authorization code for an access token."""
    r = requests.post(TOKEN_URL, data={
        'code': code,
        'client_id': settings.GOOGLE_CLIENT_ID,
        'client_secret': settings.GOOGLE_CLIENT_SECRET,
        'redirect_uri': redirect_uri,
        'grant_type': 'authorization_code',
    }, timeout=settings.GOOGLE_TIMEOUT)
    r.raise_for_status()
    data = r.json()
    if 'error' in data:
        raise OAuthError(f"Google error {data.get('error')}: {data.get('error_description')}")
    token = data.get('access_token')
    if not token:
        raise OAuthError('Invalid response from Google: missing access_token')
    return token


def fetch_profile(access_token: str) -> GoogleProfile:
    r = requests.get(USERINFO_URL, headers={'Authorization': f'Bearer {access_token}'},
                     timeout=settings.GOOGLE_TIMEOUT)
    r.raise_for_status()
    data = r.json()
    if not data.get('sub') or not data.get('email'):
        raise OAuthError('Invalid response from Google: missing sub/email')
    return GoogleProfile(
        google_id=data['sub'],
        email=data['email'].lower(),
        given_name=data.get('given_name', ''),
        family_name=data.get('family_name', ''),
        picture=data.get('picture', ''),
        email_verified=bool(data.get('email_verified')),
    )


@transaction.atomic
def find_or_create_user(profile: GoogleProfile) -> Tuple[User, bool]:
    """Google id first, then an account with the same email, else a new user."""
    now = timezone.now()
    user = User.objects.filter(google_id=profile.google_id).first()
    if user:
        user.last_login = now
        user.save(update_fields=['last_login'])
        return user, False

    user = User.objects.filter(email__iexact=profile.email).first()
    if user:
        user.google_id = profile.google_id
        user.avatar = profile.picture or user.avatar
        user.last_login = now
        user.save(update_fields=['google_id', 'avatar', 'last_login'])
        logger.info('linked Google account to existing user %s', user.pk)
        return user, False

    username = profile.email
    if User.objects.filter(username=username).exists():
        username = f'{profile.email.split("@")[0]}-{secrets.token_hex(3)}'
    user = User(
        username=username,
        email=profile.email,
        first_name=profile.given_name,
        last_name=profile.family_name,
        google_id=profile.google_id,
        avatar=profile.picture,
        role=settings.GOOGLE_DEFAULT_ROLE,
        email_verified=True,
        last_login=now,
    )
    user.set_unusable_password()
    user.save()
    logger.info('created user %s from Google login', user.pk)
    return user, True


def complete_login(code: str, redirect_uri: str) -> Tuple[User, bool]:
    token = exchange_code(code, redirect_uri)
    return find_or_create_user(fetch_profile(token))
