"""
Authentication views.

Password login hands out a simplejwt access/refresh pair; Google login
goes through the OAuth consent screen and ends in a Django session.
Logout revokes whatever the caller presented: the access token (until
it would have expired), the refresh token (blacklisted) and the
session.  These views live apart from ``practice.authentication`` so
DRF can load the authentication class without importing views.
"""
from __future__ import annotations

import logging

from django.conf import settings
from django.contrib.auth import authenticate, get_user_model, login, logout
from django.contrib.auth.models import update_last_login
from django.http import HttpResponseRedirect
from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.tokens import RefreshToken
from rest_framework_simplejwt.views import TokenRefreshView

from practice.serializers.auth import LoginSerializer, LogoutSerializer
from practice.services import google_oauth, revocation
from practice.services.audit import client_ip, log_action
from practice.throttling import LoginThrottle, OAuthThrottle

logger = logging.getLogger(__name__)

User = get_user_model()


def user_payload(user) -> dict:
    return {
        'id': user.id,
        'username': user.username,
        'email': user.email,
        'name': user.get_full_name() or user.username,
        'role': user.role,
        'tenantId': str(user.tenant_id) if user.tenant_id else None,
        'avatar': user.avatar,
    }


def issue_tokens(user) -> dict:
    refresh = RefreshToken.for_user(user)
    refresh['role'] = user.role
    refresh['tenantId'] = str(user.tenant_id) if user.tenant_id else None
    return {'access': str(refresh.access_token), 'refresh': str(refresh)}


# ---------------------------------------------------------------------
# Username/email + password
# ---------------------------------------------------------------------
@api_view(['POST'])
@permission_classes([AllowAny])
@throttle_classes([LoginThrottle])
def login_view(request):
    s = LoginSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    identifier = s.validated_data['identifier']

    username = identifier
    if '@' in identifier:
        match = User.objects.filter(email__iexact=identifier).first()
        if match:
            username = match.username

    user = authenticate(request, username=username, password=s.validated_data['password'])
    if not user:
        log_action(None, 'LOGIN_FAILED', 'auth', 'DENIED', {'username': identifier, 'ip': client_ip(request)})
        return Response({'ok': False, 'error': {'code': 'invalid_credentials', 'message': 'Invalid credentials'}},
                        status=401)
    if revocation.is_user_revoked(user.pk):
        log_action(user.pk, 'LOGIN_FAILED', 'auth', 'DENIED', {'reason': 'suspended', 'ip': client_ip(request)})
        return Response({'ok': False, 'error': {'code': 'USER_SUSPENDED', 'message': 'Account suspended'}},
                        status=403)

    update_last_login(None, user)
    log_action(user.pk, 'USER_LOGIN', 'auth', 'SUCCESS', {'ip': client_ip(request)})
    return Response({'ok': True, **issue_tokens(user), 'user': user_payload(user)})


class RefreshView(TokenRefreshView):
    """simplejwt refresh with rotation; the old refresh token is blacklisted."""
    throttle_classes = [LoginThrottle]


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def logout_view(request):
    s = LogoutSerializer(data=request.data)
    s.is_valid(raise_exception=True)

    token = request.auth
    if token is not None and hasattr(token, 'get') and token.get('jti'):
        revocation.revoke_token(token['jti'], token['exp'])

    raw_refresh = s.validated_data.get('refresh')
    if raw_refresh:
        try:
            RefreshToken(raw_refresh).blacklist()
        except TokenError as e:
            logger.warning('logout with unusable refresh token for user %s: %s', request.user.pk, e)

    user_id = request.user.pk
    logout(request._request)
    log_action(user_id, 'USER_LOGOUT', 'auth', 'SUCCESS', {'ip': client_ip(request)})
    return Response({'ok': True})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def me_view(request):
    return Response({'ok': True, 'user': user_payload(request.user)})


# ---------------------------------------------------------------------
# Google OAuth
# ---------------------------------------------------------------------
def _callback_uri(request) -> str:
    return request.build_absolute_uri('/auth/google/callback')


def _oauth_failed() -> HttpResponseRedirect:
    return HttpResponseRedirect(f'{settings.FRONTEND_URL}/login?error=oauth_failed')


@api_view(['GET'])
@permission_classes([AllowAny])
@throttle_classes([OAuthThrottle])
def google_login(request):
    try:
        url = google_oauth.authorization_url(_callback_uri(request), request.session)
    except google_oauth.OAuthError as e:
        logger.warning('Google login unavailable: %s', e)
        return _oauth_failed()
    return HttpResponseRedirect(url)


@api_view(['GET'])
@permission_classes([AllowAny])
@throttle_classes([OAuthThrottle])
def google_callback(request):
    try:
        google_oauth.check_state(request.session, request.query_params.get('state'))
        code = request.query_params.get('code')
        if not code:
            raise google_oauth.OAuthError(request.query_params.get('error') or 'missing code')
        user, created = google_oauth.complete_login(code, _callback_uri(request))
    except Exception as e:
        logger.warning('Google OAuth failed: %s', e)
        log_action(None, 'LOGIN_FAILED', 'auth:google', 'DENIED', {'ip': client_ip(request), 'error': str(e)})
        return _oauth_failed()

    login(request._request, user, backend='django.contrib.auth.backends.ModelBackend')
    log_action(user.pk, 'USER_LOGIN', 'auth:google', 'SUCCESS', {'ip': client_ip(request), 'created': created})
    return HttpResponseRedirect(settings.FRONTEND_URL)
