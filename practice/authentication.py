"""
Bearer-token authentication for the API.

This module subclasses simplejwt's ``JWTAuthentication`` so that
revoked access tokens (logout) and suspended accounts are refused even
though the token itself is still cryptographically valid.  It lives on
its own to keep DRF's settings import free of view modules.
"""
from __future__ import annotations

from rest_framework import exceptions
from rest_framework_simplejwt.authentication import JWTAuthentication as BaseJWTAuthentication

from practice.services import revocation


class JWTAuthentication(BaseJWTAuthentication):

    def get_validated_token(self, raw_token):
        token = super().get_validated_token(raw_token)
        jti = token.get('jti')
        if jti and revocation.is_token_revoked(jti):
            raise exceptions.AuthenticationFailed('Token revoked', code='TOKEN_REVOKED')
        return token

    def get_user(self, validated_token):
        user = super().get_user(validated_token)
        if revocation.is_user_revoked(user.pk):
            raise exceptions.AuthenticationFailed('Account suspended', code='USER_SUSPENDED')
        return user
