from rest_framework.throttling import SimpleRateThrottle


class ClientIPThrottle(SimpleRateThrottle):
    """Rate limit per client address, authenticated or not."""

    def get_cache_key(self, request, view):
        return self.cache_format % {'scope': self.scope, 'ident': self.get_ident(request)}


class LoginThrottle(ClientIPThrottle):
    scope = 'login'


class OAuthThrottle(ClientIPThrottle):
    scope = 'oauth'
