"""
ASGI config for the doctic project.

Wires both HTTP (Django) and WebSocket (Channels).
Settings must be configured before importing any Django-dependent module.
"""
import os

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "doctic.settings")

import django  # noqa: E402
django.setup()  # noqa: E402

from django.core.asgi import get_asgi_application  # noqa: E402
from channels.routing import ProtocolTypeRouter, URLRouter  # noqa: E402
from channels.auth import AuthMiddlewareStack  # noqa: E402
from channels.security.websocket import AllowedHostsOriginValidator  # noqa: E402
from django.urls import path  # noqa: E402

from practice.realtime.consumers import TeleconsultConsumer  # noqa: E402

django_asgi_app = get_asgi_application()

websocket_urlpatterns = [
    path("ws/teleconsult/<int:session_id>/", TeleconsultConsumer.as_asgi()),
]

application = ProtocolTypeRouter({
    "http": django_asgi_app,
    "websocket": AllowedHostsOriginValidator(AuthMiddlewareStack(URLRouter(websocket_urlpatterns))),
})
