import json

from asgiref.sync import sync_to_async
from channels.generic.websocket import AsyncWebsocketConsumer
from django.contrib.auth.models import AnonymousUser

from practice.models import TeleconsultSession
from practice.permissions import role_allows
from practice.services.clinical import teleconsult_group, teleconsult_scope
from practice.services.tenancy import resolve_tenant, tenant_db_alias

RELAYED_TYPES = ('signal', 'chat')
MAX_CHAT_LENGTH = 2000


async def _ws_error(ws, code: int, message: str, *, close: bool = False):
    """Error frame; 4xxx for client errors, 5xxx for server errors."""
    payload = {"type": "error", "code": code, "message": message}
    try:
        await ws.send(json.dumps(payload))
    finally:
        if close:
            await ws.close(code=code)


def _load_session(user, session_id):
    """The session if ``user`` may join it, else ``None``."""
    if not (user and user.is_authenticated) or not role_allows(getattr(user, 'role', ''), 'teleconsult:view'):
        return None
    tenant = resolve_tenant(user)
    if tenant is None:
        return None
    return TeleconsultSession.objects.using(tenant_db_alias(tenant)).filter(
        pk=session_id, tenant_id=str(tenant.id), **teleconsult_scope(user),
    ).first()


class TeleconsultConsumer(AsyncWebsocketConsumer):
    """Signalling and chat room of one teleconsultation session."""

    async def connect(self):
        try:
            self.session_id = int(self.scope["url_route"]["kwargs"].get("session_id"))
        except (TypeError, ValueError):
            await self.close(code=4001)
            return

        user = self.scope.get("user") or AnonymousUser()
        if not user.is_authenticated:
            await self.close(code=4003)
            return

        session = await sync_to_async(_load_session)(user, self.session_id)
        if session is None:
            await self.close(code=4004)
            return
        if session.status in (TeleconsultSession.STATUS_COMPLETED, TeleconsultSession.STATUS_CANCELLED):
            await self.close(code=4009)
            return

        self.user_id = user.pk
        self.group_name = teleconsult_group(self.session_id)
        await self.channel_layer.group_add(self.group_name, self.channel_name)
        await self.accept()
        await self.send(json.dumps({"type": "welcome", "sessionId": self.session_id, "status": session.status}))

    async def disconnect(self, close_code):
        if hasattr(self, "group_name"):
            await self.channel_layer.group_discard(self.group_name, self.channel_name)

    async def receive(self, text_data=None, bytes_data=None):
        if not text_data:
            return
        try:
            data = json.loads(text_data)
        except ValueError:
            await _ws_error(self, 4000, "invalid_json")
            return
        if not isinstance(data, dict):
            await _ws_error(self, 4001, "invalid_payload")
            return

        kind = data.get("type")
        if kind not in RELAYED_TYPES:
            await _ws_error(self, 4002, "unsupported_type")
            return

        if kind == "chat":
            content = data.get("content", "")
            if not isinstance(content, str) or not content.strip():
                await _ws_error(self, 4004, "empty_message")
                return
            if len(content) > MAX_CHAT_LENGTH:
                await _ws_error(self, 4005, "message_too_long")
                return
            payload = {"type": "chat", "content": content.strip()}
        else:
            payload = {"type": "signal", "data": data.get("data")}

        payload["from"] = self.user_id
        await self.channel_layer.group_send(self.group_name, {
            "type": "teleconsult.relay",
            "sender": self.channel_name,
            "payload": payload,
        })

    async def teleconsult_relay(self, event):
        if event.get("sender") == self.channel_name:
            return
        await self.send(json.dumps(event.get("payload", {})))

    async def teleconsult_status(self, event):
        # {"type": "teleconsult.status", "sessionId": ..., "status": ..., "ts": ...}
        await self.send(json.dumps(event))
        if event.get("status") in (TeleconsultSession.STATUS_COMPLETED, TeleconsultSession.STATUS_CANCELLED):
            await self.close(code=4009)
