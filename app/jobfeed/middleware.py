"""
WebSocket authentication middleware.

Validates a simplejwt access token during the handshake and attaches the
user to scope["user"]. Connections without a valid token get AnonymousUser;
the consumer rejects those with close code 4001.

Token Passing Methods:
    1. Query string: ws://host/ws/jobs/?token=<jwt_token>
    2. Subprotocol: Sec-WebSocket-Protocol: jwt, <jwt_token>

Usage in config/asgi.py:
    from jobfeed.middleware import JWTAuthMiddleware

    application = ProtocolTypeRouter({
        "websocket": JWTAuthMiddleware(
            URLRouter(websocket_urlpatterns)
        ),
    })
"""

from __future__ import annotations

import logging
from urllib.parse import parse_qs

from channels.db import database_sync_to_async
from channels.middleware import BaseMiddleware
from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.tokens import AccessToken

logger = logging.getLogger(__name__)

JWT_SUBPROTOCOL = "jwt"


def token_from_query(scope) -> str | None:
    query_string = scope.get("query_string", b"").decode()
    tokens = parse_qs(query_string).get("token", [])
    return tokens[0] if tokens else None


def token_from_subprotocol(scope) -> str | None:
    """Expects: Sec-WebSocket-Protocol: jwt, <token>"""
    subprotocols = scope.get("subprotocols", [])
    if len(subprotocols) >= 2 and subprotocols[0] == JWT_SUBPROTOCOL:
        return subprotocols[1]
    return None


@database_sync_to_async
def get_user_for_token(token: str):
    """Return the active user the token belongs to, or AnonymousUser."""
    User = get_user_model()

    try:
        user_id = AccessToken(token)["user_id"]
        user = User.objects.get(pk=user_id)
    except TokenError as e:
        logger.warning(f"Invalid JWT token on WebSocket handshake: {e}")
        return AnonymousUser()
    except (KeyError, User.DoesNotExist):
        logger.warning("WebSocket token does not match a user")
        return AnonymousUser()

    if not user.is_active:
        logger.warning(f"Inactive user attempted WebSocket connection: {user_id}")
        return AnonymousUser()
    return user


class JWTAuthMiddleware(BaseMiddleware):
    """
    JWT authentication middleware for WebSocket connections.

    Token sources, in order of precedence: the ``token`` query parameter,
    then the ``jwt, <token>`` subprotocol pair.
    """

    async def __call__(self, scope, receive, send):
        scope = dict(scope)
        token = token_from_query(scope) or token_from_subprotocol(scope)

        if token:
            scope["user"] = await get_user_for_token(token)
        else:
            scope["user"] = AnonymousUser()

        return await super().__call__(scope, receive, send)
