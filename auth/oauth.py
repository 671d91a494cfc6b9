"""
auth/oauth.py -- Authlib OAuth bridge for third-party logins.

A closed set of provider variants shares one interface:

  initiate(request)               -- redirect the browser to the provider's
                                     authorization endpoint.
  handle_callback(request, store) -- exchange the grant, extract the provider's
                                     stable subject id and find-or-create the
                                     local user.

Only providers with both client id and secret configured are registered. The
login template renders buttons from OAuthBridge.enabled_providers().

Security notes:
  OAuth state parameter (CSRF protection) is handled by authlib via Starlette
  SessionMiddleware. The state is stored in the signed session cookie before
  the redirect and verified in the callback; a mismatch raises OAuthError.
  A bad id_token (nonce, expiry, signature) raises a JoseError. Both are
  AuthlibBaseError subclasses and become OAuthFailed.

  Callback URLs are fixed ({PUBLIC_BASE_URL}/auth/{provider}/secrets) and must
  match what is registered with the provider. They are never derived from the
  request Host header.

Supported providers:
  google   -- OIDC discovery; subject is the `sub` claim.
  facebook -- static Graph API endpoints; subject is the profile `id`.

Layer rule: no imports from api/ or web/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging

import httpx
from authlib.common.errors import AuthlibBaseError
from authlib.integrations.starlette_client import OAuth
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import Response

from auth.errors import OAuthFailed, UpstreamFailure
from auth.models import User
from auth.store import UserStore
from core.config import Settings

logger = logging.getLogger("secrets_app.auth.oauth")

_FACEBOOK_GRAPH = "https://graph.facebook.com/v19.0/"


class OAuthProvider:
    """Base class for one provider's authorization-code handshake."""

    name: str = ""
    label: str = ""

    def __init__(self, registry: OAuth, callback_url: str) -> None:
        self.registry = registry
        self.callback_url = callback_url

    @staticmethod
    def credentials(settings: Settings) -> tuple[str, str]:
        raise NotImplementedError

    @staticmethod
    def client_options() -> dict:
        """Endpoint and scope keywords passed to OAuth.register()."""
        raise NotImplementedError

    async def fetch_subject(self, client, token: dict) -> str | None:
        """Return the provider's stable user id for this token."""
        raise NotImplementedError

    @property
    def client(self):
        return self.registry.create_client(self.name)

    async def initiate(self, request: Request) -> Response:
        return await self.client.authorize_redirect(request, self.callback_url)

    async def handle_callback(self, request: Request, store: UserStore) -> User:
        """Finish the handshake and return the local user for this identity.

        Raises OAuthFailed when the user denied access, the state check or code
        exchange failed, or the profile has no subject id. Raises
        UpstreamFailure when the provider could not be reached. No user record
        is touched in either case.
        """
        denial = request.query_params.get("error")
        if denial:
            raise OAuthFailed(self.name, denial)

        client = self.client
        try:
            token = await client.authorize_access_token(request)
            subject = await self.fetch_subject(client, token)
        except AuthlibBaseError as exc:
            # OAuthError from the exchange and JoseError from id_token validation.
            raise OAuthFailed(self.name, exc.error or "token exchange failed") from exc
        except httpx.HTTPError as exc:
            raise UpstreamFailure(f"{self.name} OAuth request failed: {exc}") from exc

        if not subject:
            raise OAuthFailed(self.name, "profile has no subject id")
        return await run_in_threadpool(store.find_or_create, self.name, str(subject))


class GoogleProvider(OAuthProvider):
    name = "google"
    label = "Google"

    @staticmethod
    def credentials(settings: Settings) -> tuple[str, str]:
        return settings.google_client_id, settings.google_client_secret

    @staticmethod
    def client_options() -> dict:
        return {
            "server_metadata_url": "https://accounts.google.com/.well-known/openid-configuration",
            "client_kwargs": {"scope": "openid profile"},
        }

    async def fetch_subject(self, client, token: dict) -> str | None:
        # authlib parses the id_token into token["userinfo"] when scope has openid.
        userinfo = token.get("userinfo")
        if not userinfo:
            userinfo = await client.userinfo(token=token)
        return userinfo.get("sub")


class FacebookProvider(OAuthProvider):
    name = "facebook"
    label = "Facebook"

    @staticmethod
    def credentials(settings: Settings) -> tuple[str, str]:
        return settings.facebook_app_id, settings.facebook_app_secret

    @staticmethod
    def client_options() -> dict:
        return {
            "authorize_url": "https://www.facebook.com/v19.0/dialog/oauth",
            "access_token_url": _FACEBOOK_GRAPH + "oauth/access_token",  # noqa: S106 -- URL, not a password
            "api_base_url": _FACEBOOK_GRAPH,
            "client_kwargs": {"scope": "public_profile", "token_endpoint_auth_method": "client_secret_post"},
        }

    async def fetch_subject(self, client, token: dict) -> str | None:
        resp = await client.get("me", token=token, params={"fields": "id"})
        resp.raise_for_status()
        return resp.json().get("id")


PROVIDER_CLASSES: tuple[type[OAuthProvider], ...] = (GoogleProvider, FacebookProvider)


class OAuthBridge:
    """The configured providers, keyed by their path tag.

    Usage:
        bridge = OAuthBridge(settings)
        provider = bridge.get("google")   # None when not configured
    """

    def __init__(self, settings: Settings, registry: OAuth | None = None) -> None:
        self.registry = registry if registry is not None else OAuth()
        self.providers: dict[str, OAuthProvider] = {}
        for cls in PROVIDER_CLASSES:
            client_id, client_secret = cls.credentials(settings)
            if not (client_id and client_secret):
                continue
            self.registry.register(
                name=cls.name,
                client_id=client_id,
                client_secret=client_secret,
                **cls.client_options(),
            )
            self.providers[cls.name] = cls(self.registry, settings.oauth_callback_url(cls.name))
            logger.info("%s OAuth provider registered", cls.label)

    def get(self, name: str) -> OAuthProvider | None:
        return self.providers.get(name)

    def enabled_providers(self) -> list[dict]:
        """Return [{"name": ..., "label": ...}] for every registered provider."""
        return [{"name": p.name, "label": p.label} for p in self.providers.values()]
