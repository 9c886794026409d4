"""OAuth2 client-credentials token endpoint."""

import logging
import threading
import time

import requests
from pydantic import SecretStr

from ..config import Config
from ..errors import ApiError, AuthenticationFailed, Transient
from ..reconcile.models import TenantCredentials, TenantToken

logger = logging.getLogger(__name__)


class OAuthTokenClient:
    """Requests access tokens from ``{api_url}/oauth/token``.

    ``request_token`` is blocking and is meant to be handed to
    ``TokenCache`` as its fetch function.
    """

    def __init__(self, config: Config, clock=time.time):
        self.config = config
        self.token_url = f"{config.api_url.rstrip('/')}/oauth/token"
        self._clock = clock
        self._thread_local = threading.local()

    def _get_session(self) -> requests.Session:
        if not hasattr(self._thread_local, "session"):
            session = requests.Session()
            session.verify = not self.config.insecure
            self._thread_local.session = session
        return self._thread_local.session

    def request_token(
        self, tenant: str, credentials: TenantCredentials
    ) -> TenantToken:
        """
        Request a token with the client-credentials grant.

        Raises:
            AuthenticationFailed: On any 4xx answer or a response without
                an access token.
            Transient: On network failures and 5xx answers (safe to retry).
        """
        if not credentials.client_id or credentials.client_secret is None:
            raise AuthenticationFailed(
                f"No client credentials configured for tenant {tenant}"
            )

        form = {
            "client_id": credentials.client_id,
            "client_secret": credentials.client_secret.get_secret_value(),
            "grant_type": "client_credentials",
        }
        if credentials.scope:
            form["scope"] = credentials.scope

        logger.debug(
            "Requesting OAuth access token from %s (scope=%s)",
            self.token_url,
            credentials.scope or "-",
        )
        requested_at = self._clock()
        try:
            response = self._get_session().post(
                self.token_url,
                data=form,
                headers={"Accept": "application/json"},
                timeout=(10, self.config.request_timeout),
            )
        except requests.exceptions.RequestException as e:
            raise Transient(f"token request failed: {e}") from e

        if response.status_code >= 500:
            raise Transient(
                f"token request failed with status {response.status_code}"
            )
        if response.status_code != 200:
            logger.error(
                "OAuth token request failed for tenant %s: status %d",
                tenant,
                response.status_code,
            )
            raise AuthenticationFailed(
                f"token request failed with status {response.status_code}: "
                f"{response.text[:500]}"
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise ApiError(f"error parsing token response: {e}") from e

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not access_token:
            raise AuthenticationFailed("no access token in response")

        expires_in = payload.get("expires_in")
        expires_at = (
            requested_at + float(expires_in)
            if isinstance(expires_in, (int, float)) and expires_in > 0
            else None
        )
        logger.debug(
            "Obtained OAuth access token (expires_in=%s, token_type=%s)",
            expires_in,
            payload.get("token_type"),
        )
        return TenantToken(token=SecretStr(access_token), expires_at=expires_at)
