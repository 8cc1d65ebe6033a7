"""
OAuth handoff to the school student portal.

Flow: redirect the browser to ``/api/authorize`` with a random state, then on
callback exchange the code at ``/api/token`` and read the student's details
from ``/api/details/userinfo.json``.
"""

import json
import logging
import secrets
from urllib.parse import urlencode

import requests

logger = logging.getLogger(__name__)

PORTAL_SCOPE = 'all-ro'


class PortalAuthError(Exception):
    """Portal login failure that maps onto a plain-text HTTP response."""

    def __init__(self, message, status_code=400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class PortalClient:
    def __init__(self, base_url, client_id, client_secret, redirect_uri, timeout=10):
        self.base_url = (base_url or '').rstrip('/')
        self.client_id = client_id or ''
        self.client_secret = client_secret or ''
        self.redirect_uri = redirect_uri or ''
        self.timeout = timeout

    @staticmethod
    def new_state():
        return secrets.token_urlsafe(16)

    def authorize_url(self, state):
        if not self.client_id or not self.redirect_uri:
            raise PortalAuthError('Configuration Error: Missing Client ID or Redirect URI', 500)
        params = {
            'client_id': self.client_id,
            'redirect_uri': self.redirect_uri,
            'response_type': 'code',
            'scope': PORTAL_SCOPE,
            'state': state,
        }
        return f"{self.base_url}/api/authorize?{urlencode(params)}"

    def exchange_code(self, code):
        """Trade an authorization code for an access token."""
        if not self.client_secret:
            raise PortalAuthError(
                'Configuration Error: Missing Client Secret. Set PORTAL_API_CLIENT_SECRET.', 500
            )
        try:
            resp = requests.post(
                f"{self.base_url}/api/token",
                data={
                    'grant_type': 'authorization_code',
                    'code': code,
                    'client_id': self.client_id,
                    'client_secret': self.client_secret,
                    'redirect_uri': self.redirect_uri,
                },
                timeout=self.timeout,
            )
            token_data = resp.json()
        except (requests.RequestException, ValueError) as exc:
            logger.error("Portal token exchange failed: %s", exc)
            raise PortalAuthError(f'Authentication Failed: {exc}', 500) from exc

        access_token = token_data.get('access_token') if isinstance(token_data, dict) else None
        if not access_token:
            raise PortalAuthError('Failed to retrieve access token: ' + json.dumps(token_data), 400)
        return access_token

    def fetch_userinfo(self, access_token):
        try:
            resp = requests.get(
                f"{self.base_url}/api/details/userinfo.json",
                headers={'Authorization': f'Bearer {access_token}'},
                timeout=self.timeout,
            )
            user_data = resp.json()
        except (requests.RequestException, ValueError) as exc:
            logger.error("Portal userinfo request failed: %s", exc)
            raise PortalAuthError(f'Authentication Failed: {exc}', 500) from exc

        if not isinstance(user_data, dict) or not user_data.get('studentId'):
            raise PortalAuthError('Failed to retrieve user info: ' + json.dumps(user_data), 400)
        return {
            'student_id': str(user_data['studentId']),
            'first_name': user_data.get('givenName') or '',
            'last_name': user_data.get('surname') or '',
            'email': (user_data.get('email') or '').strip().lower(),
        }
