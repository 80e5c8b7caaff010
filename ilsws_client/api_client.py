"""
ILSWS HTTP transport.

Thin wrapper around a requests.Session that knows the Symphony Web Services
headers, the staff login call and how to turn non-2xx responses into
ApiError. Retries are not attempted here.
"""

import json
import logging
import random
from typing import Any, Dict, List, Optional

import requests

from .errors import ApiError
from .validator import check

logger = logging.getLogger(__name__)

TOKEN_RULE = r"r:^[a-z0-9\-]{36}$"
ROLE_RULE = "v:STAFF|PATRON|GUEST"
CLIENT_ID_RULE = "r:^[A-Za-z_]{4,20}$"
METHOD_RULE = "v:POST|PUT|DELETE"


class ApiClient:
    """
    HTTP client for one ILSWS session.

    Example:
        client = ApiClient(config_loader.get_ilsws_config())
        client.connect()
        describe = client.send_get("/user/patron/describe")
    """

    def __init__(self, ilsws_config: Dict[str, Any], session: Optional[requests.Session] = None):
        """
        Args:
            ilsws_config: The 'ilsws' block of the configuration:
                    - hostname, port, webapp: build the base URL
                    - app_id, client_id: sent as SD-Originating-App-ID / x-sirs-clientID
                    - username, password: staff login
                    - timeout: request timeout in seconds
                    - user_privilege_override: sent with write requests
            session: Optional requests.Session to use (one is created otherwise)
        """
        self.config = ilsws_config
        self.base_url = (
            f"https://{ilsws_config['hostname']}:{ilsws_config.get('port', 443)}"
            f"/{ilsws_config['webapp']}"
        )
        self.timeout = ilsws_config.get('timeout', 20)
        self.app_id = ilsws_config.get('app_id', '')
        self.client_id = ilsws_config.get('client_id', '')
        self.session = session or requests.Session()
        self.token: Optional[str] = None
        self.last_status: Optional[int] = None

    def _headers(self, client_id: Optional[str] = None) -> Dict[str, str]:
        headers = {
            'Content-Type': 'application/json',
            'Accept': 'application/json',
            'SD-Originating-App-ID': self.app_id,
            'SD-Request-Tracker': str(random.randint(1, 1000000000)),
            'x-sirs-clientID': client_id or self.client_id,
        }
        if self.token:
            headers['x-sirs-sessionToken'] = self.token
        return headers

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _handle(self, response: requests.Response, url: str) -> Any:
        self.last_status = response.status_code
        if not 200 <= response.status_code < 300:
            logger.error(
                "ILSWS request failed",
                extra={'url': url, 'status_code': response.status_code}
            )
            raise ApiError(response.text or response.reason or "", response.status_code, url)

        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    def connect(self) -> str:
        """
        Log in as the configured staff user.

        Returns:
            The session token, also kept for subsequent requests
        """
        url = self._url("/user/staff/login")
        payload = {'login': self.config.get('username', ''), 'password': self.config.get('password', '')}

        self.token = None
        response = self.session.post(
            url, data=json.dumps(payload), headers=self._headers(), timeout=self.timeout
        )
        body = self._handle(response, url)

        token = body.get('sessionToken')
        if not token:
            raise ApiError("Login response did not include a session token", response.status_code, url)
        self.token = token

        logger.info("Connected to ILSWS", extra={'base_url': self.base_url})
        return token

    def _require_token(self) -> None:
        check('token', self.token, TOKEN_RULE)

    def send_get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        GET a resource.

        Empty parameter values are dropped from the query string.
        """
        self._require_token()
        url = self._url(path)
        query = {k: v for k, v in (params or {}).items() if v not in (None, '')}

        logger.debug("ILSWS GET", extra={'url': url, 'params': sorted(query)})
        response = self.session.get(url, params=query, headers=self._headers(), timeout=self.timeout)
        return self._handle(response, url)

    def send_query(
        self,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        method: str = 'POST',
        role: str = 'PATRON',
        client_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Send a POST, PUT or DELETE request with a JSON body.

        Args:
            path: Path below the web application root
            body: JSON-serialisable request document
            method: POST, PUT or DELETE
            role: SD-Preferred-Role (STAFF, PATRON or GUEST)
            client_id: Override for the x-sirs-clientID header
        """
        self._require_token()
        check('queryType', method, METHOD_RULE)
        check('role', role, ROLE_RULE)
        if client_id is not None:
            check('clientId', client_id, CLIENT_ID_RULE)

        url = self._url(path)
        headers = self._headers(client_id)
        headers['SD-Preferred-Role'] = role
        headers['SD-Prompt-Return'] = (
            f"USER_PRIVILEGE_OVRCD/{self.config.get('user_privilege_override', '')}"
        )

        logger.debug("ILSWS request", extra={'url': url, 'method': method, 'role': role})
        response = self.session.request(
            method,
            url,
            data=json.dumps(body) if body is not None else None,
            headers=headers,
            timeout=self.timeout,
        )
        return self._handle(response, url)

    def fetch_field_descriptors(self, section: str) -> List[Dict[str, Any]]:
        """
        Get raw field descriptions for a record section.

        'patron' reads the 'fields' of /user/patron/describe; any other
        section reads the 'params' of /user/patron/<section>/describe.
        """
        if section == 'patron':
            return self.send_get('/user/patron/describe').get('fields', [])
        return self.send_get(f'/user/patron/{section}/describe').get('params', [])

    def close(self) -> None:
        self.session.close()
