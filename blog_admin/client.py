"""
HTTP client for the blog administration API
Wraps aiohttp: bearer token, envelope unwrapping, error classification,
user notifications and the global 401 session termination
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from aiohttp import ClientError, ClientSession, ClientTimeout, FormData

from .config import Config
from .envelope import Envelope, get_envelope
from .errors import ApiError, AuthError, NetworkError, error_for_status
from .notifier import Notifier

logger = logging.getLogger(__name__)


def _encode_params(params: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """aiohttp only accepts str/int/float query values"""
    encoded = {}
    for key, value in (params or {}).items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = 'true' if value else 'false'
        elif hasattr(value, 'value'):  # Enum members
            value = value.value
        encoded[key] = str(value)
    return encoded


class HttpClient:
    """Client for communicating with the blog administration API"""

    def __init__(self, config: Optional[Config] = None, notifier: Optional[Notifier] = None,
                 envelope: Optional[Envelope] = None,
                 token_provider: Optional[Callable[[], Optional[str]]] = None,
                 on_unauthorized: Optional[Callable[[], Awaitable[None]]] = None):
        self.config = config or Config()
        self.base_url = self.config.API_BASE_URL.rstrip('/')
        self.notifier = notifier or Notifier()
        self.envelope = envelope or get_envelope(self.config.ENVELOPE)
        self.token_provider = token_provider
        self.on_unauthorized = on_unauthorized
        self.session: Optional[ClientSession] = None
        logger.debug(f"HttpClient initialized with base URL: {self.base_url} (envelope: {self.envelope.name})")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self):
        if self.session is None or self.session.closed:
            logger.debug("Creating HttpClient session")
            self.session = ClientSession(timeout=ClientTimeout(total=self.config.REQUEST_TIMEOUT))

    async def close(self):
        if self.session and not self.session.closed:
            logger.debug("Closing HttpClient session")
            await self.session.close()
        self.session = None

    def _get_headers(self, include_content_type: bool = True) -> Dict[str, str]:
        headers = {'Accept': 'application/json'}
        if include_content_type:
            headers['Content-Type'] = 'application/json'
        token = self.token_provider() if self.token_provider else None
        if token:
            headers['Authorization'] = f'Bearer {token}'
            logger.debug(f"Attaching bearer token: {token[:10]}...")
        return headers

    async def request(self, method: str, path: str, body: Any = None,
                      params: Optional[Dict[str, Any]] = None, *, notify: bool = True,
                      form: Optional[FormData] = None) -> Any:
        """Make API request and return the unwrapped payload, raising ApiError on failure"""
        await self.start()
        url = f"{self.base_url}{path}"
        headers = self._get_headers(include_content_type=body is not None and form is None)

        kwargs = {'headers': headers, 'params': _encode_params(params)}
        if form is not None:
            kwargs['data'] = form
        elif body is not None:
            kwargs['json'] = body

        logger.debug(f"API Request: {method} {url} params={kwargs['params']}")
        if body is not None:
            logger.debug(f"JSON payload: {body}")

        try:
            async with self.session.request(method, url, **kwargs) as response:
                status = response.status
                raw = await response.read()
                charset = response.charset or 'utf-8'
        except asyncio.TimeoutError:
            logger.error(f"API timeout after {self.config.REQUEST_TIMEOUT}s: {method} {url}")
            raise self._fail(NetworkError(details={'reason': 'timeout'}), notify)
        except ClientError as e:
            logger.error(f"API client error: {method} {url}: {e}")
            raise self._fail(NetworkError(details={'reason': str(e)}), notify)

        logger.debug(f"API Response: {status} from {url}")
        response_data = self._parse_body(raw, charset)

        if 200 <= status < 300:
            failure = self.envelope.failure_message(response_data)
            if failure is not None:
                raise self._fail(ApiError(failure, status, self.envelope.error_details(response_data)), notify)
            return self.envelope.unwrap(response_data)

        error = error_for_status(
            status,
            self.envelope.error_message(response_data),
            self.envelope.error_details(response_data),
        )
        logger.warning(f"API error {status} for {method} {path}: {error.message}")

        if isinstance(error, AuthError):
            self._fail(error, notify)
            await self._handle_unauthorized()
            raise error

        raise self._fail(error, notify)

    def _parse_body(self, raw: bytes, charset: str = 'utf-8') -> Any:
        if not raw:
            return None
        try:
            text = raw.decode(charset, errors='replace')
        except LookupError:
            logger.warning(f"Unknown response charset {charset}, decoding as utf-8")
            text = raw.decode('utf-8', errors='replace')
        try:
            response_data = json.loads(text)
            logger.debug(f"Response data: {response_data}")
            return response_data
        except ValueError as e:
            logger.warning(f"Failed to parse JSON response: {e}")
            return text

    def _fail(self, error: ApiError, notify: bool) -> ApiError:
        if notify:
            self.notifier.error(error.message)
        return error

    async def _handle_unauthorized(self):
        if self.on_unauthorized is None:
            logger.debug("No unauthorized handler bound")
            return
        try:
            await self.on_unauthorized()
        except Exception as e:
            logger.error(f"Unauthorized handler failed: {e}")

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None, **kwargs) -> Any:
        return await self.request('GET', path, params=params, **kwargs)

    async def post(self, path: str, body: Any = None, **kwargs) -> Any:
        return await self.request('POST', path, body, **kwargs)

    async def put(self, path: str, body: Any = None, **kwargs) -> Any:
        return await self.request('PUT', path, body, **kwargs)

    async def patch(self, path: str, body: Any = None, **kwargs) -> Any:
        return await self.request('PATCH', path, body, **kwargs)

    async def delete(self, path: str, body: Any = None, **kwargs) -> Any:
        return await self.request('DELETE', path, body, **kwargs)
