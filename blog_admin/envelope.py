"""
Response envelope strategies

Two backend generations wrap payloads differently:
- standard: {code, message, data, timestamp}
- success:  {success, data, message, code}

One strategy is selected at start-up (Config.ENVELOPE) and handed to the
HTTP client; call sites never sniff the shape themselves.
"""

import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

# Error bodies carry {code, msg}, {message} or the older {error}
ERROR_MESSAGE_FIELDS = ('msg', 'message', 'error')


class Envelope:
    """Base strategy: unwrap {data: ...} and fall back to the raw body"""

    name = 'standard'

    def unwrap(self, body: Any) -> Any:
        if isinstance(body, dict) and 'data' in body:
            return body['data']
        return body

    def failure_message(self, body: Any) -> Optional[str]:
        """Return a message when a 2xx body still reports failure"""
        return None

    def error_message(self, body: Any) -> Optional[str]:
        """Probe the known error fields for a human-readable message"""
        if isinstance(body, dict):
            for field in ERROR_MESSAGE_FIELDS:
                value = body.get(field)
                if isinstance(value, str) and value:
                    return value
        elif isinstance(body, str) and body.strip():
            return body.strip()[:200]
        return None

    def error_details(self, body: Any) -> Dict[str, Any]:
        if not isinstance(body, dict):
            return {}
        details = {}
        if 'code' in body:
            details['code'] = body['code']
        extra = body.get('details')
        if isinstance(extra, dict):
            details.update(extra)
        elif extra is not None:
            details['details'] = extra
        # Field errors stay nested for ValidationError.field_errors
        if body.get('errors') is not None:
            details['errors'] = body['errors']
        return details


class StandardEnvelope(Envelope):
    name = 'standard'


class SuccessEnvelope(Envelope):
    """{success, data, message, code}; success=false is an error even on 2xx"""

    name = 'success'

    def failure_message(self, body: Any) -> Optional[str]:
        if isinstance(body, dict) and body.get('success') is False:
            return self.error_message(body) or 'Request failed'
        return None


ENVELOPES = {
    StandardEnvelope.name: StandardEnvelope,
    SuccessEnvelope.name: SuccessEnvelope,
}


def get_envelope(name: str) -> Envelope:
    """Return the envelope strategy registered under name"""
    try:
        return ENVELOPES[name]()
    except KeyError:
        raise ValueError(f"Unknown envelope '{name}', expected one of {sorted(ENVELOPES)}")
