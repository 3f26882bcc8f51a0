"""
Thin client for the push-notification service (FCM legacy HTTP API).

``send`` delivers one notification to a batch of device tokens and reports
which tokens the service rejected as unregistered, so the caller can prune
them from the registry.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List

import requests
from django.conf import settings

logger = logging.getLogger(__name__)

INVALID_TOKEN_ERRORS = {'NotRegistered', 'InvalidRegistration', 'MismatchSenderId'}


class PushDeliveryError(Exception):
    """Raised when the push service could not be reached or refused the batch."""
    pass


@dataclass
class PushResult:
    sent: int = 0
    failed: int = 0
    invalid_tokens: List[str] = field(default_factory=list)


class PushClient:

    def __init__(self, api_url=None, server_key=None, timeout=None):
        self.api_url = api_url or settings.PUSH_API_URL
        self.server_key = server_key if server_key is not None else settings.PUSH_SERVER_KEY
        self.timeout = timeout or settings.PUSH_TIMEOUT

    @property
    def enabled(self) -> bool:
        return bool(self.server_key)

    def send(self, tokens: List[str], title: str, body: str, data: Dict[str, str]) -> PushResult:
        if not tokens:
            return PushResult()
        if not self.enabled:
            logger.warning("Push notifications disabled: PUSH_SERVER_KEY not configured")
            return PushResult()

        payload = {
            'registration_ids': tokens,
            'priority': 'high',
            'notification': {'title': title, 'body': body, 'sound': 'default'},
            # Data messages only carry string values.
            'data': {str(k): str(v) for k, v in data.items()},
        }
        try:
            response = requests.post(
                self.api_url,
                json=payload,
                headers={'Authorization': f'key={self.server_key}'},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise PushDeliveryError(f"Push request failed: {e}") from e

        result = PushResult()
        for token, outcome in zip(tokens, response.json().get('results', [])):
            error = outcome.get('error')
            if error is None:
                result.sent += 1
                continue
            result.failed += 1
            if error in INVALID_TOKEN_ERRORS:
                result.invalid_tokens.append(token)
        return result
