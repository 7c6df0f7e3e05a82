"""
LINE Messaging API client.

Only the three calls the bot needs: reply, push and profile lookup. Failures are
logged and reported as False/None; they never raise into the webhook handler.
"""

import base64
import hashlib
import hmac
import logging
import time
from typing import Dict, List, Optional

import requests

MAX_MESSAGES_PER_CALL = 5


def verify_signature(channel_secret: str, body: bytes, signature: str) -> bool:
    """
    Check the ``X-Line-Signature`` header of a webhook request.

    Args:
        channel_secret: Channel secret from the LINE console
        body: Raw request body
        signature: Header value (base64 HMAC-SHA256)

    Returns:
        bool: True if the body was signed with the channel secret
    """
    digest = hmac.new(channel_secret.encode('utf-8'), body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode('utf-8')
    return hmac.compare_digest(expected, signature or "")


class LineClient:
    """LINE gateway with retry on transient failures."""

    def __init__(self, access_token: str, base_url: str = "https://api.line.me/v2/bot",
                 max_retries: int = 3, retry_delay: float = 1.0, timeout: int = 30):
        self.base_url = base_url
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.logger = logging.getLogger('line')

        self.session = requests.Session()
        self.session.headers.update({
            'Authorization': f'Bearer {access_token}',
            'Content-Type': 'application/json',
        })

    # ===== NETWORK COMMUNICATION WITH RETRY LOGIC =====

    def _make_request(self, http_method: str, path: str, data: Dict = None) -> Optional[Dict]:
        """Make LINE API request with comprehensive error handling."""
        url = f"{self.base_url}{path}"
        try:
            start = time.time()
            if http_method == "GET":
                resp = self.session.get(url, timeout=self.timeout)
            else:
                resp = self.session.post(url, json=data or {}, timeout=self.timeout)
            duration = (time.time() - start) * 1000

            if resp.status_code == 200:
                self.logger.debug(f"LINE {http_method} {path} OK in {duration:.2f}ms")
                return resp.json() if resp.content else {}
            self.logger.error(f"LINE {http_method} {path} HTTP {resp.status_code}: {resp.text}")
            return None

        except requests.exceptions.Timeout:
            self.logger.error(f"LINE {http_method} {path} timeout")
            return None
        except requests.exceptions.ConnectionError:
            self.logger.error(f"LINE {http_method} {path} connection error")
            return None
        except requests.exceptions.RequestException as e:
            self.logger.error(f"LINE {http_method} {path} unexpected error: {e}")
            return None

    def _make_request_with_retry(self, http_method: str, path: str, data: Dict = None) -> Optional[Dict]:
        """
        Make API request with automatic retry on failure.

        Returns:
            Optional[Dict]: Response or None if all retries failed
        """
        for attempt in range(self.max_retries):
            result = self._make_request(http_method, path, data)
            if result is not None:
                return result

            if attempt < self.max_retries - 1:
                self.logger.warning(f"Request {path} failed, attempt {attempt + 1}/{self.max_retries}")
                time.sleep(self.retry_delay * (attempt + 1))

        self.logger.error(f"Request {path} failed after {self.max_retries} attempts")
        return None

    # ===== PUBLIC API =====

    def reply(self, reply_token: str, messages: List[Dict]) -> bool:
        """
        Reply to an event. Reply tokens are single-use, so no retry.

        Only the first five messages are sent; LINE rejects larger batches.
        """
        if not reply_token or not messages:
            return False
        if len(messages) > MAX_MESSAGES_PER_CALL:
            self.logger.warning(f"Dropping {len(messages) - MAX_MESSAGES_PER_CALL} messages over the reply limit")
        result = self._make_request("POST", "/message/reply", {
            "replyToken": reply_token,
            "messages": messages[:MAX_MESSAGES_PER_CALL],
        })
        if result is not None:
            self.logger.info(f"Replied with {min(len(messages), MAX_MESSAGES_PER_CALL)} message(s)")
        return result is not None

    def push(self, user_id: str, messages: List[Dict]) -> bool:
        if not user_id or not messages:
            return False
        result = self._make_request_with_retry("POST", "/message/push", {
            "to": user_id,
            "messages": messages[:MAX_MESSAGES_PER_CALL],
        })
        if result is not None:
            self.logger.info(f"Pushed {min(len(messages), MAX_MESSAGES_PER_CALL)} message(s) to {user_id}")
        return result is not None

    def get_profile(self, user_id: str) -> Optional[Dict]:
        """Fetch ``{"displayName": ..., "userId": ...}``; None on failure."""
        return self._make_request_with_retry("GET", f"/profile/{user_id}")
