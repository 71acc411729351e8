#!/usr/bin/env python3
"""
Chat channel egress.

The only place the dispatch pipeline talks to the network. Messages are
posted to Google Chat style incoming webhooks as JSON; non-2xx answers and
transport failures are raised as DeliveryError / TransientDeliveryError so the
delivery tiers and circuit breaker can react.

Usage:
    from notification.channels import ChatClient

    client = ChatClient(timeout=10.0)
    result = client.send_message(channel.webhook_url, event, 'detailed')
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Any, Optional
import logging
import os
import time
import urllib.parse

import requests

from core.exceptions import DeliveryError, TransientDeliveryError
from core.utils import mask_url
from dispatch.events import InboundEvent
from notification.message_builder import NotificationMessageBuilder

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "CRMRelay-Notification-Service/1.0"


def _is_dry_run_mode() -> bool:
    """Check if chat channels should run in dry-run (log-only) mode."""
    return os.environ.get('NOTIFICATION_DRY_RUN', '').lower() in ('true', '1', 'yes')


def _validate_webhook_url(url: Optional[str]) -> bool:
    try:
        parsed = urllib.parse.urlparse(url or '')
    except ValueError:
        return False
    return parsed.scheme in ('http', 'https') and bool(parsed.hostname)


@dataclass
class SendResult:
    message_id: Optional[str]
    status_code: Optional[int]
    response_time_ms: int
    message: Dict[str, Any]
    dry_run: bool = False


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _message_id(response: requests.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    return body.get('name') if isinstance(body, dict) else None


def post_message(
    post,
    url: str,
    payload: Dict[str, Any],
    timeout: float,
    headers: Optional[Dict[str, str]] = None
) -> SendResult:
    """
    POST one chat message and translate the outcome.

    `post` is `requests.post` or a Session's bound `post`. Timeouts, connection
    errors and 5xx raise TransientDeliveryError; other non-2xx raise
    DeliveryError.
    """
    if not _validate_webhook_url(url):
        raise DeliveryError(f"Invalid webhook URL: {mask_url(url)}")

    if _is_dry_run_mode():
        logger.info(f"[DRY RUN] Would post chat message to {mask_url(url)}")
        return SendResult(message_id=None, status_code=None, response_time_ms=0, message=payload, dry_run=True)

    started = time.monotonic()
    try:
        response = post(url, json=payload, timeout=timeout, headers=headers)
    except requests.Timeout as e:
        raise TransientDeliveryError(f"Timed out after {timeout}s posting to {mask_url(url)}",
                                     response_time_ms=_elapsed_ms(started)) from e
    except requests.ConnectionError as e:
        raise TransientDeliveryError(f"Connection error posting to {mask_url(url)}: {e.__class__.__name__}",
                                     response_time_ms=_elapsed_ms(started)) from e
    except requests.RequestException as e:
        raise DeliveryError(f"Request to {mask_url(url)} failed: {e}",
                            response_time_ms=_elapsed_ms(started)) from e

    elapsed = _elapsed_ms(started)
    status = response.status_code

    if status >= 500:
        raise TransientDeliveryError(f"Chat webhook returned {status}", status_code=status, response_time_ms=elapsed)
    if status == 429:
        raise TransientDeliveryError("Chat webhook rate limited (429)", status_code=status, response_time_ms=elapsed)
    if not 200 <= status < 300:
        detail = (response.text or '')[:200]
        raise DeliveryError(f"Chat webhook returned {status}: {detail}", status_code=status, response_time_ms=elapsed)

    logger.info(f"Chat webhook success: {status} {mask_url(url)} ({elapsed}ms)")
    return SendResult(message_id=_message_id(response), status_code=status,
                      response_time_ms=elapsed, message=payload)


class MessageSender(ABC):
    """Anything that can deliver a rendered event to a chat destination."""

    @abstractmethod
    def send_message(
        self,
        channel_url: str,
        event: InboundEvent,
        template_mode: str = 'simple',
        custom_template: Optional[str] = None,
        tenant_id: Optional[int] = None
    ) -> SendResult:
        pass


class ChatClient(MessageSender):
    """Google Chat incoming-webhook client on a pooled requests Session."""

    def __init__(
        self,
        timeout: float = 10.0,
        user_agent: str = DEFAULT_USER_AGENT,
        session: Optional[requests.Session] = None,
        builder: Optional[NotificationMessageBuilder] = None
    ):
        self.timeout = timeout
        self.user_agent = user_agent
        self.session = session or requests.Session()
        self.session.headers.update({
            'Content-Type': 'application/json',
            'User-Agent': user_agent,
        })
        self.builder = builder or NotificationMessageBuilder()

    def send_message(
        self,
        channel_url: str,
        event: InboundEvent,
        template_mode: str = 'simple',
        custom_template: Optional[str] = None,
        tenant_id: Optional[int] = None
    ) -> SendResult:
        payload = self.builder.build(event, template_mode, custom_template)
        logger.debug(f"Sending {template_mode} message for tenant {tenant_id} to {mask_url(channel_url)}")
        return post_message(self.session.post, channel_url, payload, self.timeout)

    def send_text(self, channel_url: str, text: str) -> SendResult:
        if not text:
            raise ValueError("text is required")
        return post_message(self.session.post, channel_url, {'text': text}, self.timeout)

    def close(self) -> None:
        self.session.close()


class BareChatSender(MessageSender):
    """
    Sender with no shared state: a plain requests.post per message.

    Used by the emergency delivery tier so a broken pooled Session cannot
    block the last-resort path.
    """

    def __init__(self, timeout: float = 5.0, user_agent: str = DEFAULT_USER_AGENT):
        self.timeout = timeout
        self.user_agent = user_agent

    def send_message(
        self,
        channel_url: str,
        event: InboundEvent,
        template_mode: str = 'simple',
        custom_template: Optional[str] = None,
        tenant_id: Optional[int] = None
    ) -> SendResult:
        payload = NotificationMessageBuilder.build(event, template_mode, custom_template)
        headers = {'Content-Type': 'application/json', 'User-Agent': self.user_agent}
        return post_message(requests.post, channel_url, payload, self.timeout, headers=headers)
