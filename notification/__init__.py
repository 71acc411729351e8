"""
Notification Module

Chat egress, message templates, the audit trail, and the durable dispatch
queue for CRM change notifications.

Usage:
    from notification import ChatClient, DispatchQueue

    client = ChatClient(timeout=10.0)
    client.send_message(webhook_url, event, 'detailed')

    queue = DispatchQueue.from_context(context)
    queue.submit(webhook_body)
"""

from notification.channels import (
    MessageSender,
    ChatClient,
    BareChatSender,
    SendResult,
)

from notification.message_builder import (
    NotificationMessageBuilder,
    NotificationContent,
    render_template,
    extract_variables,
)

from notification.tracker import (
    AuditLogService,
    MemoryAuditSink,
    ReliabilityAlerter,
)

from notification.service import (
    DispatchQueue,
    SubmitResult,
    process_event_task,
)

__all__ = [
    # Channels
    'MessageSender',
    'ChatClient',
    'BareChatSender',
    'SendResult',
    # Templates
    'NotificationMessageBuilder',
    'NotificationContent',
    'render_template',
    'extract_variables',
    # Tracker
    'AuditLogService',
    'MemoryAuditSink',
    'ReliabilityAlerter',
    # Queue
    'DispatchQueue',
    'SubmitResult',
    'process_event_task',
]
