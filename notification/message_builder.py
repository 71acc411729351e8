import re
import logging
from typing import List, Optional, Dict, Any
from pydantic import BaseModel

from dispatch.events import InboundEvent
from core.utils import to_number

logger = logging.getLogger(__name__)

TEMPLATE_MODES = ('simple', 'compact', 'detailed', 'custom')

VARIABLE_PATTERN = re.compile(r"\{([^{}]+)\}")

CURRENCY_SYMBOLS = {'USD': '$', 'EUR': '€', 'GBP': '£', 'JPY': '¥'}

EVENT_HEADLINES = {
    'added': ('🆕', 'Created'),
    'create': ('🆕', 'Created'),
    'created': ('🆕', 'Created'),
    'updated': ('📝', 'Updated'),
    'change': ('📝', 'Updated'),
    'deleted': ('🗑️', 'Deleted'),
    'delete': ('🗑️', 'Deleted'),
    'merged': ('🔀', 'Merged'),
}


class NotificationContent(BaseModel):
    headline: str
    title: str
    emoji: str = "🔔"
    fields: List["ContentField"] = []
    url: Optional[str] = None


class ContentField(BaseModel):
    label: str
    value: str


NotificationContent.model_rebuild()


def format_currency(value: Any, currency: Optional[str]) -> str:
    amount = to_number(value, 0.0)
    code = (currency or 'USD').upper()
    symbol = CURRENCY_SYMBOLS.get(code)
    if symbol:
        return f"{symbol}{amount:,.0f}"
    return f"{amount:,.0f} {code}"


def entity_url(event: InboundEvent) -> Optional[str]:
    entity_id = event.current.get('id') or event.entity_id
    if not event.api_domain or not entity_id:
        return None
    path = {'organization': 'organization', 'person': 'person', 'activity': 'activity'}.get(event.entity, 'deal')
    return f"https://{event.api_domain}.pipedrive.com/{path}/{entity_id}"


def _owner_name(data: Dict[str, Any]) -> str:
    owner = data.get('owner_name')
    if not owner and isinstance(data.get('user_id'), dict):
        owner = data['user_id'].get('name')
    return owner or 'Unknown'


def _first_value(value: Any) -> Optional[str]:
    # Pipedrive sends contact fields as [{"value": "...", "primary": true}, ...]
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, dict):
        value = value.get('value')
    return value or None


def extract_variables(event: InboundEvent) -> Dict[str, Any]:
    """Template variables available to custom templates, keyed '{entity}.{field}'."""
    data = event.current
    company = event.raw.get('company')
    variables: Dict[str, Any] = {
        'event.type': event.event_type,
        'event.timestamp': event.received_at.strftime('%Y-%m-%d %H:%M UTC'),
        'company.name': company.get('name') if isinstance(company, dict) else 'Pipedrive',
    }

    user = event.raw.get('user')
    if isinstance(user, dict):
        variables['user.name'] = user.get('name')
        variables['user.email'] = user.get('email')

    url = entity_url(event)
    entity = event.entity

    if entity == 'deal':
        variables.update({
            'deal.title': data.get('title') or 'Untitled Deal',
            'deal.value': format_currency(data.get('value'), data.get('currency')),
            'deal.currency': data.get('currency') or 'USD',
            'deal.stage': data.get('stage_name') or data.get('pipeline_name') or 'Unknown Stage',
            'deal.status': data.get('status') or 'open',
            'deal.probability': data.get('probability') or 0,
            'deal.expected_close_date': data.get('expected_close_date'),
            'deal.owner_name': _owner_name(data),
            'deal.url': url,
        })
    elif entity == 'person':
        variables.update({
            'person.name': data.get('name') or 'Unknown Contact',
            'person.first_name': data.get('first_name'),
            'person.last_name': data.get('last_name'),
            'person.email': _first_value(data.get('email')),
            'person.phone': _first_value(data.get('phone')),
            'person.company': data.get('org_name'),
            'person.owner_name': _owner_name(data),
            'person.url': url,
        })
    elif entity == 'organization':
        variables.update({
            'org.name': data.get('name') or 'Unknown Organization',
            'org.owner_name': _owner_name(data),
            'org.address': data.get('address'),
            'org.people_count': data.get('people_count'),
            'org.deals_count': data.get('open_deals_count'),
            'org.url': url,
        })
    elif entity == 'activity':
        variables.update({
            'activity.subject': data.get('subject') or 'Untitled Activity',
            'activity.type': data.get('type'),
            'activity.due_date': data.get('due_date'),
            'activity.due_time': data.get('due_time'),
            'activity.duration': data.get('duration'),
            'activity.note': data.get('note'),
            'activity.owner_name': _owner_name(data),
            'activity.url': url,
        })

    return variables


def render_template(template: str, variables: Dict[str, Any]) -> str:
    """Substitute {name} placeholders. Unknown or empty variables are left as written."""

    def _replace(match: "re.Match") -> str:
        value = variables.get(match.group(1).strip())
        if value is None or value == "":
            return match.group(0)
        return str(value)

    return VARIABLE_PATTERN.sub(_replace, template)


class NotificationMessageBuilder:
    @staticmethod
    def build_content(event: InboundEvent) -> NotificationContent:
        data = event.current
        emoji, verb = EVENT_HEADLINES.get(event.action or '', ('🔔', 'Event'))
        entity_label = event.entity.capitalize()

        status = data.get('status')
        previous_stage = event.previous.get('stage_id')
        if event.entity == 'deal' and status == 'won' and event.previous.get('status') != 'won':
            emoji, headline = '🎉', 'Deal Won!'
        elif event.entity == 'deal' and status == 'lost' and event.previous.get('status') != 'lost':
            emoji, headline = '❌', 'Deal Lost'
        elif previous_stage and data.get('stage_id') and previous_stage != data.get('stage_id'):
            emoji, headline = '🔄', f"{entity_label} Stage Changed"
        else:
            headline = f"{entity_label} {verb}"

        title = (data.get('title') or data.get('name') or data.get('subject')
                 or f"{event.entity} #{data.get('id') or event.entity_id or '?'}")

        fields = []
        if data.get('value') not in (None, '', 0):
            fields.append(ContentField(label='Value', value=format_currency(data.get('value'), data.get('currency'))))
        if data.get('stage_name') or data.get('stage_id'):
            stage = data.get('stage_name') or f"Stage {data.get('stage_id')}"
            if previous_stage and previous_stage != data.get('stage_id'):
                stage = f"{previous_stage} → {stage}"
            fields.append(ContentField(label='Stage', value=str(stage)))
        if data.get('probability') not in (None, ''):
            fields.append(ContentField(label='Probability', value=f"{data.get('probability')}%"))
        if status == 'lost' and data.get('lost_reason'):
            fields.append(ContentField(label='Reason', value=str(data['lost_reason'])))
        owner = _owner_name(data)
        if owner != 'Unknown':
            fields.append(ContentField(label='Owner', value=owner))

        return NotificationContent(headline=headline, title=str(title), emoji=emoji,
                                   fields=fields, url=entity_url(event))

    @staticmethod
    def format_simple(content: NotificationContent) -> Dict[str, Any]:
        lines = [f"{content.emoji} *{content.headline}*", f"📋 *{content.title}*"]
        lines.extend(f"{f.label}: *{f.value}*" for f in content.fields)
        if content.url:
            lines.append(f"<{content.url}|View in Pipedrive>")
        return {'text': "\n".join(lines)}

    @staticmethod
    def format_compact(content: NotificationContent) -> Dict[str, Any]:
        summary = " · ".join(f.value for f in content.fields[:2])
        text = f"{content.emoji} {content.headline}: {content.title}"
        if summary:
            text += f" ({summary})"
        return {'text': text}

    @staticmethod
    def format_detailed(content: NotificationContent) -> Dict[str, Any]:
        widgets = [{'keyValue': {'topLabel': f.label, 'content': f.value}} for f in content.fields]
        if content.url:
            widgets.append({
                'buttons': [{
                    'textButton': {'text': 'VIEW IN PIPEDRIVE', 'onClick': {'openLink': {'url': content.url}}}
                }]
            })
        card = {
            'header': {'title': f"{content.emoji} {content.headline}", 'subtitle': content.title},
            'sections': [{'widgets': widgets}] if widgets else [],
        }
        return {'cards': [card]}

    @staticmethod
    def build(event: InboundEvent, template_mode: str = 'simple',
              custom_template: Optional[str] = None) -> Dict[str, Any]:
        """Chat webhook body for one event in the given template mode."""
        mode = (template_mode or 'simple').lower()

        if mode == 'custom':
            if custom_template:
                return {'text': render_template(custom_template, extract_variables(event))}
            logger.warning("Custom template mode without a template; using simple format")
            mode = 'simple'

        content = NotificationMessageBuilder.build_content(event)
        if mode == 'detailed':
            return NotificationMessageBuilder.format_detailed(content)
        if mode == 'compact':
            return NotificationMessageBuilder.format_compact(content)
        if mode != 'simple':
            logger.warning(f"Unknown template mode '{template_mode}'; using simple format")
        return NotificationMessageBuilder.format_simple(content)
