"""Message templates for reminders and final escalations.

Templates use ``{{variable}}`` placeholders. Unknown placeholders render as
empty strings so a template edited with a typo still produces a message.
"""

import re
from dataclasses import dataclass
from typing import Any

from autoreminder.core.errors import TemplateNotFoundError
from autoreminder.core.escalation.enums import ActionKind, Channel

PLACEHOLDER = re.compile(r"{{\s*([A-Za-z_][A-Za-z0-9_]*)\s*}}")

TEMPLATE_VARIABLES = (
    "card_name",
    "card_url",
    "recipient",
    "mentions",
    "level",
    "days_open",
    "current_date",
)


@dataclass(frozen=True)
class Template:
    subject: str
    body: str


@dataclass(frozen=True)
class RenderedTemplate:
    subject: str
    body: str


TEMPLATES: dict[str, Template] = {
    "comment_reminder": Template(
        subject="",
        body=(
            "{{mentions}} Reminder: this card has had no update for "
            "{{days_open}} day(s). Please add a comment or move the card."
        ),
    ),
    "email_reminder": Template(
        subject="Reminder: {{card_name}} needs an update",
        body=(
            "Hello {{recipient}},\n\n"
            "The card \"{{card_name}}\" has been waiting for an update for "
            "{{days_open}} day(s) (reminder level {{level}}).\n\n"
            "Open the card: {{card_url}}\n\n"
            "AutoReminder, {{current_date}}"
        ),
    ),
    "sms_reminder": Template(
        subject="",
        body=(
            "AutoReminder: \"{{card_name}}\" needs your update "
            "({{days_open}} day(s) open). {{card_url}}"
        ),
    ),
    "chat_reminder": Template(
        subject="",
        body=(
            "Reminder for {{recipient}}: \"{{card_name}}\" has been waiting "
            "{{days_open}} day(s) for an update.\n{{card_url}}"
        ),
    ),
    "final_escalation": Template(
        subject="[AutoReminder] Escalation: {{card_name}} is unanswered",
        body=(
            "The card \"{{card_name}}\" has had no response from "
            "{{mentions}} after {{days_open}} day(s) and {{level}} reminder(s).\n\n"
            "Open the card: {{card_url}}\n\n"
            "AutoReminder, {{current_date}}"
        ),
    ),
}


def _substitute(text: str, variables: dict[str, Any]) -> str:
    def replace(match: re.Match[str]) -> str:
        value = variables.get(match.group(1))
        return "" if value is None else str(value)

    return PLACEHOLDER.sub(replace, text)


def render_template(template_id: str, variables: dict[str, Any]) -> RenderedTemplate:
    """Render a registered template.

    Raises:
        TemplateNotFoundError: If no template has this id.
    """
    template = TEMPLATES.get(template_id)
    if template is None:
        raise TemplateNotFoundError(f"Unknown template: {template_id}")
    return RenderedTemplate(
        subject=_substitute(template.subject, variables),
        body=_substitute(template.body, variables),
    )


def template_for(kind: ActionKind, channel: Channel) -> str:
    """Template id used for an action kind on a channel."""
    if kind == ActionKind.final:
        return "final_escalation"
    return f"{channel.value}_reminder"
