"""Settings of the Opsgenie receiver."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable

from .core import (
    DEFAULT_MESSAGE_TITLE_EMBED,
    ConfigError,
    TemplateError,
    parse_settings,
    parse_template,
    string_setting,
)

SEND_TAGS = "tags"
SEND_DETAILS = "details"
SEND_BOTH = "both"

DEFAULT_ALERTS_URL = "https://api.opsgenie.com/v2/alerts"

SUPPORTED_RESPONDER_TYPES = ("team", "teams", "user", "escalation", "schedule")

_KEY_FIELD = "apiKey"

FULL_VALID_CONFIG = """{
  "apiUrl": "http://localhost",
  "apiKey": "placeholder",
  "message": "test-message",
  "description": "test-description",
  "autoClose": false,
  "overridePriority": false,
  "sendTagsAs": "both",
  "responders": [
    {"type": "team", "id": "test-id"},
    {"type": "user", "username": "test-user"},
    {"type": "schedule", "name": "test-schedule"}
  ]
}"""

FULL_VALID_SECRETS = json.dumps({_KEY_FIELD: "secret"})


@dataclass
class MessageResponder:
    """A responder the alert is routed to."""

    id: str = ""
    name: str = ""
    username: str = ""
    type: str = ""


@dataclass
class Config:
    """Validated Opsgenie settings."""

    api_key: str
    api_url: str = DEFAULT_ALERTS_URL
    message: str = DEFAULT_MESSAGE_TITLE_EMBED
    description: str = ""
    auto_close: bool = True
    override_priority: bool = True
    send_tags_as: str = SEND_TAGS
    responders: list[MessageResponder] = field(default_factory=list)


def _bool_setting(raw: dict[str, Any], key: str, default: bool) -> bool:
    value = raw.get(key)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ConfigError(f"failed to unmarshal settings: {key} must be a boolean")
    return value


def _responders(raw: dict[str, Any]) -> list[MessageResponder]:
    items = raw.get("responders") or []
    if not isinstance(items, list) or not all(isinstance(i, dict) for i in items):
        raise ConfigError("failed to unmarshal settings: responders must be a list of objects")
    return [
        MessageResponder(
            id=string_setting(i, "id"),
            name=string_setting(i, "name"),
            username=string_setting(i, "username"),
            type=string_setting(i, "type"),
        )
        for i in items
    ]


def _validate_responder(idx: int, responder: MessageResponder) -> None:
    if not (responder.id or responder.username or responder.name):
        raise ConfigError(
            f"responder at index [{idx}] must have at least one of id, username or name specified"
        )
    kind = responder.type
    if "{{" in kind:
        try:
            parse_template(kind)
        except TemplateError as exc:
            raise ConfigError(f"responder at index [{idx}] type is not a valid template: {exc}") from exc
    else:
        kind = kind.lower()
        if kind not in SUPPORTED_RESPONDER_TYPES:
            raise ConfigError(
                f"responder at index [{idx}] has unsupported type. "
                f"Supported only: {','.join(SUPPORTED_RESPONDER_TYPES)}"
            )
    if kind == "teams" and not responder.name:
        raise ConfigError(
            f"responder at index [{idx}] has type 'teams' but empty name. "
            "Must be comma-separated string of names"
        )


def new_config(json_data: str | bytes, decrypt: Callable[[str, str], str]) -> Config:
    """Parse and validate Opsgenie settings; ``decrypt(key, fallback)`` supplies secrets."""
    raw = parse_settings(json_data)
    api_key = decrypt(_KEY_FIELD, string_setting(raw, _KEY_FIELD))
    if not api_key:
        raise ConfigError("could not find api key property in settings")
    api_url = string_setting(raw, "apiUrl") or DEFAULT_ALERTS_URL
    message = string_setting(raw, "message")
    if not message.strip():
        message = DEFAULT_MESSAGE_TITLE_EMBED

    send_tags_as = string_setting(raw, "sendTagsAs") or SEND_TAGS
    if send_tags_as not in (SEND_TAGS, SEND_DETAILS, SEND_BOTH):
        raise ConfigError(f'invalid value for sendTagsAs: "{send_tags_as}"')

    auto_close = _bool_setting(raw, "autoClose", True)
    override_priority = _bool_setting(raw, "overridePriority", True)

    responders = _responders(raw)
    for idx, responder in enumerate(responders):
        _validate_responder(idx, responder)

    return Config(
        api_key=api_key,
        api_url=api_url,
        message=message,
        description=string_setting(raw, "description"),
        auto_close=auto_close,
        override_priority=override_priority,
        send_tags_as=send_tags_as,
        responders=responders,
    )