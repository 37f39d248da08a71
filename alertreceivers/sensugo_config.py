"""Settings of the Sensu Go receiver."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Callable

from .core import DEFAULT_MESSAGE_EMBED, ConfigError, parse_settings, string_setting

_KEY_FIELD = "apikey"

FULL_VALID_CONFIG = """{
    "url": "http://localhost",
    "apikey": "placeholder",
    "entity": "test-entity",
    "check": "test-check",
    "namespace": "test-namespace",
    "handler": "test-handler",
    "message": "test-message"
}"""

FULL_VALID_SECRETS = json.dumps({_KEY_FIELD: "secret"})


@dataclass
class Config:
    """Validated Sensu Go settings."""

    url: str
    api_key: str
    entity: str = ""
    check: str = ""
    namespace: str = ""
    handler: str = ""
    message: str = DEFAULT_MESSAGE_EMBED


def new_config(json_data: str | bytes, decrypt: Callable[[str, str], str]) -> Config:
    """Parse and validate Sensu Go settings."""
    raw = parse_settings(json_data)
    url = string_setting(raw, "url")
    if not url:
        raise ConfigError("could not find URL property in settings")
    api_key = decrypt(_KEY_FIELD, string_setting(raw, _KEY_FIELD))
    if not api_key:
        raise ConfigError("could not find the API key property in settings")
    return Config(
        url=url,
        api_key=api_key,
        entity=string_setting(raw, "entity"),
        check=string_setting(raw, "check"),
        namespace=string_setting(raw, "namespace"),
        handler=string_setting(raw, "handler"),
        message=string_setting(raw, "message") or DEFAULT_MESSAGE_EMBED,
    )