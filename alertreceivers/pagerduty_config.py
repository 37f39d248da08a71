"""Settings of the PagerDuty receiver."""

from __future__ import annotations

import socket
from dataclasses import dataclass, field
from typing import Callable, Mapping

from .core import DEFAULT_MESSAGE_TITLE_EMBED, ConfigError, parse_settings, string_setting

DEFAULT_SEVERITY = "critical"
DEFAULT_CLASS = "default"
DEFAULT_GROUP = "default"
DEFAULT_CLIENT = "Grafana"

DEFAULT_DETAILS = {
    "firing": '{{ template "__text_alert_list" .Alerts.Firing }}',
    "resolved": '{{ template "__text_alert_list" .Alerts.Resolved }}',
    "num_firing": "{{ .Alerts.Firing | len }}",
    "num_resolved": "{{ .Alerts.Resolved | len }}",
}

FULL_VALID_CONFIG = """{
    "integrationKey": "placeholder",
    "severity": "test-severity",
    "class": "test-class",
    "component": "test-component",
    "group": "test-group",
    "summary": "test-summary",
    "source": "test-source",
    "client": "test-client",
    "client_url": "test-client-url"
}"""

FULL_VALID_SECRETS = '{"integrationKey": "secret"}'


def merge_details(user_defined_details: Mapping[str, str] | None) -> dict[str, str]:
    """Merge user details over the defaults; user values win."""
    return {**DEFAULT_DETAILS, **(user_defined_details or {})}


@dataclass
class Config:
    """Validated PagerDuty settings."""

    key: str
    severity: str = DEFAULT_SEVERITY
    details: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_DETAILS))
    class_: str = DEFAULT_CLASS
    component: str = "Grafana"
    group: str = DEFAULT_GROUP
    summary: str = DEFAULT_MESSAGE_TITLE_EMBED
    source: str = ""
    client: str = DEFAULT_CLIENT
    client_url: str = "{{ .ExternalURL }}"


def new_config(
    json_data: str | bytes,
    decrypt: Callable[[str, str], str],
    get_hostname: Callable[[], str] = socket.gethostname,
) -> Config:
    """Parse PagerDuty settings, filling defaults; the source falls back to the client name."""
    raw = parse_settings(json_data)
    key = decrypt("integrationKey", string_setting(raw, "integrationKey"))
    if not key:
        raise ConfigError("could not find integration key property in settings")

    details = raw.get("details") or {}
    if not isinstance(details, dict) or not all(isinstance(v, str) for v in details.values()):
        raise ConfigError("failed to unmarshal settings: details must map strings to strings")

    client = string_setting(raw, "client") or DEFAULT_CLIENT
    source = string_setting(raw, "source")
    if not source:
        try:
            source = get_hostname()
        except OSError:
            source = client

    return Config(
        key=key,
        severity=string_setting(raw, "severity") or DEFAULT_SEVERITY,
        details=merge_details(details),
        class_=string_setting(raw, "class") or DEFAULT_CLASS,
        component=string_setting(raw, "component") or "Grafana",
        group=string_setting(raw, "group") or DEFAULT_GROUP,
        summary=string_setting(raw, "summary") or DEFAULT_MESSAGE_TITLE_EMBED,
        source=source,
        client=client,
        client_url=string_setting(raw, "client_url") or "{{ .ExternalURL }}",
    )