"""Notifier that sends trigger and resolve events to PagerDuty."""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable

from .core import (
    ALERT_RESOLVED,
    Alert,
    Metadata,
    Template,
    TemplateError,
    WebhookSettings,
    alerts_status,
    group_key_hash,
    stored_images,
    template_data,
    truncate_in_runes,
)
from .pagerduty_config import DEFAULT_SEVERITY, Config

MAX_V2_SUMMARY_LEN_RUNES = 1024
MAX_EVENT_SIZE = 512000

EVENT_TRIGGER = "trigger"
EVENT_RESOLVE = "resolve"

KNOWN_SEVERITY = frozenset({DEFAULT_SEVERITY, "error", "warning", "info"})

API_URL = "https://events.pagerduty.com/v2/enqueue"

_MAGNITUDES = ("", "K", "M", "G", "T", "P", "E")

# Characters escaped by the encoder the PagerDuty payload format was defined with.
_JSON_ESCAPES = (
    ("<", "\\u003c"),
    (">", "\\u003e"),
    ("&", "\\u0026"),
    ("\u2028", "\\u2028"),
    ("\u2029", "\\u2029"),
)


def format_metric_bytes(size: int) -> str:
    """Format a byte count in decimal units, e.g. 512000 -> "512KB", 1500 -> "1KB500B"."""
    parts: list[str] = []
    n = size
    for index, magnitude in enumerate(_MAGNITUDES):
        remainder = n % 1000
        if remainder != 0 or (index == 0 and n == 0):
            parts.append(f"{remainder}{magnitude}B")
        n //= 1000
        if n == 0:
            break
    return "".join(reversed(parts))


def _encode(message: dict[str, Any]) -> str:
    text = json.dumps(message, ensure_ascii=False, separators=(",", ":"))
    for char, escaped in _JSON_ESCAPES:
        text = text.replace(char, escaped)
    return text + "\n"


class _Expander:
    """Renders template text, remembering the first failure and yielding "" after it."""

    def __init__(self, template: Template, context: Any) -> None:
        self._template = template
        self._context = context
        self.error: TemplateError | None = None

    def __call__(self, text: str) -> str:
        if self.error is not None:
            return ""
        try:
            return self._template.render(text, self._context)
        except TemplateError as exc:
            self.error = exc
            return ""


class Notifier:
    """Sends alert notifications to PagerDuty through the Events API v2."""

    def __init__(
        self,
        config: Config,
        meta: Metadata,
        template: Template,
        sender: Any,
        images: Any = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.meta = meta
        self.template = template
        self.sender = sender
        self.images = images
        self.log = logger or logging.getLogger(__name__)
        self.api_url = API_URL

    def send_resolved(self) -> bool:
        return not self.meta.disable_resolve_message

    def notify(self, group_key: str, alerts: Iterable[Alert]) -> bool:
        """Send the event; returns True when done or nothing needed sending."""
        alerts = list(alerts)
        if alerts_status(alerts) == ALERT_RESOLVED and not self.send_resolved():
            self.log.debug("not sending a trigger to Pagerduty: resolve messages disabled")
            return True

        try:
            message, event_type = self.build_message(group_key, alerts)
        except TemplateError as exc:
            raise TemplateError(f"build pagerduty message: {exc}") from exc

        body = _encode(message)
        size = len(body.encode("utf-8"))
        if size > MAX_EVENT_SIZE:
            max_size = format_metric_bytes(MAX_EVENT_SIZE)
            message["payload"]["custom_details"] = {
                "error": "Custom details have been removed because the original event "
                f"exceeds the maximum size of {max_size}"
            }
            self.log.warning(
                "Truncated details: max size %s, actual size %s", max_size, format_metric_bytes(size)
            )
            body = _encode(message)

        self.log.info("notifying Pagerduty with event type %s", event_type)
        cmd = WebhookSettings(
            url=self.api_url,
            body=body,
            http_method="POST",
            http_header={"Content-Type": "application/json"},
        )
        try:
            self.sender.send_webhook(cmd)
        except Exception as exc:
            raise RuntimeError(f"send notification to Pagerduty: {exc}") from exc
        return True

    def build_message(self, group_key: str, alerts: Iterable[Alert]) -> tuple[dict[str, Any], str]:
        """Return the event as a JSON-ready dict together with its event action."""
        alerts = list(alerts)
        cfg = self.config
        key_hash = group_key_hash(group_key)
        event_type = EVENT_RESOLVE if alerts_status(alerts) == ALERT_RESOLVED else EVENT_TRIGGER

        external_url = self.template.external_url
        context = template_data(alerts, external_url).as_context()
        tmpl = _Expander(self.template, context)

        details: dict[str, str] = {}
        for name, text in cfg.details.items():
            try:
                details[name] = self.template.render(text, context)
            except TemplateError as exc:
                raise TemplateError(
                    f"{json.dumps(name)}: failed to template {json.dumps(text)}: {exc}"
                ) from exc

        severity = tmpl(cfg.severity).lower()
        if severity not in KNOWN_SEVERITY:
            self.log.warning(
                "Severity %r is not in the list of known values - using default severity %r",
                severity,
                DEFAULT_SEVERITY,
            )
            severity = DEFAULT_SEVERITY

        client = tmpl(cfg.client)
        client_url = tmpl(cfg.client_url)
        source = tmpl(cfg.source)
        component = tmpl(cfg.component)
        summary = tmpl(cfg.summary)
        event_class = tmpl(cfg.class_)
        group = tmpl(cfg.group)

        summary, truncated = truncate_in_runes(summary, MAX_V2_SUMMARY_LEN_RUNES)
        if truncated:
            self.log.warning("Truncated summary for %s to %d runes", key_hash, MAX_V2_SUMMARY_LEN_RUNES)

        payload: dict[str, Any] = {"summary": summary, "source": source, "severity": severity}
        for name, value in (("class", event_class), ("component", component), ("group", group)):
            if value:
                payload[name] = value
        if details:
            payload["custom_details"] = dict(sorted(details.items()))

        message: dict[str, Any] = {}
        if cfg.key:
            message["routing_key"] = cfg.key
        message["dedup_key"] = key_hash
        message["event_action"] = event_type
        message["payload"] = payload
        if client:
            message["client"] = client
        if client_url:
            message["client_url"] = client_url
        message["links"] = [{"href": external_url, "text": "External URL"}]
        images = [{"src": image.url} for _, image in stored_images(self.images, alerts) if image.url]
        if images:
            message["images"] = images

        if tmpl.error is not None:
            self.log.warning("failed to template PagerDuty message: %s", tmpl.error)

        return message, event_type