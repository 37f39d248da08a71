"""Notifier that creates and closes alerts in Opsgenie."""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable

from .core import (
    ALERT_RESOLVED,
    DEFAULT_MESSAGE_EMBED,
    DEFAULT_MESSAGE_TITLE_EMBED,
    Alert,
    Metadata,
    Template,
    TemplateError,
    WebhookSettings,
    alerts_status,
    group_key_hash,
    join_url_path,
    stored_images,
    template_data,
    truncate_in_runes,
)
from .opsgenie_config import SEND_BOTH, SEND_DETAILS, SEND_TAGS, Config

MAX_MESSAGE_LEN_RUNES = 130

VALID_PRIORITIES = frozenset({"P1", "P2", "P3", "P4", "P5"})

_SOURCE = "Grafana"


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


def _dumps(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))


class Notifier:
    """Sends alert notifications to Opsgenie."""

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

    def send_resolved(self) -> bool:
        return not self.meta.disable_resolve_message

    def _send_details(self) -> bool:
        return self.config.send_tags_as in (SEND_DETAILS, SEND_BOTH)

    def _send_tags(self) -> bool:
        return self.config.send_tags_as in (SEND_TAGS, SEND_BOTH)

    def notify(self, group_key: str, alerts: Iterable[Alert]) -> bool:
        """Send the notification; returns True when done or nothing needed sending."""
        alerts = list(alerts)
        self.log.debug("executing Opsgenie notification for %s", self.meta.name)
        if alerts_status(alerts) == ALERT_RESOLVED and not self.send_resolved():
            self.log.debug("not sending a trigger to Opsgenie: resolve messages disabled")
            return True

        body, url = self.build_message(group_key, alerts)
        if not url:
            # Resolved alerts without auto close need no request.
            return True

        cmd = WebhookSettings(
            url=url,
            body=body or "",
            http_method="POST",
            http_header={
                "Content-Type": "application/json",
                "Authorization": f"GenieKey {self.config.api_key}",
            },
        )
        try:
            self.sender.send_webhook(cmd)
        except Exception as exc:
            raise RuntimeError(f"send notification to Opsgenie: {exc}") from exc
        return True

    def build_message(self, group_key: str, alerts: Iterable[Alert]) -> tuple[str | None, str]:
        """Return the JSON body and the URL to post it to; ("", None) means skip."""
        alerts = list(alerts)
        key_hash = group_key_hash(group_key)
        cfg = self.config

        if alerts_status(alerts) == ALERT_RESOLVED:
            if not cfg.auto_close:
                return None, ""
            return _dumps({"source": _SOURCE}), f"{cfg.api_url}/{key_hash}/close?identifierType=alias"

        external_url = self.template.external_url
        rule_url = join_url_path(external_url, "/alerting/list")
        data = template_data(alerts, external_url)
        tmpl = _Expander(self.template, data.as_context())

        message, truncated = truncate_in_runes(tmpl(cfg.message), MAX_MESSAGE_LEN_RUNES)
        if truncated:
            self.log.warning("Truncated message for alert %s to %d runes", key_hash, MAX_MESSAGE_LEN_RUNES)

        description = tmpl(cfg.description)
        if not description.strip():
            description = (
                f"{tmpl(DEFAULT_MESSAGE_TITLE_EMBED)}\n{rule_url}\n\n{tmpl(DEFAULT_MESSAGE_EMBED)}"
            )

        priority = ""
        labels: dict[str, str] = {}
        for name, value in data.common_labels.items():
            labels[name] = tmpl(value)
            if name == "og_priority" and cfg.override_priority and value in VALID_PRIORITIES:
                priority = value

        if tmpl.error is not None:
            self.log.warning("failed to template Opsgenie message: %s", tmpl.error)
            tmpl.error = None

        details: dict[str, Any] = {"url": rule_url}
        if self._send_details():
            details.update(labels)
            image_urls = [image.url for _, image in stored_images(self.images, alerts) if image.url]
            if image_urls:
                details["image_urls"] = ", ".join(image_urls)

        tags = sorted(f"{k}:{v}" for k, v in labels.items()) if self._send_tags() else []

        responders = list(self._expand_responders(tmpl))

        payload: dict[str, Any] = {"alias": key_hash, "message": message}
        if description:
            payload["description"] = description
        payload["details"] = dict(sorted(details.items()))
        payload["source"] = _SOURCE
        if responders:
            payload["responders"] = responders
        payload["tags"] = tags
        if priority:
            payload["priority"] = priority

        api_url = tmpl(cfg.api_url)
        if tmpl.error is not None:
            self.log.warning(
                "failed to template Opsgenie URL: %s, falling back to %s", tmpl.error, cfg.api_url
            )
            api_url = cfg.api_url

        return _dumps(payload), api_url

    def _expand_responders(self, tmpl: _Expander):
        for idx, responder in enumerate(self.config.responders):
            expanded = {
                "id": tmpl(responder.id),
                "name": tmpl(responder.name),
                "username": tmpl(responder.username),
                "type": tmpl(responder.type),
            }
            if not any(expanded.values()):
                self.log.warning("responder %d expanded to an empty responder; skipping it", idx)
                continue
            if expanded["type"] == "teams":
                teams = [team for team in expanded["name"].split(",") if team]
                if not teams:
                    self.log.warning("teams responder %d expanded to no teams; skipping it", idx)
                for team in teams:
                    yield {"name": team, "type": "team"}
                continue
            yield {k: v for k, v in expanded.items() if v or k == "type"}