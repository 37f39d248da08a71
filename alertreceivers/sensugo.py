"""Notifier that posts events to a Sensu Go backend."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Iterable

from .core import (
    ALERT_FIRING,
    Alert,
    Metadata,
    Template,
    TemplateError,
    WebhookSettings,
    alerts_status,
    join_url_path,
    stored_images,
    template_data,
)
from .sensugo_config import Config

_CHECK_INTERVAL = 86400


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
    """Sends alert notifications to Sensu Go as events."""

    def __init__(
        self,
        config: Config,
        meta: Metadata,
        template: Template,
        sender: Any,
        images: Any = None,
        logger: logging.Logger | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.meta = meta
        self.template = template
        self.sender = sender
        self.images = images
        self.log = logger or logging.getLogger(__name__)
        self.clock = clock

    def send_resolved(self) -> bool:
        return not self.meta.disable_resolve_message

    def notify(self, group_key: str, alerts: Iterable[Alert]) -> bool:
        """Post one Sensu Go event describing the alert group."""
        alerts = list(alerts)
        self.log.debug("sending Sensu Go result for group %s", group_key)
        cfg = self.config
        external_url = self.template.external_url
        tmpl = _Expander(self.template, template_data(alerts, external_url).as_context())

        entity = tmpl(cfg.entity) or "default"
        check = tmpl(cfg.check) or "default"
        status = 2 if alerts_status(alerts) == ALERT_FIRING else 0
        namespace = tmpl(cfg.namespace) or "default"
        handlers = [tmpl(cfg.handler)] if cfg.handler else None

        labels: dict[str, str] = {}
        # Only one image can be attached per event.
        image_url = next((image.url for _, image in stored_images(self.images, alerts) if image.url), "")
        if image_url:
            labels["imageURL"] = image_url

        rule_url = join_url_path(external_url, "/alerting/list")
        labels["ruleURL"] = rule_url

        body = {
            "entity": {"metadata": {"name": entity, "namespace": namespace}},
            "check": {
                "metadata": {"name": check, "labels": labels},
                "output": tmpl(cfg.message),
                "issued": int(self.clock()),
                "interval": _CHECK_INTERVAL,
                "status": status,
                "handlers": handlers,
            },
            "ruleUrl": rule_url,
        }

        if tmpl.error is not None:
            self.log.warning("failed to template sensugo message: %s", tmpl.error)

        base_url = cfg.url.removesuffix("/")
        cmd = WebhookSettings(
            url=f"{base_url}/api/core/v2/namespaces/{namespace}/events",
            body=json.dumps(body, ensure_ascii=False, separators=(",", ":"), sort_keys=True),
            http_method="POST",
            http_header={
                "Content-Type": "application/json",
                "Authorization": f"Key {cfg.api_key}",
            },
        )
        try:
            self.sender.send_webhook(cmd)
        except Exception:
            self.log.error("failed to send Sensu Go event for %s", self.meta.name)
            raise
        return True