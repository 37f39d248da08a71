"""Notifier that sends messages through the Pushover API."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from pathlib import Path
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
    join_url_path,
    stored_images,
    template_data,
    truncate_in_runes,
)

MAX_FILE_SIZE = 1 << 21
MAX_TITLE_LEN_RUNES = 250
MAX_MESSAGE_LEN_RUNES = 1024
MAX_URL_LEN_RUNES = 512

API_URL = "https://api.pushover.net/1/messages.json"

_BOUNDARY_EXTRA = set("'()+_,-./:=?")
_NEEDS_QUOTING = set('()<>@,;:\\"/[]?= ')


@dataclass
class Config:
    """Pushover settings."""

    user_key: str
    api_token: str
    alerting_priority: int = 0
    ok_priority: int = 0
    retry: int = 0
    expire: int = 0
    device: str = ""
    alerting_sound: str = ""
    ok_sound: str = ""
    upload: bool = True
    title: str = DEFAULT_MESSAGE_TITLE_EMBED
    message: str = DEFAULT_MESSAGE_EMBED


def _validate_boundary(boundary: str) -> None:
    if not 1 <= len(boundary) <= 70:
        raise ValueError("mime: invalid boundary length")
    last = len(boundary) - 1
    for index, char in enumerate(boundary):
        if char.isascii() and char.isalnum() or char in _BOUNDARY_EXTRA:
            continue
        if char == " " and index != last:
            continue
        raise ValueError("mime: invalid boundary character")


def _escape_quotes(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')


class _FormWriter:
    """Builds a multipart/form-data body."""

    def __init__(self, boundary: str) -> None:
        self.boundary = boundary
        self._buf = bytearray()

    @property
    def content_type(self) -> str:
        boundary = self.boundary
        if any(c in _NEEDS_QUOTING for c in boundary):
            boundary = f'"{boundary}"'
        return f"multipart/form-data; boundary={boundary}"

    def _part(self, headers: list[str], data: bytes) -> None:
        if self._buf:
            self._buf += b"\r\n"
        self._buf += f"--{self.boundary}\r\n".encode()
        for header in headers:
            self._buf += header.encode("utf-8") + b"\r\n"
        self._buf += b"\r\n" + data

    def field(self, name: str, value: str) -> None:
        self._part([f'Content-Disposition: form-data; name="{_escape_quotes(name)}"'], value.encode("utf-8"))

    def file(self, name: str, filename: str, data: bytes) -> None:
        self._part(
            [
                f'Content-Disposition: form-data; name="{_escape_quotes(name)}"; '
                f'filename="{_escape_quotes(filename)}"',
                "Content-Type: application/octet-stream",
            ],
            data,
        )

    def close(self) -> bytes:
        if self._buf:
            self._buf += b"\r\n"
        self._buf += f"--{self.boundary}--\r\n".encode()
        return bytes(self._buf)


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
    """Sends alert notifications to Pushover as multipart form posts."""

    def __init__(
        self,
        config: Config,
        meta: Metadata,
        template: Template,
        sender: Any,
        images: Any = None,
        logger: logging.Logger | None = None,
        boundary: str | None = None,
    ) -> None:
        self.config = config
        self.meta = meta
        self.template = template
        self.sender = sender
        self.images = images
        self.log = logger or logging.getLogger(__name__)
        self.boundary = boundary
        self.api_url = API_URL

    def send_resolved(self) -> bool:
        return not self.meta.disable_resolve_message

    def notify(self, group_key: str, alerts: Iterable[Alert]) -> bool:
        """Post the notification to Pushover."""
        try:
            headers, body = self.build_body(group_key, alerts)
        except ValueError as exc:
            self.log.error("Failed to generate body for pushover: %s", exc)
            raise
        cmd = WebhookSettings(url=self.api_url, body=body, http_method="POST", http_header=headers)
        try:
            self.sender.send_webhook(cmd)
        except Exception as exc:
            self.log.error("failed to send pushover notification for %s: %s", self.meta.name, exc)
            raise
        return True

    def build_body(self, group_key: str, alerts: Iterable[Alert]) -> tuple[dict[str, str], str]:
        """Return the request headers and the multipart body.

        Binary attachment bytes are carried in the body string as surrogate escapes;
        ``body.encode("utf-8", "surrogateescape")`` gives the exact bytes.
        """
        alerts = list(alerts)
        cfg = self.config
        boundary = self.boundary or secrets.token_hex(30)
        _validate_boundary(boundary)
        form = _FormWriter(boundary)

        external_url = self.template.external_url
        tmpl = _Expander(self.template, template_data(alerts, external_url).as_context())

        form.field("user", tmpl(cfg.user_key))
        form.field("token", cfg.api_token)

        title, truncated = truncate_in_runes(tmpl(cfg.title), MAX_TITLE_LEN_RUNES)
        if truncated:
            self.log.warning("Truncated title for %s to %d runes", group_key, MAX_TITLE_LEN_RUNES)
        message, truncated = truncate_in_runes(tmpl(cfg.message), MAX_MESSAGE_LEN_RUNES)
        if truncated:
            self.log.warning("Truncated message for %s to %d runes", group_key, MAX_MESSAGE_LEN_RUNES)
        # Pushover rejects empty messages.
        message = message.strip() or "(no details)"

        url, truncated = truncate_in_runes(join_url_path(external_url, "/alerting/list"), MAX_URL_LEN_RUNES)
        if truncated:
            self.log.warning("Truncated URL for %s to %d runes", group_key, MAX_URL_LEN_RUNES)

        resolved = alerts_status(alerts) == ALERT_RESOLVED
        priority = cfg.ok_priority if resolved else cfg.alerting_priority
        form.field("priority", str(priority))
        if priority == 2:
            form.field("retry", str(cfg.retry))
            form.field("expire", str(cfg.expire))

        if cfg.device:
            form.field("device", tmpl(cfg.device))

        form.field("title", title)
        form.field("url", url)
        form.field("url_title", "Show alert rule")
        form.field("message", message)

        if cfg.upload:
            self._write_image_part(form, alerts)
        else:
            self.log.debug("skip uploading image because of the configuration")

        sound = tmpl(cfg.ok_sound if resolved else cfg.alerting_sound)
        if sound != "default":
            form.field("sound", sound)

        form.field("html", "1")
        body = form.close()

        if tmpl.error is not None:
            self.log.warning("failed to template pushover message: %s", tmpl.error)

        return {"Content-Type": form.content_type}, body.decode("utf-8", "surrogateescape")

    def _write_image_part(self, form: _FormWriter, alerts: list[Alert]) -> None:
        # Pushover accepts at most one attachment.
        for _, image in stored_images(self.images, alerts):
            try:
                path = Path(image.path)
                size = path.stat().st_size
                if size > MAX_FILE_SIZE:
                    raise ValueError(f"image would exceeded maximum file size: {size}")
                data = path.read_bytes()
            except (OSError, ValueError) as exc:
                self.log.error("failed to fetch image for the notification: %s", exc)
                return
            form.file("attachment", image.path, data)
            return