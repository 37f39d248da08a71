"""Shared building blocks for alert receivers: alerts, templating and helpers."""

from __future__ import annotations

import hashlib
import json
import posixpath
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Iterator, Mapping
from urllib.parse import urlsplit, urlunsplit

ALERT_FIRING = "firing"
ALERT_RESOLVED = "resolved"

DEFAULT_MESSAGE_TITLE_EMBED = '{{ template "default.title" . }}'
DEFAULT_MESSAGE_EMBED = '{{ template "default.message" . }}'

_IMAGE_ANNOTATION = "__alertImageToken__"
IMAGE_TOKEN_ANNOTATION = _IMAGE_ANNOTATION


class ConfigError(ValueError):
    """Raised when receiver settings are missing or invalid."""


class TemplateError(ValueError):
    """Raised when a template cannot be parsed or executed."""


@dataclass
class Alert:
    """A single alert with its labels, annotations and time range."""

    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    starts_at: datetime | None = None
    ends_at: datetime | None = None

    def is_resolved(self) -> bool:
        if self.ends_at is None:
            return False
        ends_at = self.ends_at
        if ends_at.tzinfo is None:
            ends_at = ends_at.replace(tzinfo=timezone.utc)
        return ends_at <= datetime.now(timezone.utc)


@dataclass
class Metadata:
    """Identity of a configured receiver."""

    uid: str = ""
    name: str = ""
    type: str = ""
    disable_resolve_message: bool = False


@dataclass
class WebhookSettings:
    """An HTTP request that a sender is asked to perform."""

    url: str
    body: str
    http_method: str = "POST"
    http_header: dict[str, str] = field(default_factory=dict)


@dataclass
class Image:
    """A stored image attached to an alert."""

    token: str = field(default_factory=str)
    path: str = ""
    url: str = ""


class _AlertList(list):
    """List of alert contexts exposing Firing and Resolved subsets."""

    @property
    def Firing(self) -> "_AlertList":  # noqa: N802 - template field name
        return _AlertList(a for a in self if a["Status"] == ALERT_FIRING)

    @property
    def Resolved(self) -> "_AlertList":  # noqa: N802 - template field name
        return _AlertList(a for a in self if a["Status"] == ALERT_RESOLVED)


@dataclass
class TemplateData:
    """Data a notification template is executed against."""

    receiver: str = ""
    status: str = ALERT_RESOLVED
    alerts: list[Alert] = field(default_factory=list)
    group_labels: dict[str, str] = field(default_factory=dict)
    common_labels: dict[str, str] = field(default_factory=dict)
    common_annotations: dict[str, str] = field(default_factory=dict)
    external_url: str = ""

    def as_context(self) -> dict[str, Any]:
        alerts = _AlertList(
            {
                "Status": ALERT_RESOLVED if a.is_resolved() else ALERT_FIRING,
                "Labels": dict(a.labels),
                "Annotations": dict(a.annotations),
                "StartsAt": a.starts_at,
                "EndsAt": a.ends_at,
            }
            for a in self.alerts
        )
        return {
            "Receiver": self.receiver,
            "Status": self.status,
            "Alerts": alerts,
            "GroupLabels": dict(self.group_labels),
            "CommonLabels": dict(self.common_labels),
            "CommonAnnotations": dict(self.common_annotations),
            "ExternalURL": self.external_url,
        }


_ACTION = re.compile(r"\{\{(-\s)?(.*?)(\s-)?\}\}", re.DOTALL)
_LEXEME = re.compile(
    r"\s*(?:"
    r'(?P<str>"(?:\\.|[^"\\])*")'
    r"|(?P<raw>`[^`]*`)"
    r"|(?P<num>-?\d+(?:\.\d+)?)"
    r"|(?P<field>(?:\.[A-Za-z_]\w*)+|\.)"
    r"|(?P<pipe>\|)"
    r"|(?P<ident>[A-Za-z_]\w*)"
    r")"
)
_UNSUPPORTED = {"if", "else", "end", "range", "with", "define", "block", "break", "continue"}
_MISSING = object()


def _tokenize(text: str) -> list[tuple[str, str]]:
    lexemes = []
    pos = 0
    while pos < len(text):
        if text[pos:].strip() == "":
            break
        match = _LEXEME.match(text, pos)
        if not match or match.end() == pos:
            raise TemplateError(f"unexpected input in action: {text[pos:]!r}")
        kind = match.lastgroup
        lexemes.append((kind, match.group(kind)))
        pos = match.end()
    return lexemes


def _split_commands(lexemes: list[tuple[str, str]]) -> list[list[tuple[str, str]]]:
    commands: list[list[tuple[str, str]]] = [[]]
    for lexeme in lexemes:
        if lexeme[0] == "pipe":
            commands.append([])
        else:
            commands[-1].append(lexeme)
    if any(not c for c in commands):
        raise TemplateError("missing command in pipeline")
    return commands


def parse_template(text: str) -> list:
    """Parse template text into nodes, raising TemplateError on bad syntax."""
    nodes: list = []
    pos = 0
    trim_next = False
    for match in _ACTION.finditer(text):
        literal = text[pos:match.start()]
        if trim_next:
            literal = literal.lstrip()
        if match.group(1):
            literal = literal.rstrip()
        if "{{" in literal:
            raise TemplateError("unclosed action")
        if literal:
            nodes.append(literal)
        trim_next = bool(match.group(3))
        pos = match.end()
        body = match.group(2).strip()
        if body.startswith("/*") and body.endswith("*/"):
            continue
        lexemes = _tokenize(body)
        if not lexemes:
            raise TemplateError("missing value for command")
        kind, value = lexemes[0]
        if kind == "ident" and value in _UNSUPPORTED:
            raise TemplateError(f"unsupported action: {value}")
        if kind == "ident" and value == "template":
            if len(lexemes) < 2 or lexemes[1][0] not in ("str", "raw"):
                raise TemplateError("template name must be a string")
            name = _literal(lexemes[1])
            rest = lexemes[2:]
            nodes.append(("template", name, _split_commands(rest) if rest else None))
        else:
            nodes.append(("pipe", _split_commands(lexemes)))
    tail = text[pos:]
    if trim_next:
        tail = tail.lstrip()
    if "{{" in tail:
        raise TemplateError("unclosed action")
    if tail:
        nodes.append(tail)
    return nodes


def _literal(lexeme: tuple[str, str]) -> Any:
    kind, value = lexeme
    if kind == "str":
        return json.loads(value)
    if kind == "raw":
        return value[1:-1]
    if kind == "num":
        return float(value) if "." in value else int(value)
    raise TemplateError(f"not a literal: {value}")


def _length(value: Any) -> int:
    try:
        return len(value)
    except TypeError as exc:
        raise TemplateError(f"len of {type(value).__name__}") from exc


_FUNCS: dict[str, Callable[..., Any]] = {
    "len": _length,
    "eq": lambda a, *bs: any(a == b for b in bs),
    "ne": lambda a, b: a != b,
    "not": lambda a: not a,
    "and": lambda *xs: next((x for x in xs if not x), xs[-1]),
    "or": lambda *xs: next((x for x in xs if x), xs[-1]),
    "print": lambda *xs: "".join(_format(x) for x in xs),
    "toUpper": lambda s: str(s).upper(),
    "toLower": lambda s: str(s).lower(),
}


def _format(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _resolve(path: str, ctx: Any) -> Any:
    value = ctx
    for name in (p for p in path.split(".") if p):
        if value is None:
            return None
        if isinstance(value, Mapping):
            value = value.get(name)
        elif hasattr(value, name):
            value = getattr(value, name)
        else:
            raise TemplateError(f"can't evaluate field {name}")
    return value


@dataclass
class Template:
    """Executes notification templates; named templates live in ``templates``."""

    external_url: str = ""
    templates: dict[str, str] = field(default_factory=dict)

    def render(self, text: str, data: Any) -> str:
        context = data.as_context() if isinstance(data, TemplateData) else data
        return self._execute(parse_template(text), context)

    def _execute(self, nodes: list, context: Any) -> str:
        out = []
        for node in nodes:
            if isinstance(node, str):
                out.append(node)
            elif node[0] == "template":
                _, name, commands = node
                if name not in self.templates:
                    raise TemplateError(f'no such template "{name}"')
                arg = self._pipeline(commands, context) if commands else None
                out.append(self._execute(parse_template(self.templates[name]), arg))
            else:
                out.append(_format(self._pipeline(node[1], context)))
        return "".join(out)

    def _pipeline(self, commands: list, context: Any) -> Any:
        value: Any = _MISSING
        for command in commands:
            value = self._command(command, context, value)
        return value

    def _command(self, command: list, context: Any, piped: Any) -> Any:
        kind, name = command[0]
        if kind == "ident" and name in _FUNCS:
            args = [self._argument(t, context) for t in command[1:]]
            if piped is not _MISSING:
                args.append(piped)
            try:
                return _FUNCS[name](*args)
            except TemplateError:
                raise
            except (TypeError, IndexError, StopIteration) as exc:
                raise TemplateError(f"error calling {name}: {exc}") from exc
        if len(command) > 1 or piped is not _MISSING:
            raise TemplateError(f"can't give argument to non-function {name}")
        return self._argument(command[0], context)

    @staticmethod
    def _argument(lexeme: tuple[str, str], context: Any) -> Any:
        kind, value = lexeme
        if kind == "field":
            return _resolve(value, context)
        if kind == "ident":
            constants = {"nil": None, "true": True, "false": False}
            if value in constants:
                return constants[value]
            raise TemplateError(f'function "{value}" not defined')
        return _literal(lexeme)


def alerts_status(alerts: Iterable[Alert]) -> str:
    """Return "firing" if any alert fires, otherwise "resolved"."""
    return ALERT_FIRING if any(not a.is_resolved() for a in alerts) else ALERT_RESOLVED


def group_key_hash(key: str) -> str:
    """Hex SHA-256 of a group key, used for de-duplication."""
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def truncate_in_runes(text: str, max_runes: int) -> tuple[str, bool]:
    """Truncate to ``max_runes`` characters ending with an ellipsis."""
    if len(text) <= max_runes:
        return text, False
    return text[: max_runes - 1] + "…", True


def join_url_path(base: str, additional_path: str) -> str:
    """Append a path to the path of ``base``, keeping its query."""
    try:
        parts = urlsplit(base)
    except ValueError:
        return base
    joined = posixpath.normpath(posixpath.join(parts.path or "/", additional_path.lstrip("/")))
    if additional_path.endswith("/") and not joined.endswith("/"):
        joined += "/"
    return urlunsplit((parts.scheme, parts.netloc, joined, parts.query, parts.fragment))


def stored_images(
    provider: Callable[[str], Image | None] | None, alerts: Iterable[Alert]
) -> Iterator[tuple[int, Image]]:
    """Yield (alert index, image) for alerts that carry a stored image."""
    if provider is None:
        return
    for index, alert in enumerate(alerts):
        image_ref = alert.annotations.get(IMAGE_TOKEN_ANNOTATION)
        if not image_ref:
            continue
        image = provider(image_ref)
        if image is not None:
            yield index, image


def _common(maps: list[dict[str, str]]) -> dict[str, str]:
    if not maps:
        return {}
    common = dict(maps[0])
    for other in maps[1:]:
        common = {k: v for k, v in common.items() if other.get(k) == v}
    return common


def template_data(
    alerts: Iterable[Alert], external_url: str = "", group_labels: Mapping[str, str] | None = None
) -> TemplateData:
    """Build template data for a group of alerts."""
    alerts = list(alerts)
    return TemplateData(
        status=alerts_status(alerts),
        alerts=alerts,
        group_labels=dict(group_labels or {}),
        common_labels=_common([a.labels for a in alerts]),
        common_annotations=_common([a.annotations for a in alerts]),
        external_url=external_url,
    )


def parse_settings(json_data: str | bytes) -> dict[str, Any]:
    """Decode receiver settings JSON into a dict."""
    if isinstance(json_data, bytes):
        json_data = json_data.decode("utf-8")
    try:
        raw = json.loads(json_data)
    except ValueError as exc:
        raise ConfigError(f"failed to unmarshal settings: {exc}") from exc
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError("failed to unmarshal settings: expected a JSON object")
    return raw


def string_setting(raw: Mapping[str, Any], key: str) -> str:
    """Read an optional string setting, treating null as empty."""
    value = raw.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ConfigError(f"failed to unmarshal settings: {key} must be a string")
    return value