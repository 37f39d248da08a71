import re
from datetime import datetime, timezone

import pytest

from alertreceivers.core import Alert, Image, Metadata, Template
from alertreceivers.pushover import API_URL, MAX_FILE_SIZE, Config, Notifier

TEMPLATES = {
    "default.title": "[{{ .Status | toUpper }}:{{ .Alerts.Firing | len }}] {{ .CommonLabels.alertname }}",
    "default.message": "{{ len .Alerts }} alert(s) in group",
}

PNG_1 = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR first"
PNG_2 = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR second"


class FakeSender:
    def __init__(self, error=None):
        self.sent = []
        self.error = error

    def send_webhook(self, cmd):
        if self.error:
            raise self.error
        self.sent.append(cmd)


@pytest.fixture
def images(tmp_path):
    files = {}
    for token, data in (("test-image-1", PNG_1), ("test-image-2", PNG_2)):
        path = tmp_path / f"{token}.png"
        path.write_bytes(data)
        files[token] = Image(token=token, path=str(path), url=f"https://www.example.com/{token}.jpg")
    return files.get


def make_notifier(config, images=None, sender=None, boundary="abcd"):
    sender = sender or FakeSender()
    notifier = Notifier(
        config,
        Metadata(),
        Template(external_url="http://localhost", templates=TEMPLATES),
        sender,
        images,
        boundary=boundary,
    )
    return notifier, sender


def parse_form(body, boundary="abcd"):
    raw = body.encode("utf-8", "surrogateescape")
    assert raw.endswith(f"\r\n--{boundary}--\r\n".encode())
    fields = {}
    for chunk in raw.split(f"--{boundary}".encode())[1:-1]:
        chunk = chunk.removeprefix(b"\r\n").removesuffix(b"\r\n")
        head, _, value = chunk.partition(b"\r\n\r\n")
        name = re.search(rb'name="([^"]*)"', head).group(1).decode()
        fields[name] = value
    return fields


def single_alert():
    return [
        Alert(
            labels={"__alert_rule_uid__": "rule uid", "alertname": "alert1", "lbl1": "val1"},
            annotations={"ann1": "annv1", "__alertImageToken__": "test-image-1"},
        )
    ]


def sent_fields(sender):
    assert len(sender.sent) == 1
    return parse_form(sender.sent[0].body)


def test_single_alert_with_upload(images):
    notifier, sender = make_notifier(Config(user_key="placeholder", api_token="token"), images)
    assert notifier.notify("alertname", single_alert()) is True
    fields = sent_fields(sender)
    assert list(fields) == [
        "user", "token", "priority", "title", "url", "url_title", "message", "attachment", "sound", "html",
    ]
    assert fields == {
        "user": b"placeholder",
        "token": b"token",
        "priority": b"0",
        "title": b"[FIRING:1] alert1",
        "url": b"http://localhost/alerting/list",
        "url_title": b"Show alert rule",
        "message": b"1 alert(s) in group",
        "attachment": PNG_1,
        "sound": b"",
        "html": b"1",
    }
    cmd = sender.sent[0]
    assert cmd.url == API_URL
    assert cmd.http_header == {"Content-Type": "multipart/form-data; boundary=abcd"}


def test_upload_false_skips_attachment(images):
    config = Config(user_key="placeholder", api_token="token", upload=False)
    notifier, sender = make_notifier(config, images)
    notifier.notify("alertname", single_alert())
    fields = sent_fields(sender)
    assert "attachment" not in fields
    assert fields["message"] == b"1 alert(s) in group"


def test_custom_title(images):
    config = Config(user_key="placeholder", api_token="token", title="Alerts firing: {{ len .Alerts.Firing }}")
    notifier, sender = make_notifier(config, images)
    notifier.notify("alertname", single_alert())
    assert sent_fields(sender)["title"] == b"Alerts firing: 1"


def test_custom_config_with_multiple_alerts(images):
    config = Config(
        user_key="placeholder",
        api_token="token",
        alerting_priority=2,
        retry=30,
        expire=86400,
        device="device",
        alerting_sound="echo",
        ok_sound="magic",
        message="{{ len .Alerts.Firing }} alerts are firing, {{ len .Alerts.Resolved }} are resolved",
    )
    alerts = [
        Alert(labels={"alertname": "alert1", "lbl1": "val1"}, annotations={"__alertImageToken__": "test-image-1"}),
        Alert(labels={"alertname": "alert1", "lbl1": "val2"}, annotations={"__alertImageToken__": "test-image-2"}),
    ]
    notifier, sender = make_notifier(config, images)
    notifier.notify("alertname", alerts)
    fields = sent_fields(sender)
    assert fields["priority"] == b"2"
    assert fields["retry"] == b"30"
    assert fields["expire"] == b"86400"
    assert fields["device"] == b"device"
    assert fields["sound"] == b"echo"
    assert fields["title"] == b"[FIRING:2] alert1"
    assert fields["message"] == b"2 alerts are firing, 0 are resolved"
    assert fields["attachment"] == PNG_1


def test_resolved_uses_ok_priority_and_sound():
    config = Config(user_key="placeholder", api_token="token", ok_priority=1, ok_sound="magic", alerting_sound="echo")
    alerts = [Alert(labels={"alertname": "a"}, ends_at=datetime(2000, 1, 1, tzinfo=timezone.utc))]
    notifier, sender = make_notifier(config)
    notifier.notify("alertname", alerts)
    fields = sent_fields(sender)
    assert fields["priority"] == b"1"
    assert fields["sound"] == b"magic"
    assert "retry" not in fields


def test_default_sound_is_omitted():
    config = Config(user_key="placeholder", api_token="token", alerting_sound="default")
    notifier, sender = make_notifier(config)
    notifier.notify("alertname", single_alert())
    assert "sound" not in sent_fields(sender)


def test_empty_message_is_replaced():
    config = Config(user_key="placeholder", api_token="token", message="   ")
    notifier, sender = make_notifier(config)
    notifier.notify("alertname", single_alert())
    assert sent_fields(sender)["message"] == b"(no details)"


def test_long_title_is_truncated():
    config = Config(user_key="placeholder", api_token="token", title="x" * 300)
    notifier, sender = make_notifier(config)
    notifier.notify("alertname", single_alert())
    assert sent_fields(sender)["title"].decode("utf-8") == "x" * 249 + "…"


def test_too_large_image_is_not_attached(tmp_path):
    path = tmp_path / "big.png"
    path.write_bytes(b"\0" * (MAX_FILE_SIZE + 1))

    def provider(token):
        return Image(token=token, path=str(path))

    notifier, sender = make_notifier(Config(user_key="placeholder", api_token="token"), provider)
    notifier.notify("alertname", single_alert())
    fields = sent_fields(sender)
    assert "attachment" not in fields
    assert fields["html"] == b"1"


def test_invalid_boundary_raises():
    notifier, sender = make_notifier(Config(user_key="placeholder", api_token="token"), boundary="bad\tboundary")
    with pytest.raises(ValueError, match="invalid boundary"):
        notifier.notify("alertname", single_alert())
    assert sender.sent == []


def test_random_boundary_used_by_default():
    notifier, _ = make_notifier(Config(user_key="placeholder", api_token="token"), boundary=None)
    headers, body = notifier.build_body("alertname", single_alert())
    boundary = headers["Content-Type"].removeprefix("multipart/form-data; boundary=")
    assert len(boundary) == 60
    assert parse_form(body, boundary)["html"] == b"1"


def test_sender_failure_propagates():
    notifier, _ = make_notifier(Config(user_key="placeholder", api_token="token"), sender=FakeSender(OSError("boom")))
    with pytest.raises(OSError, match="boom"):
        notifier.notify("alertname", single_alert())


def test_send_resolved_follows_metadata():
    notifier = Notifier(
        Config(user_key="placeholder", api_token="token"),
        Metadata(disable_resolve_message=True),
        Template(),
        FakeSender(),
    )
    assert notifier.send_resolved() is False