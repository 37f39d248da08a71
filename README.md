# alertreceivers

Builds alert notifications for Opsgenie, PagerDuty, Pushover and Sensu Go.
Each notification is handed to a webhook sender that you supply.

## Modules

- `alertreceivers.core` holds the shared pieces:
  - `Alert`, `Metadata`, `WebhookSettings`, `Image`, `TemplateData` and
    `Template`
  - helpers: `alerts_status`, `group_key_hash`, `truncate_in_runes`,
    `join_url_path`, `stored_images` and `template_data`
  - the exceptions `ConfigError` and `TemplateError`
- `alertreceivers.opsgenie_config`, `alertreceivers.pagerduty_config` and
  `alertreceivers.sensugo_config` each provide a `Config` dataclass and a
  `new_config` function. `new_config` reads JSON settings, fills in defaults,
  takes secrets from a `decrypt(key, fallback)` callback and raises
  `ConfigError` on invalid settings.
- `alertreceivers.opsgenie`, `alertreceivers.pagerduty`,
  `alertreceivers.pushover` and `alertreceivers.sensugo` each provide a
  `Notifier`. `alertreceivers.pushover` also holds its `Config` dataclass.

## Installation

```
pip install alertreceivers
```

## Configuration

```python
from alertreceivers import opsgenie_config, sensugo_config
from alertreceivers.core import ConfigError

secrets = {"apiKey": "placeholder"}

def decrypt(key, fallback):
    return secrets.get(key, fallback)

config = opsgenie_config.new_config('{"sendTagsAs": "both"}', decrypt)
print(config.api_url, config.send_tags_as, config.auto_close)

try:
    sensugo_config.new_config("{}", decrypt)
except ConfigError as err:
    print(err)  # could not find URL property in settings
```

For PagerDuty, `pagerduty_config.new_config` takes an optional
`get_hostname` callable. It supplies the default event source and defaults to
`socket.gethostname`. If it raises `OSError`, the client name is used as the
source instead.

## Sending notifications

A notifier is built from these parts:

- a config
- receiver `Metadata`
- a `Template`, which holds the external URL and any named templates
- a sender, which is any object with a `send_webhook(settings)` method taking a
  `WebhookSettings`
- an optional image provider
- an optional logger

An image provider is a callable. It takes the value of an alert's
`__alertImageToken__` annotation and returns an `Image` or `None`.

`notify(group_key, alerts)` builds the request and passes it to the sender. It
returns `True` when nothing more needs doing; failures are raised. The
notifiers handle sender failures differently:

- Opsgenie and PagerDuty wrap them in `RuntimeError`.
- Sensu Go and Pushover re-raise them unchanged.

```python
from alertreceivers import sensugo_config
from alertreceivers.core import Alert, Metadata, Template
from alertreceivers.sensugo import Notifier

class Sender:
    def send_webhook(self, settings):
        print(settings.url, settings.body)

config = sensugo_config.new_config(
    '{"url": "http://localhost", "apikey": "placeholder", "message": "{{ len .Alerts.Firing }} firing"}',
    lambda key, fallback: fallback,
)
notifier = Notifier(config, Metadata(), Template(external_url="http://localhost"), Sender())
notifier.notify("alertname", [Alert(labels={"alertname": "alert1"})])
```

The Sensu Go notifier takes a `clock` argument, which defaults to
`time.time`. It sets the event's `issued` timestamp.

Some notifiers can build their payload without sending it, which helps with
inspection and testing:

- Opsgenie: `build_message(group_key, alerts)` returns `(body, url)`. An empty
  URL means there is nothing to send.
- PagerDuty: `build_message(group_key, alerts)` returns `(message_dict, event_type)`.
- Pushover: `build_body(group_key, alerts)` returns `(headers, body)`. Pass
  `boundary` to the Pushover notifier to get a fixed multipart boundary. The
  body is a string; `body.encode("utf-8", "surrogateescape")` gives its exact
  bytes.

## Templates

`Template.render(text, data)` executes a small template language with these
features:

- field access, such as `.CommonLabels.severity` or `.Alerts.Firing`
- pipelines with `|`
- the functions `len`, `eq`, `ne`, `not`, `and`, `or`, `print`, `toUpper` and
  `toLower`
- comments
- `{{ template "name" . }}` calls, which look up `Template.templates`

Control structures such as `if`, `range` and `with` raise `TemplateError`.

## What this package does not do

- It performs no HTTP requests. Delivery is up to the sender you pass in.
- It ships no named templates. The defaults refer to `default.title`,
  `default.message` and `__text_alert_list`, and these must be provided in
  `Template.templates`. Without them, most fields render as empty strings, with
  a logged warning. PagerDuty custom details are the exception: they raise
  `TemplateError` when a named template is missing.
- There is no JSON settings parser for Pushover. Build its `Config` directly.
- There is no command-line program.