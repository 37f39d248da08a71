"""Configuration parsers and notifiers for Opsgenie, PagerDuty, Pushover and Sensu Go alerts."""

__version__ = "0.1.0"
__all__ = ["core", "opsgenie", "opsgenie_config", "pagerduty", "pagerduty_config", "pushover", "sensugo", "sensugo_config"]