[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "alertreceivers"
version = "0.1.0"
description = "Alert notification receivers for Opsgenie, PagerDuty, Pushover and Sensu Go"
requires-python = ">=3.10"
dependencies = []
keywords = ["alerting", "notifications", "opsgenie", "pagerduty", "pushover", "sensu", "monitoring"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: System :: Monitoring",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["alertreceivers"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
