"""Config Loader - Reads RelayClient settings from a YAML file.

String values may reference the environment as ${NAME} or ${NAME:-fallback};
a reference with no fallback to an unset variable is an error. Keyword
overrides passed to load_client_config win over the file.

Example file:

    base_url: https://api.example.com/v1
    port: 8443
    cache_policy: reload_ignoring_local_cache_data
    log_level: summary
    headers:
      Authorization: Bearer ${API_TOKEN}
      X-Client: ${CLIENT_NAME:-http-relay}
    redact_headers: [Authorization]

validate_client_config() then reports settings that load fine but will be
ignored or are risky.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import httpx
import pydantic
import yaml

from http_relay.models import ClientConfig, LogLevel

ENV_REFERENCE = re.compile(r"\$\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?::-(?P<fallback>[^}]*))?\}")

LOCAL_HOSTS = {"localhost", "127.0.0.1", "::1"}


class ConfigError(Exception):
    """Raised when a config file cannot be turned into a ClientConfig."""


def load_client_config(config_path: Path | str, **overrides: Any) -> ClientConfig:
    """Build a ClientConfig from a YAML file, expanding environment references.

    Raises:
        ConfigError: Missing file, malformed YAML, a non-mapping document, an
            unset variable without fallback, or fields ClientConfig rejects.
    """
    path = Path(config_path)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e

    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(document, dict):
        raise ConfigError(f"{path} must contain a YAML mapping at the top level")

    settings = expand_env(document)
    settings.update(overrides)

    try:
        return ClientConfig.model_validate(settings)
    except pydantic.ValidationError as e:
        raise ConfigError(f"Invalid config structure in {path}: {e}") from e


def expand_env(value: Any) -> Any:
    """Expand ${NAME} / ${NAME:-fallback} in every string nested inside value."""
    if isinstance(value, str):
        return ENV_REFERENCE.sub(_resolve_reference, value)
    if isinstance(value, dict):
        return {key: expand_env(item) for key, item in value.items()}
    if isinstance(value, list):
        return [expand_env(item) for item in value]
    return value


def _resolve_reference(match: re.Match[str]) -> str:
    name, fallback = match.group("name"), match.group("fallback")
    resolved = os.environ.get(name, fallback)
    if resolved is None:
        raise ConfigError(f"Environment variable '{name}' is not set and has no fallback")
    return resolved


# =============================================================================
# Advisory checks
# =============================================================================


class ConfigIssue:
    """One finding about a loaded config; fatal issues make it unusable."""

    def __init__(self, category: str, message: str, fatal: bool = False) -> None:
        self.category = category
        self.message = message
        self.fatal = fatal

    def __str__(self) -> str:
        kind = "error" if self.fatal else "warning"
        return f"{kind} [{self.category}] {self.message}"


class ValidationResult:
    """Issues found by validate_client_config, split into errors and warnings."""

    def __init__(self) -> None:
        self.issues: list[ConfigIssue] = []

    def warn(self, field: str, message: str) -> None:
        self.issues.append(ConfigIssue(field, message))

    def fail(self, field: str, message: str) -> None:
        self.issues.append(ConfigIssue(field, message, fatal=True))

    @property
    def errors(self) -> list[ConfigIssue]:
        return [issue for issue in self.issues if issue.fatal]

    @property
    def warnings(self) -> list[ConfigIssue]:
        return [issue for issue in self.issues if not issue.fatal]

    @property
    def is_valid(self) -> bool:
        return not self.errors


def validate_client_config(config: ClientConfig) -> ValidationResult:
    """Report base URL problems (fatal) and ignored or risky settings (warnings).

    Warnings: query/fragment on the base URL (never sent), plain http to a
    non-local host, a port field that overrides a different port in the base
    URL, and redact_headers while logging is off.
    """
    result = ValidationResult()

    try:
        url = httpx.URL(config.base_url)
    except httpx.InvalidURL as e:
        result.fail("base_url", f"Cannot parse base_url '{config.base_url}': {e}")
        return result

    if not url.host:
        result.fail("base_url", f"base_url '{config.base_url}' has no host")
        return result

    if url.query or url.fragment:
        result.warn(
            "base_url",
            "Query string and fragment on base_url are ignored; "
            "put query items on each request instead.",
        )

    if url.scheme == "http" and url.host not in LOCAL_HOSTS:
        result.warn("base_url", f"base_url uses plain http for non-local host '{url.host}'.")

    if config.port is not None and url.port is not None and url.port != config.port:
        result.warn("port", f"port {config.port} overrides port {url.port} given in base_url.")

    if config.redact_headers and config.log_level == LogLevel.OFF:
        result.warn("redact_headers", "redact_headers has no effect while log_level is 'off'.")

    return result
