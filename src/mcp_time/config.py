"""
Configuration management for the Time MCP Server.

This module implements the AppConfig Pydantic model and configuration loading.

Configuration is loaded from multiple sources with layered precedence:
1. Built-in defaults (Pydantic model defaults)
2. YAML config file (/etc/time-mcp-server/config.yml or --config path)
3. Environment variables (TIME_MCP_* prefix, __ for nesting)
4. Command-line arguments (highest precedence)
"""

from __future__ import annotations

import argparse
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from mcp_time.errors import InvalidTimezoneError
from mcp_time.timeutils import resolve_timezone

DEFAULT_CONFIG_PATH = Path("/etc/time-mcp-server/config.yml")
DEFAULT_ENV_PREFIX = "TIME_MCP_"

_VALID_LOG_LEVELS = {"debug", "info", "warn", "warning", "error", "critical"}


def _normalize_log_level(v: str) -> str:
    v_lower = v.lower()
    if v_lower not in _VALID_LOG_LEVELS:
        raise ValueError(
            f"Invalid log level: {v}. Must be one of: {', '.join(sorted(_VALID_LOG_LEVELS))}"
        )
    if v_lower == "warn":
        return "warning"
    return v_lower


def _split_comma_list(v: Any) -> Any:
    # Environment values arrive as "a,b" or a single "a"
    if isinstance(v, str):
        return [item.strip() for item in v.split(",") if item.strip()]
    return v


# =============================================================================
# Server Configuration
# =============================================================================


class ServerConfig(BaseModel):
    """Server settings configuration.

    Attributes:
        transport: Transport selector ('stdio' or 'http').
        host: HTTP bind address.
        port: HTTP bind port.
        default_timezone: Timezone used when a tool call omits one.
        log_level: Initial application log level.
    """

    transport: str = Field(
        default="stdio",
        description="Transport type: 'stdio' or 'http'",
    )
    host: str = Field(
        default="localhost",
        description="Host to bind the HTTP server to",
    )
    port: int = Field(
        default=8080,
        description="Port to bind the HTTP server to",
        ge=0,
        le=65535,
    )
    default_timezone: str = Field(
        default="UTC",
        description="IANA timezone used when a tool call does not name one",
    )
    log_level: str = Field(
        default="info",
        description="Log level: debug, info, warn, error",
    )

    @field_validator("transport")
    @classmethod
    def validate_transport(cls, v: str) -> str:
        """Validate the transport selector."""
        valid_transports = {"stdio", "http"}
        v_lower = v.lower()
        if v_lower not in valid_transports:
            raise ValueError(
                f"Invalid transport type: {v}. Must be one of: {', '.join(sorted(valid_transports))}"
            )
        return v_lower

    @field_validator("default_timezone")
    @classmethod
    def validate_default_timezone(cls, v: str) -> str:
        """Reject timezone identifiers missing from the IANA database."""
        try:
            resolve_timezone(v)
        except InvalidTimezoneError as e:
            raise ValueError(e.message) from e
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        return _normalize_log_level(v)


# =============================================================================
# Security Configuration
# =============================================================================


class ScopeRequirementsConfig(BaseModel):
    """Scopes a bearer token must carry for each gated endpoint family.

    Attributes:
        tools: Scopes required by POST /mcp/tools/call.
        resources: Scopes required by POST /mcp/resources/read.
        prompts: Scopes required by POST /mcp/prompts/get.
    """

    tools: list[str] = Field(
        default_factory=lambda: ["time:tools"],
        description="Scopes required to call tools",
    )
    resources: list[str] = Field(
        default_factory=lambda: ["time:resources"],
        description="Scopes required to read resources",
    )
    prompts: list[str] = Field(
        default_factory=lambda: ["time:prompts"],
        description="Scopes required to fetch prompts",
    )

    @field_validator("tools", "resources", "prompts", mode="before")
    @classmethod
    def split_scopes(cls, v: Any) -> Any:
        """Accept a comma-separated string for each scope list."""
        return _split_comma_list(v)


class SecurityConfig(BaseModel):
    """Bearer token verification settings for the HTTP transport.

    Exactly one source of verification material is normally configured:
    an HMAC ``secret``, a PEM ``public_key`` / ``public_key_path``, or a
    ``jwks_url``.

    Attributes:
        auth_enabled: Whether gated endpoints require a bearer token.
        algorithms: Accepted JWS algorithms.
        secret: Shared secret for HS* algorithms.
        public_key: Inline PEM public key for RS*/ES* algorithms.
        public_key_path: Path to a PEM public key file.
        jwks_url: URL of a JSON Web Key Set.
        jwks_cache_ttl_seconds: How long fetched JWKS keys are reused.
        audience: Expected 'aud' claim, if any.
        issuer: Expected 'iss' claim, if any.
        leeway_seconds: Clock skew tolerated on 'exp'/'nbf'.
        required_scopes: Per-endpoint scope requirements.
        token_cache_ttl_seconds: Verified-token cache TTL (0 disables the cache).
        token_cache_max_entries: Verified-token cache capacity.
    """

    auth_enabled: bool = Field(
        default=False,
        description="Require bearer tokens on tool/resource/prompt endpoints",
    )
    algorithms: list[str] = Field(
        default_factory=lambda: ["HS256", "RS256"],
        description="Accepted JWT signing algorithms",
    )
    secret: str | None = Field(
        default=None,
        description="Shared secret for HMAC-signed tokens",
    )
    public_key: str | None = Field(
        default=None,
        description="PEM-encoded public key for asymmetric tokens",
    )
    public_key_path: str | None = Field(
        default=None,
        description="Path to a PEM-encoded public key file",
    )
    jwks_url: str | None = Field(
        default=None,
        description="URL to fetch a JSON Web Key Set from",
    )
    jwks_cache_ttl_seconds: int = Field(
        default=3600,
        description="JWKS cache TTL in seconds",
        ge=60,
        le=86400,
    )
    audience: str | None = Field(
        default=None,
        description="Expected audience (aud) claim",
    )
    issuer: str | None = Field(
        default=None,
        description="Expected issuer (iss) claim",
    )
    leeway_seconds: int = Field(
        default=0,
        description="Allowed clock skew in seconds",
        ge=0,
        le=300,
    )
    required_scopes: ScopeRequirementsConfig = Field(
        default_factory=ScopeRequirementsConfig,
        description="Scopes required per endpoint family",
    )
    token_cache_ttl_seconds: int = Field(
        default=0,
        description="Verified-token cache TTL in seconds (0 disables caching)",
        ge=0,
        le=3600,
    )
    token_cache_max_entries: int = Field(
        default=1024,
        description="Maximum number of verified tokens kept in the cache",
        ge=1,
    )

    @field_validator("algorithms", mode="before")
    @classmethod
    def split_algorithms(cls, v: Any) -> Any:
        """Accept a comma-separated string of algorithms."""
        return _split_comma_list(v)

    @model_validator(mode="after")
    def validate_verification_material(self) -> SecurityConfig:
        """Authentication cannot be enabled without a way to verify tokens."""
        if self.auth_enabled and not (
            self.secret or self.public_key or self.public_key_path or self.jwks_url
        ):
            raise ValueError(
                "auth_enabled requires one of: secret, public_key, "
                "public_key_path, jwks_url"
            )
        return self


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level.
        json_format: Emit JSON lines instead of plain text.
    """

    level: str = Field(
        default="info",
        description="Log level",
    )
    json_format: bool = Field(
        default=True,
        description="Emit one JSON object per log line",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        return _normalize_log_level(v)


# =============================================================================
# Main Application Configuration
# =============================================================================


class AppConfig(BaseModel):
    """
    Main application configuration model.

    Built from defaults, YAML, environment and CLI layers by ``load_config``.
    The resulting value is validated once at startup and then only read.

    Attributes:
        server: Server and transport settings.
        security: Bearer token verification settings.
        logging: Logging configuration.
    """

    server: ServerConfig = Field(
        default_factory=ServerConfig,
        description="Server settings",
    )
    security: SecurityConfig = Field(
        default_factory=SecurityConfig,
        description="Authentication settings",
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration",
    )


# =============================================================================
# Configuration Loading Functions
# =============================================================================


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Args:
        base: The base dictionary.
        override: The dictionary with values to override.

    Returns:
        A new dictionary with merged values.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """
    Load configuration from a YAML file.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        yaml.YAMLError: If the YAML is invalid.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        return yaml.safe_load(f) or {}


def _load_env_config(prefix: str = DEFAULT_ENV_PREFIX) -> dict[str, Any]:
    """
    Load configuration from environment variables.

    - Prefix: TIME_MCP_ (configurable)
    - Nested keys: double underscore (__) separator
    - Values stay strings; pydantic coerces them per field
    - Example: TIME_MCP_SERVER__PORT=9000
    - The legacy ``OAUTH_ENABLED`` variable maps to security.auth_enabled.

    Args:
        prefix: Environment variable prefix.

    Returns:
        Dictionary with configuration values.
    """
    result: dict[str, Any] = {}

    legacy_auth = os.environ.get("OAUTH_ENABLED")
    if legacy_auth is not None:
        result["security"] = {"auth_enabled": legacy_auth.lower() == "true"}

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        config_key = key[len(prefix) :].lower()
        parts = config_key.split("__")

        current = result
        for part in parts[:-1]:
            if part not in current:
                current[part] = {}
            current = current[part]

        # Raw strings; each field's validator does the coercion
        current[parts[-1]] = value

    return result


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="time-mcp-server",
        description="Model Context Protocol server for time-related functionality",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        help="Path to configuration file",
    )
    parser.add_argument(
        "--transport",
        choices=["stdio", "http"],
        help="Transport type",
    )
    parser.add_argument(
        "--host",
        type=str,
        help="Host to bind HTTP server to",
    )
    parser.add_argument(
        "--port",
        type=int,
        help="Port to bind HTTP server to",
    )
    parser.add_argument(
        "--auth",
        dest="auth_enabled",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Require bearer tokens on the HTTP transport",
    )
    parser.add_argument(
        "--default-timezone",
        type=str,
        help="Timezone used when a tool call does not name one",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error"],
        help="Override log level",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    return parser


def _parse_cli_args(args: list[str] | None = None) -> dict[str, Any]:
    """
    Parse command-line arguments into a nested configuration dictionary.

    Args:
        args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Dictionary with parsed arguments. The config file path, if given, is
        stored under the ``_config_path`` key.
    """
    parsed = _build_arg_parser().parse_args(args)

    result: dict[str, Any] = {}
    server: dict[str, Any] = {}

    if parsed.config:
        result["_config_path"] = parsed.config
    if parsed.transport:
        server["transport"] = parsed.transport
    if parsed.host:
        server["host"] = parsed.host
    if parsed.port is not None:
        server["port"] = parsed.port
    if parsed.default_timezone:
        server["default_timezone"] = parsed.default_timezone
    if parsed.auth_enabled is not None:
        result["security"] = {"auth_enabled": parsed.auth_enabled}

    log_level = "debug" if parsed.debug else parsed.log_level
    if log_level:
        server["log_level"] = log_level
        result["logging"] = {"level": log_level}

    if server:
        result["server"] = server
    return result


def load_config(
    config_path: Path | str | None = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
    cli_args: list[str] | None = None,
) -> AppConfig:
    """
    Load configuration from all sources with layered precedence.

    Later sources override earlier ones: defaults, YAML file, environment,
    command line.

    Args:
        config_path: Path to YAML configuration file. If None, uses the CLI
            ``--config`` argument or the default path when it exists.
        env_prefix: Prefix for environment variables.
        cli_args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Fully validated AppConfig instance.

    Raises:
        FileNotFoundError: If a specified config file doesn't exist.
        ValidationError: If configuration is invalid.

    Example:
        >>> config = load_config(cli_args=["--transport", "http", "--port", "9000"])
        >>> config.server.port
        9000
    """
    config_dict: dict[str, Any] = {}

    cli_config = _parse_cli_args(cli_args)

    if config_path is None:
        if "_config_path" in cli_config:
            config_path = Path(cli_config.pop("_config_path"))
        elif DEFAULT_CONFIG_PATH.exists():
            config_path = DEFAULT_CONFIG_PATH
    else:
        cli_config.pop("_config_path", None)
        config_path = Path(config_path)

    if config_path is not None:
        config_dict = _deep_merge(config_dict, _load_yaml_config(config_path))

    config_dict = _deep_merge(config_dict, _load_env_config(env_prefix))
    config_dict = _deep_merge(config_dict, cli_config)

    config = AppConfig(**config_dict)

    # server.log_level is the single knob users set; keep logging.level in step
    # unless the logging section was configured explicitly.
    if "level" not in config_dict.get("logging", {}):
        config.logging.level = config.server.log_level

    return config
