"""
Configuration module for Lodestar-DNS.
"""

import os
import re
from pathlib import Path
from typing import List, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from lodestar_dns.controller.plan import POLICIES
from lodestar_dns.endpoint.domain_filter import DomainFilter
from lodestar_dns.provider.errors import ConfigurationError


class EndpointConfig(BaseModel):
    """A desired DNS record declared in the configuration file."""

    name: str
    type: str = "A"
    targets: List[str] = Field(default_factory=list)
    ttl: Optional[int] = None


class Config(BaseModel):
    """Configuration for Lodestar-DNS."""

    # Provider configuration
    provider: str = "pihole"
    pihole_server: str = ""
    pihole_password: str = ""
    pihole_tls_insecure_skip_verify: bool = False
    request_timeout: float = 30.0

    # Controller configuration
    interval: str = "1m"
    once: bool = False
    dry_run: bool = False
    policy: str = "sync"

    # Domain filtering
    domain_filter: List[str] = Field(default_factory=list)
    exclude_domains: List[str] = Field(default_factory=list)
    regex_domain_filter: str = ""
    regex_domain_exclusion: str = ""

    # Desired records
    endpoints: List[EndpointConfig] = Field(default_factory=list)

    # Logging configuration
    log_level: str = "info"

    @model_validator(mode="after")
    def _check_domain_filter_mode(self) -> "Config":
        has_list = bool(self.domain_filter or self.exclude_domains)
        has_regex = bool(self.regex_domain_filter or self.regex_domain_exclusion)
        if has_list and has_regex:
            raise ValueError("cannot have both domain list and regex")
        if self.policy not in POLICIES:
            raise ValueError(f"unknown policy: {self.policy}")
        return self

    def build_domain_filter(self) -> DomainFilter:
        """
        Build the DomainFilter described by this configuration.

        Returns:
            DomainFilter: Regex filter if a regex is set, suffix filter otherwise

        Raises:
            ConfigurationError: If a regex does not compile
        """
        if self.regex_domain_filter or self.regex_domain_exclusion:
            return DomainFilter.from_regex(
                self.regex_domain_filter, self.regex_domain_exclusion
            )
        return DomainFilter(self.domain_filter, self.exclude_domains)

    @classmethod
    def from_yaml(cls, config_path: Optional[Union[str, Path]] = None) -> "Config":
        """
        Load configuration from a YAML file.

        Args:
            config_path: Path to the YAML configuration file

        Returns:
            Config: Config instance populated with values from the YAML file

        Raises:
            ConfigurationError: If the file content is invalid
        """
        # Default configuration paths to check
        default_paths = [
            Path("./lodestar-dns.yaml"),
            Path("./lodestar-dns.yml"),
            Path("/etc/lodestar-dns/lodestar-dns.yaml"),
            Path("/etc/lodestar-dns/config.yaml"),
        ]

        if config_path:
            paths = [Path(config_path)]
        else:
            paths = default_paths

        # Load configuration from the first existing path
        config_data = {}
        for path in paths:
            if path.exists():
                with open(path, "r", encoding="utf-8") as f:
                    yaml_content = cls._substitute_env_vars(f.read())
                    config_data = yaml.safe_load(yaml_content) or {}
                break

        try:
            return cls(**cls._flatten_config(config_data))
        except ValidationError as e:
            raise ConfigurationError(f"invalid configuration: {e}") from e

    @staticmethod
    def _substitute_env_vars(content: str) -> str:
        """
        Substitute environment variables in the configuration content.

        Args:
            content: Configuration content

        Returns:
            str: Configuration content with environment variables substituted
        """
        # Pattern for ${ENV_VAR} or ${ENV_VAR:-default}
        pattern = r"\${([^}]+)}"

        def replace_env_var(match):
            env_var = match.group(1)
            if ":-" in env_var:
                env_var, default = env_var.split(":-", 1)
                return os.environ.get(env_var, default)
            return os.environ.get(env_var, "")

        return re.sub(pattern, replace_env_var, content)

    @staticmethod
    def _flatten_config(config_data: dict) -> dict:
        """
        Flatten nested configuration.

        Args:
            config_data: Nested configuration data

        Returns:
            dict: Flattened configuration data
        """
        flat_config = {}

        # Provider configuration
        provider = config_data.get("provider") or {}
        flat_config["provider"] = provider.get("name", "pihole")

        pihole = provider.get("pihole") or {}
        flat_config["pihole_server"] = pihole.get("server") or ""
        flat_config["pihole_password"] = pihole.get("password") or ""
        flat_config["pihole_tls_insecure_skip_verify"] = pihole.get(
            "tls_insecure_skip_verify", False
        )
        flat_config["request_timeout"] = pihole.get("request_timeout", 30.0)

        # Controller configuration
        controller = config_data.get("controller") or {}
        flat_config["interval"] = controller.get("interval", "1m")
        flat_config["once"] = controller.get("once", False)
        flat_config["dry_run"] = controller.get("dry_run", False)
        flat_config["policy"] = controller.get("policy", "sync")

        # Domain filtering
        domains = config_data.get("domains") or {}
        flat_config["domain_filter"] = domains.get("include") or []
        flat_config["exclude_domains"] = domains.get("exclude") or []
        flat_config["regex_domain_filter"] = domains.get("regex_include") or ""
        flat_config["regex_domain_exclusion"] = domains.get("regex_exclude") or ""

        flat_config["endpoints"] = config_data.get("endpoints") or []

        # Logging configuration
        logging = config_data.get("logging") or {}
        flat_config["log_level"] = logging.get("level", "info")

        return flat_config

    def parse_duration(self, duration_str: str) -> int:
        """
        Parse a duration string like '15m' into seconds.

        Args:
            duration_str: Duration string

        Returns:
            int: Duration in seconds
        """
        if not duration_str:
            return 60  # Default to 1 minute

        # Pattern for duration string (e.g., 15m, 1h, 30s)
        match = re.match(r"^(\d+)([smhd])?$", duration_str.strip())
        if not match:
            return 60  # Default to 1 minute

        value, unit = match.groups()
        value = int(value)

        if unit == "m":
            return value * 60
        elif unit == "h":
            return value * 60 * 60
        elif unit == "d":
            return value * 60 * 60 * 24
        return value
