import copy
import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from omegaconf import OmegaConf
from omegaconf.errors import InterpolationResolutionError

from flotilla.constants import (
    DEFAULT_API_URL,
    DEFAULT_SSH_USERNAME,
    EPHEMERAL_ENTRYPOINT,
    EPHEMERAL_GUEST_PRESET,
    GUEST_PRESETS,
    HEALTH_CHECK_TIMEOUT_SECONDS,
    LEASE_TTL_SECONDS,
    METADATA_PROCESS_GROUP,
    PROCESS_GROUP_EPHEMERAL_RUNNER,
    START_WAIT_TIMEOUT_SECONDS,
    STOP_TIMEOUT_SECONDS,
    UPDATE_WAIT_TIMEOUT_SECONDS,
    RestartPolicy,
)

logger = logging.getLogger(__name__)

TIMEOUT_FIELDS = (
    "lease_ttl",
    "update_wait_timeout",
    "start_wait_timeout",
    "stop_timeout",
    "health_check_timeout",
)

ENV_OVERRIDES = {
    "app": "FLOTILLA_APP",
    "api_url": "FLOTILLA_API_URL",
    "api_token": "FLOTILLA_API_TOKEN",
}


class ConfigLoader:
    """Load flotilla.yaml and build machine configurations from it."""

    def __init__(self) -> None:
        self.BUILT_IN_DEFAULTS = {
            "app": None,
            "api_url": DEFAULT_API_URL,
            "api_token": None,
            "primary_region": None,
            "env": {},
            "commands": {},
            "ssh_username": DEFAULT_SSH_USERNAME,
            "ssh_key_file": None,
            "ssh_port": 22,
            "lease_ttl": LEASE_TTL_SECONDS,
            "update_wait_timeout": UPDATE_WAIT_TIMEOUT_SECONDS,
            "start_wait_timeout": START_WAIT_TIMEOUT_SECONDS,
            "stop_timeout": STOP_TIMEOUT_SECONDS,
            "health_check_timeout": HEALTH_CHECK_TIMEOUT_SECONDS,
        }

    def load_config(self, config_path: str | None = None) -> dict[str, Any]:
        """Load configuration from YAML file.

        Parameters
        ----------
        config_path : str | None
            Path to YAML config file. If None, checks FLOTILLA_CONFIG env var,
            then falls back to flotilla.yaml

        Returns
        -------
        dict[str, Any]
            Parsed configuration with all variable interpolations resolved,
            empty if the file does not exist

        Raises
        ------
        ValueError
            If the file is not valid YAML or a variable cannot be resolved
        RuntimeError
            If the file exists but cannot be read
        """
        if config_path is None:
            config_path = os.environ.get("FLOTILLA_CONFIG", "flotilla.yaml")

        config_file = Path(config_path)

        if not config_file.exists():
            logger.debug("No config file at %s, using defaults", config_file)
            return {}

        try:
            cfg = OmegaConf.load(config_file)
        except yaml.YAMLError as e:
            logger.error("Failed to parse YAML config file %s: %s", config_file, e)
            raise ValueError(f"Invalid YAML in {config_file}: {e}") from e
        except OSError as e:
            logger.error("Failed to read config file %s: %s", config_file, e)
            raise RuntimeError(f"Failed to read config file {config_file}: {e}") from e

        if cfg is None:
            return {}

        if "vars" in cfg:
            vars_dict = OmegaConf.to_container(cfg.vars, resolve=False)
            for key, value in vars_dict.items():
                if key not in cfg:
                    cfg[key] = value

        try:
            config = OmegaConf.to_container(cfg, resolve=True, throw_on_missing=True)
        except InterpolationResolutionError as e:
            logger.error("Failed to resolve configuration variables: %s", e)
            raise ValueError(f"Configuration variable resolution error: {e}") from e

        config.pop("vars", None)
        return config

    def get_app_config(
        self, config: dict[str, Any], app_name: str | None = None
    ) -> dict[str, Any]:
        """Merge built-in defaults, environment overrides and file settings.

        Parameters
        ----------
        config : dict[str, Any]
            Configuration loaded from YAML
        app_name : str | None
            App name taking precedence over every other source

        Returns
        -------
        dict[str, Any]
            Merged app configuration
        """
        merged = copy.deepcopy(self.BUILT_IN_DEFAULTS)

        for key, value in config.items():
            merged[key] = value

        for key, env_var in ENV_OVERRIDES.items():
            value = os.environ.get(env_var)
            if value:
                merged[key] = value

        if app_name:
            merged["app"] = app_name

        return merged

    def validate_config(self, config: dict[str, Any]) -> None:
        """Validate an app configuration.

        Parameters
        ----------
        config : dict[str, Any]
            Merged app configuration

        Raises
        ------
        ValueError
            If configuration is invalid
        """
        app = config.get("app")
        if not app or not isinstance(app, str):
            raise ValueError("app is required (set 'app' in flotilla.yaml or FLOTILLA_APP)")

        if not re.match(r"^[a-z0-9][a-z0-9-]*$", app):
            raise ValueError(
                f"Invalid app name '{app}'. Use lowercase letters, numbers and hyphens."
            )

        for field in ("env", "commands"):
            value = config.get(field)
            if value is None:
                continue
            if not isinstance(value, dict):
                raise ValueError(f"{field} must be a mapping")
            for key, item in value.items():
                if not isinstance(item, str):
                    raise ValueError(f"{field} entry '{key}' must be a string")

        for field in TIMEOUT_FIELDS:
            value = config.get(field)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise ValueError(f"{field} must be a positive number")

        if not isinstance(config.get("ssh_port"), int):
            raise ValueError("ssh_port must be an integer")

    def ephemeral_runner_config(
        self, app_config: dict[str, Any], image: str
    ) -> dict[str, Any]:
        """Build the machine configuration of an ephemeral runner.

        The machine runs an idle entrypoint that keeps it reachable over SSH,
        is never restarted, destroys itself once stopped and is left out of
        DNS.

        Parameters
        ----------
        app_config : dict[str, Any]
            Merged app configuration
        image : str
            Image reference of the app's current release

        Returns
        -------
        dict[str, Any]
            Machine configuration ready to launch
        """
        env = dict(app_config.get("env") or {})
        env["SSH_LISTEN"] = "[::1]:22"
        if app_config.get("primary_region"):
            env["PRIMARY_REGION"] = app_config["primary_region"]

        return {
            "image": image,
            "guest": dict(GUEST_PRESETS[EPHEMERAL_GUEST_PRESET]),
            "init": {
                "cmd": ["sleep", "infinity"],
                "entrypoint": list(EPHEMERAL_ENTRYPOINT),
            },
            "restart": {"policy": RestartPolicy.NO.value},
            "auto_destroy": True,
            "dns": {"skip_registration": True},
            "env": env,
            "metadata": {METADATA_PROCESS_GROUP: PROCESS_GROUP_EPHEMERAL_RUNNER},
        }


def apply_config_delta(current: dict[str, Any], delta: dict[str, Any]) -> dict[str, Any]:
    """Deep-merge a configuration delta into a machine configuration.

    Mappings are merged key by key, any other value in the delta replaces the
    current one. Neither argument is modified.

    Parameters
    ----------
    current : dict[str, Any]
        Current machine configuration
    delta : dict[str, Any]
        Changes to apply

    Returns
    -------
    dict[str, Any]
        New machine configuration
    """
    merged = OmegaConf.merge(OmegaConf.create(current), OmegaConf.create(delta))
    return OmegaConf.to_container(merged, resolve=False)
