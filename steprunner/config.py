# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Configuration for step invocations.

Two layers feed a step invocation:

``ActionConfig``
    What the caller asked for: step name, flags, images and options.
    Loaded from a YAML file (default
    ``$XDG_CONFIG_HOME/steprunner/steprunner.yaml``) where ``!env`` tags
    resolve values from environment variables, then overridden by
    ``STEPRUNNER_<PARAM>`` environment variables (e.g.
    ``STEPRUNNER_DOCKER_IMAGE``). A ``.env`` file is loaded first if
    present.

``ContextConfig``
    Step-specific defaults reported by the step binary itself
    (``getConfig --contextConfig``). Explicit ``ActionConfig`` values
    always take precedence over these.

Example YAML::

    step_name: mavenBuild
    flags: --createBOM
    binary_path: /opt/steps/bin/step
    docker:
      image: maven:3.9
      options: --user 0
      env_vars:
        MAVEN_OPTS: -Xmx1g
    sidecar:
      image: postgres:16
"""

from __future__ import annotations

import json
import logging
import os
import shlex
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from platformdirs import user_config_path

from steprunner.dotenv_loader import APP_NAME, load_dotenv_once
from steprunner.engine import ExecutionEngine, ExecutionTarget
from steprunner.errors import ConfigurationError


logger = logging.getLogger(__name__)

#: Prefix of environment variables overriding YAML values.
ENV_PREFIX = "STEPRUNNER_"

#: Steps that never need context configuration.
_NO_CONTEXT_STEPS = frozenset({"version", "help", "getConfig", "getDefaults"})

_BOOL_TRUTHY = frozenset({"true", "1", "yes", "on"})
_BOOL_FALSY = frozenset({"false", "0", "no", "off", ""})


def get_config_path() -> Path:
    """Return the default config file path.

    Uses XDG: ``$XDG_CONFIG_HOME/steprunner/steprunner.yaml`` (typically
    ``~/.config/steprunner/steprunner.yaml``).
    """
    return user_config_path(APP_NAME) / "steprunner.yaml"


# ---------------------------------------------------------------------------
# YAML loading
# ---------------------------------------------------------------------------


class _EnvVar:
    """Placeholder for an unresolved ``!env VAR_NAME`` tag."""

    def __init__(self, var_name: str) -> None:
        self.var_name = var_name


def _env_constructor(loader: yaml.SafeLoader, node: yaml.Node) -> _EnvVar:
    """Handle ``!env VAR_NAME`` in YAML."""
    value = loader.construct_scalar(node)
    return _EnvVar(str(value))


def _make_loader() -> type[yaml.SafeLoader]:
    """Create a YAML loader that understands ``!env``."""

    class EnvLoader(yaml.SafeLoader):
        pass

    EnvLoader.add_constructor("!env", _env_constructor)
    return EnvLoader


def _load_yaml(config_path: Path) -> dict[str, Any]:
    """Read a YAML mapping, raising ConfigurationError on bad input."""
    try:
        with open(config_path) as f:
            raw = yaml.load(f, Loader=_make_loader())
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Invalid YAML in config file {config_path}: {e}"
        ) from e

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigurationError(
            f"Config file must be a YAML mapping: {config_path}"
        )
    return raw


def _resolve_str(value: object, environ: Mapping[str, str]) -> str:
    """Resolve a raw YAML value to a string (``!env`` aware)."""
    if isinstance(value, _EnvVar):
        return environ.get(value.var_name, "")
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        # Env var maps are handed on as JSON, like CLI input
        return json.dumps(
            _resolve_nested(value, environ), separators=(",", ":")
        )
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _resolve_nested(value: object, environ: Mapping[str, str]) -> object:
    if isinstance(value, _EnvVar):
        return environ.get(value.var_name, "")
    if isinstance(value, dict):
        return {str(k): _resolve_nested(v, environ) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_nested(v, environ) for v in value]
    return value


def _coerce_bool(value: str, name: str) -> bool:
    s = value.lower().strip()
    if s in _BOOL_TRUTHY:
        return True
    if s in _BOOL_FALSY:
        return False
    raise ConfigurationError(f"Cannot convert {name}={value!r} to bool")


# ---------------------------------------------------------------------------
# Action configuration
# ---------------------------------------------------------------------------

# (field name, YAML path, environment suffix)
_ACTION_FIELDS: tuple[tuple[str, tuple[str, ...], str], ...] = (
    ("step_name", ("step_name",), "STEP_NAME"),
    ("flags", ("flags",), "FLAGS"),
    ("docker_image", ("docker", "image"), "DOCKER_IMAGE"),
    ("docker_options", ("docker", "options"), "DOCKER_OPTIONS"),
    ("docker_env_vars", ("docker", "env_vars"), "DOCKER_ENV_VARS"),
    ("sidecar_image", ("sidecar", "image"), "SIDECAR_IMAGE"),
    ("sidecar_options", ("sidecar", "options"), "SIDECAR_OPTIONS"),
    ("sidecar_env_vars", ("sidecar", "env_vars"), "SIDECAR_ENV_VARS"),
    ("binary_path", ("binary_path",), "BINARY_PATH"),
    ("container_command", ("container_command",), "CONTAINER_COMMAND"),
    (
        "export_pipeline_environment",
        ("export_pipeline_environment",),
        "EXPORT_PIPELINE_ENVIRONMENT",
    ),
)


@dataclass(frozen=True)
class ActionConfig:
    """Caller-supplied settings for one step invocation.

    Empty strings mean "not set"; they fall back to the context
    configuration where one applies.

    Attributes:
        step_name: Step to run. Empty means only the setup steps run.
        flags: Step flags as one shell-style string.
        docker_image: Image for the main container.
        docker_options: Extra ``run`` options for the main container.
        docker_env_vars: JSON object of extra main container variables.
        sidecar_image: Image for the sidecar container.
        sidecar_options: Extra ``run`` options for the sidecar.
        sidecar_env_vars: JSON object of extra sidecar variables.
        binary_path: Path of the step binary, if already acquired.
        container_command: Container runtime CLI (docker or podman).
        export_pipeline_environment: Read the pipeline environment back
            from the binary after the step.
    """

    step_name: str = ""
    flags: str = ""
    docker_image: str = ""
    docker_options: str = ""
    docker_env_vars: str = ""
    sidecar_image: str = ""
    sidecar_options: str = ""
    sidecar_env_vars: str = ""
    binary_path: Path | None = None
    container_command: str = "docker"
    export_pipeline_environment: bool = False

    @property
    def flag_list(self) -> list[str]:
        """Step flags split shell-style (quotes group words)."""
        return shlex.split(self.flags)

    @classmethod
    def load(
        cls,
        config_path: Path | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> ActionConfig:
        """Load action configuration from YAML and the environment.

        Args:
            config_path: YAML file to read. When omitted the XDG default
                is used if it exists; an explicitly given file must exist.
            environ: Environment to read (defaults to ``os.environ``
                after ``.env`` loading).

        Returns:
            ActionConfig instance.

        Raises:
            ConfigurationError: If the file is missing, invalid, or a
                value cannot be coerced.
        """
        if environ is None:
            load_dotenv_once()
            environ = os.environ

        raw: dict[str, Any] = {}
        if config_path is not None:
            if not config_path.exists():
                raise ConfigurationError(
                    f"Config file not found: {config_path}"
                )
            raw = _load_yaml(config_path)
        else:
            default_path = get_config_path()
            if default_path.exists():
                raw = _load_yaml(default_path)

        values: dict[str, str] = {}
        for name, yaml_path, env_suffix in _ACTION_FIELDS:
            node: object = raw
            for key in yaml_path:
                node = node.get(key) if isinstance(node, dict) else None
            value = _resolve_str(node, environ)
            override = environ.get(ENV_PREFIX + env_suffix, "")
            if override:
                value = override
            values[name] = value

        binary_path = values.pop("binary_path")
        export_env = values.pop("export_pipeline_environment")
        container_command = values.pop("container_command") or "docker"

        config = cls(
            binary_path=Path(binary_path).expanduser() if binary_path else None,
            export_pipeline_environment=_coerce_bool(
                export_env, "export_pipeline_environment"
            ),
            container_command=container_command,
            **values,
        )
        logger.debug(
            "Action config loaded: step=%r, docker_image=%r, sidecar_image=%r",
            config.step_name,
            config.docker_image,
            config.sidecar_image,
        )
        return config


# ---------------------------------------------------------------------------
# Context configuration
# ---------------------------------------------------------------------------


def _options(value: object) -> str | tuple[str, ...]:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return tuple(str(v) for v in value)
    return str(value)


def _env_map(value: object) -> str | dict[str, object]:
    if value is None:
        return ""
    if isinstance(value, dict):
        return {str(k): v for k, v in value.items()}
    return str(value)


@dataclass(frozen=True)
class ContextConfig:
    """Step defaults reported by the step binary.

    Attributes:
        docker_image: Default main container image.
        docker_options: Default main container options (string or list).
        docker_env_vars: Default main container variables (mapping or JSON).
        docker_name: Network alias of the main container.
        sidecar_image: Default sidecar image.
        sidecar_options: Default sidecar options (string or list).
        sidecar_env_vars: Default sidecar variables (mapping or JSON).
        sidecar_name: Network alias of the sidecar.
    """

    docker_image: str = ""
    docker_options: str | tuple[str, ...] = ""
    docker_env_vars: str | dict[str, object] = ""
    docker_name: str = ""
    sidecar_image: str = ""
    sidecar_options: str | tuple[str, ...] = ""
    sidecar_env_vars: str | dict[str, object] = ""
    sidecar_name: str = ""

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> ContextConfig:
        """Build from the binary's camelCase JSON keys.

        Unknown keys are ignored.
        """
        return cls(
            docker_image=str(raw.get("dockerImage") or ""),
            docker_options=_options(raw.get("dockerOptions")),
            docker_env_vars=_env_map(raw.get("dockerEnvVars")),
            docker_name=str(raw.get("dockerName") or ""),
            sidecar_image=str(raw.get("sidecarImage") or ""),
            sidecar_options=_options(raw.get("sidecarOptions")),
            sidecar_env_vars=_env_map(raw.get("sidecarEnvVars")),
            sidecar_name=str(raw.get("sidecarName") or ""),
        )


def read_context_config(
    engine: ExecutionEngine,
    step_name: str,
    flags: Iterable[str] = (),
) -> ContextConfig:
    """Ask the step binary for the step's context configuration.

    Runs ``getConfig --contextConfig --stepName <step>`` on the host,
    forwarding ``--customConfig <path>`` when present in *flags*.

    Args:
        engine: Execution engine bound to the step binary.
        step_name: Step whose configuration is requested.
        flags: The step's own flags.

    Returns:
        Parsed context configuration (empty for built-in commands).

    Raises:
        ConfigurationError: If the binary fails or prints invalid JSON.
    """
    if step_name in _NO_CONTEXT_STEPS:
        return ContextConfig()

    config_flags = ["--contextConfig", "--stepName", step_name]
    flag_list = list(flags)
    if "--customConfig" in flag_list:
        idx = flag_list.index("--customConfig")
        if idx + 1 < len(flag_list):
            config_flags.extend(["--customConfig", flag_list[idx + 1]])

    result = engine.execute_operation(
        "getConfig", config_flags, ExecutionTarget.local()
    )
    if result.exit_code != 0:
        raise ConfigurationError(
            f"Can't get context config for {step_name}: "
            f"getConfig exited with {result.exit_code}"
        )

    try:
        raw = json.loads(result.output)
    except json.JSONDecodeError as e:
        raise ConfigurationError(
            f"Can't get context config for {step_name}: invalid JSON: {e}"
        ) from e
    if not isinstance(raw, dict):
        raise ConfigurationError(
            f"Can't get context config for {step_name}: expected an object"
        )
    return ContextConfig.from_dict(raw)
