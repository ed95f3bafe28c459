"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for oidc-cli:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.oidc-cli/`` on macOS and Windows. See :func:`get_config_dir` and
  :func:`get_data_dir`.
* **User config** -- A single :class:`~oidccli.models.UserConfig` JSON file
  storing defaults (authority, client ID, scope, port, ...).
* **Precedence resolution** -- :func:`resolve_flow_config` merges CLI
  flags, environment variables and the user config into the
  :class:`~oidccli.models.FlowConfig` for one run.

All file writes use an atomic temp-file-then-rename strategy
(:func:`_atomic_write`) to prevent data loss on crash or power failure.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from oidccli.exceptions import ConfigError, InvalidUsageError
from oidccli.models import FlowConfig, UserConfig

_APP_NAME = "oidc-cli"
_CONFIG_FILENAME = "config.json"

ENV_AUTHORITY = "OIDC_CLI_AUTHORITY"
ENV_CLIENT_ID = "OIDC_CLI_CLIENT_ID"
ENV_SCOPE = "OIDC_CLI_SCOPE"
ENV_PORT = "OIDC_CLI_PORT"
ENV_AUDIENCE = "OIDC_CLI_AUDIENCE"
ENV_TIMEOUT = "OIDC_CLI_TIMEOUT"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/oidc-cli/`` (default ``~/.config/oidc-cli/``).
    On macOS/Windows: ``~/.oidc-cli/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/oidc-cli/`` (default ``~/.local/share/oidc-cli/``).
    On macOS/Windows: ``~/.oidc-cli/logs/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX systems. On any failure the
    temp file is removed.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- User config ---


def user_config_path() -> Path:
    """Path to the user config file."""
    return get_config_dir() / _CONFIG_FILENAME


def load_user_config() -> UserConfig:
    """Load the user configuration from the config directory.

    Returns:
        The deserialised :class:`~oidccli.models.UserConfig`, or a default
        instance when the file does not exist.

    Raises:
        ConfigError: If the file exists but contains invalid JSON or fails
            Pydantic validation.
    """
    path = user_config_path()
    if not path.is_file():
        return UserConfig()
    try:
        text = path.read_text(encoding="utf-8")
        data = json.loads(text)
        return UserConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid config at {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Cannot read config at {path}: {exc}") from exc


def save_user_config(config: UserConfig) -> Path:
    """Persist the user configuration atomically to disk.

    Returns:
        The path written.

    Raises:
        ConfigError: If the file cannot be written.
    """
    path = user_config_path()
    data = config.model_dump(mode="json", exclude_none=True)
    try:
        _atomic_write(path, json.dumps(data, indent=2) + "\n")
    except OSError as exc:
        raise ConfigError(f"Cannot write config at {path}: {exc}") from exc
    return path


def save_flow_defaults(config: FlowConfig) -> Path:
    """Store the settings of *config* as the user's defaults for later runs."""
    return save_user_config(
        UserConfig(
            authority=config.authority,
            client_id=config.client_id,
            scope=config.scope,
            port=config.port,
            audience=config.audience,
            timeout=config.timeout,
            disable_endpoint_validation=config.disable_endpoint_validation,
            require_id_token_signature=config.require_id_token_signature,
        )
    )


# --- Precedence resolution ---


def _env(name: str) -> Optional[str]:
    value = os.environ.get(name, "").strip()
    return value or None


def _env_number(name: str, convert: type) -> Any:
    value = _env(name)
    if value is None:
        return None
    try:
        return convert(value)
    except ValueError as exc:
        raise InvalidUsageError(f"{name} must be a number, got {value!r}") from exc


def _first(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def resolve_flow_config(
    authority: Optional[str] = None,
    client_id: Optional[str] = None,
    scope: Optional[str] = None,
    port: Optional[int] = None,
    audience: Optional[str] = None,
    timeout: Optional[float] = None,
    diagnostics: bool = False,
    disable_endpoint_validation: bool = False,
    require_signature: bool = False,
    user_config: Optional[UserConfig] = None,
) -> FlowConfig:
    """Resolve the settings for one run with the full precedence chain.

    Precedence (high to low):
        1. CLI flags (the keyword arguments)
        2. Environment variables (``OIDC_CLI_AUTHORITY``, ``OIDC_CLI_CLIENT_ID``,
           ``OIDC_CLI_SCOPE``, ``OIDC_CLI_PORT``, ``OIDC_CLI_AUDIENCE``,
           ``OIDC_CLI_TIMEOUT``)
        3. User config (``~/.config/oidc-cli/config.json``)
        4. Defaults

    Boolean switches are on when either the flag or the user config turns
    them on.

    Raises:
        InvalidUsageError: If the authority or client ID is missing, or a
            resolved value is invalid.
        ConfigError: If the user config file is unreadable or invalid.
    """
    user = user_config if user_config is not None else load_user_config()

    values: dict[str, Any] = {
        "authority": _first(authority, _env(ENV_AUTHORITY), user.authority),
        "client_id": _first(client_id, _env(ENV_CLIENT_ID), user.client_id),
        "scope": _first(scope, _env(ENV_SCOPE), user.scope),
        "port": _first(port, _env_number(ENV_PORT, int), user.port),
        "audience": _first(audience, _env(ENV_AUDIENCE), user.audience),
        "timeout": _first(timeout, _env_number(ENV_TIMEOUT, float), user.timeout),
        "diagnostics": diagnostics,
        "disable_endpoint_validation": (
            disable_endpoint_validation or user.disable_endpoint_validation
        ),
        "require_id_token_signature": (
            require_signature or user.require_id_token_signature
        ),
    }

    if not values["authority"]:
        raise InvalidUsageError(
            f"Missing authority: pass --authority or set {ENV_AUTHORITY}"
        )
    if not values["client_id"]:
        raise InvalidUsageError(
            f"Missing client ID: pass --clientId or set {ENV_CLIENT_ID}"
        )

    try:
        return FlowConfig.model_validate(
            {key: value for key, value in values.items() if value is not None}
        )
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
            for err in exc.errors()
        )
        raise InvalidUsageError(f"Invalid settings: {problems}") from exc
