"""Load, validate, and hot-reload the FieldSync policy file.

The policy lives in ``policy.yaml`` alongside this module (or at the path named
by ``Settings.policy_path``).  At startup it is loaded once and cached.  Call
``reload_policy()`` to re-read from disk after an admin update, no restart
required.

Usage::

    from src.config_loader import get_policy

    policy = get_policy()
    policy.sync.max_limit                  # 500
    policy.matching.mfa_enabled            # False
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger("fieldsync.config")

# Path to the YAML file sitting next to this module
_POLICY_PATH = Path(__file__).parent / "policy.yaml"


# ---------------------------------------------------------------------------
# Typed policy sections
# ---------------------------------------------------------------------------


@dataclass
class SyncSettings:
    """Incremental sync settings."""

    default_limit: int = 100
    max_limit: int = 500
    location_cache_ttl_seconds: int = 300
    visit_type: str = "Dosing"


@dataclass
class MatchingSettings:
    """Record-linkage settings.

    Attributes:
        mfa_enabled:            Restrict biometric search to biographic hits.
        cross_country_enabled:  Drop hits whose location country differs from the request.
        oracle_timeout_seconds: Deadline for a single biometric match call.
        matching_threshold:     Minimum score the oracle should report.
    """

    mfa_enabled: bool = False
    cross_country_enabled: bool = False
    oracle_timeout_seconds: float = 10.0
    matching_threshold: int = 40


@dataclass
class SyncPolicy:
    """Complete, validated policy.

    This is the single in-memory representation of policy.yaml.

    Attributes:
        version:  Policy schema version string.
        sync:     Incremental sync settings.
        matching: Record-linkage settings.
    """

    version: str
    sync: SyncSettings
    matching: MatchingSettings
    _raw: dict = field(default_factory=dict, repr=False)

    def clamp_limit(self, requested: int) -> int:
        """Return ``requested`` capped at ``sync.max_limit``."""
        return min(requested, self.sync.max_limit)


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when policy.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    import yaml  # pyyaml

    if not path.exists():
        raise FileNotFoundError(f"Policy file not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> SyncPolicy:
    """Validate the raw YAML dict and construct a SyncPolicy.

    Missing sections fall back to defaults; present-but-invalid values are
    collected and reported together.

    Raises:
        ConfigValidationError: If any value is invalid.
    """
    errors: list[str] = []

    def _int(section: dict, key: str, name: str, default: int, minimum: int) -> int:
        value = section.get(key, default)
        try:
            number = int(value)
        except (TypeError, ValueError):
            errors.append(f"{name}.{key} must be an integer, got {value!r}")
            return default
        if number < minimum:
            errors.append(f"{name}.{key} = {number} must be >= {minimum}")
        return number

    def _section(key: str) -> dict[str, Any]:
        section = raw.get(key) or {}
        if not isinstance(section, dict):
            errors.append(f"'{key}' must be a mapping")
            return {}
        return section

    version = str(raw.get("version", "1.0"))

    # ── Sync ──
    sync_raw = _section("sync")
    sync = SyncSettings(
        default_limit=_int(sync_raw, "default_limit", "sync", 100, 1),
        max_limit=_int(sync_raw, "max_limit", "sync", 500, 1),
        location_cache_ttl_seconds=_int(
            sync_raw, "location_cache_ttl_seconds", "sync", 300, 0
        ),
        visit_type=str(sync_raw.get("visit_type", "Dosing")),
    )
    if sync.default_limit > sync.max_limit:
        errors.append(
            f"sync.default_limit ({sync.default_limit}) exceeds sync.max_limit ({sync.max_limit})"
        )

    # ── Matching ──
    match_raw = _section("matching")
    timeout_raw = match_raw.get("oracle_timeout_seconds", 10.0)
    try:
        timeout = float(timeout_raw)
    except (TypeError, ValueError):
        errors.append(f"matching.oracle_timeout_seconds must be a number, got {timeout_raw!r}")
        timeout = 10.0
    else:
        if timeout <= 0:
            errors.append(f"matching.oracle_timeout_seconds = {timeout} must be > 0")

    matching = MatchingSettings(
        mfa_enabled=bool(match_raw.get("mfa_enabled", False)),
        cross_country_enabled=bool(match_raw.get("cross_country_enabled", False)),
        oracle_timeout_seconds=timeout,
        matching_threshold=_int(match_raw, "matching_threshold", "matching", 40, 0),
    )

    if errors:
        raise ConfigValidationError(
            f"policy.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return SyncPolicy(version=version, sync=sync, matching=matching, _raw=raw)


def load_policy(path: Path | None = None) -> SyncPolicy:
    """Load and validate the policy from disk.

    Args:
        path: Override path to YAML. Uses the bundled policy.yaml by default.
    """
    target = path or _POLICY_PATH
    raw = _load_yaml(target)
    policy = _validate_and_build(raw)
    logger.info("Loaded policy v%s from %s", policy.version, target)
    return policy


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_policy: SyncPolicy | None = None
_policy_lock = threading.Lock()


def get_policy() -> SyncPolicy:
    """Return the global SyncPolicy singleton, loading it on first call.

    Thread-safe.  Use ``reload_policy()`` to refresh after YAML changes.
    """
    global _policy
    if _policy is None:
        with _policy_lock:
            if _policy is None:  # double-checked locking
                _policy = load_policy(_configured_path())
    return _policy


def reload_policy(path: Path | None = None) -> SyncPolicy:
    """Reload the policy from disk and replace the global singleton.

    If validation fails, the old policy is retained and the error is re-raised.

    Raises:
        ConfigValidationError: If the new policy is invalid.
        FileNotFoundError:     If the policy file is missing.
    """
    global _policy
    new_policy = load_policy(path or _configured_path())  # validate before acquiring lock
    with _policy_lock:
        old_version = _policy.version if _policy else "none"
        _policy = new_policy
    logger.info("Reloaded policy: %s → %s", old_version, new_policy.version)
    return new_policy


def _configured_path() -> Path | None:
    from src.config import get_settings

    override = get_settings().policy_path
    return Path(override) if override else None
