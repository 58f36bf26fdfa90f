"""
ServerConfig validation, diffing and AuthKey handling.

The secret General.AuthKey never leaves the server: redact_auth_key strips it
from anything sent to callers, carry_forward_auth_key copies the stored key
into an update payload before it is written.
"""

import copy
import re
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Mapping

from beammeup.sanitize import REDACTED

DEFAULT_AUTH_KEY = "CHANGE_ME_TO_YOUR_BEAMMP_AUTH_KEY"
AUTH_KEY_FIELD = "AuthKey"
MIN_AUTH_KEY_LENGTH = 10
MAX_AUTH_KEY_LENGTH = 512

_DURATION = re.compile(r"^\d+(\.\d+)?(s|min|h|d)$")
_RESOURCE_FOLDER = re.compile(r"^[A-Za-z0-9_\-]+$")

_STRING_LIMITS = {
    "Name": 256,
    "Description": 2048,
    "Map": 256,
    "IP": 64,
    "ResourceFolder": 128,
}
_BOOLEAN_FIELDS = ("AllowGuests", "LogChat", "Debug", "Private")
_COUNT_FIELDS = ("MaxPlayers", "MaxCars")


@dataclass(frozen=True)
class ConfigIssue:
    field: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


def _is_int(value: Any) -> bool:
    # bool is an int subclass; TOML true is not a port
    return isinstance(value, int) and not isinstance(value, bool)


def _normalize_tags(tags: Any) -> Any:
    if isinstance(tags, list):
        return [re.sub(r"\s+", " ", t.strip()) if isinstance(t, str) else t for t in tags]
    return tags


def validate_config(config: Any) -> List[ConfigIssue]:
    """
    Check field-level constraints on a full config document. Normalizes
    whitespace inside list-form General.Tags in place. Returns [] when valid.
    """
    issues: List[ConfigIssue] = []
    if not isinstance(config, dict):
        return [ConfigIssue("body", "Config must be an object")]
    general = config.get("General", {})
    misc = config.get("Misc", {})
    if not isinstance(general, dict):
        issues.append(ConfigIssue("General", "General must be a table"))
        general = {}
    if not isinstance(misc, dict):
        issues.append(ConfigIssue("Misc", "Misc must be a table"))
        misc = {}

    if "Port" in general:
        port = general["Port"]
        if not _is_int(port) or port < 1024 or port > 65535:
            issues.append(ConfigIssue("General.Port", "Port must be a number between 1024 and 65535"))

    name = general.get("Name")
    if not isinstance(name, str) or not name.strip():
        issues.append(ConfigIssue("General.Name", "Server name is required"))

    for field, limit in _STRING_LIMITS.items():
        if field not in general:
            continue
        value = general[field]
        if not isinstance(value, str):
            issues.append(ConfigIssue(f"General.{field}", f"{field} must be a string"))
        elif len(value) > limit:
            issues.append(ConfigIssue(f"General.{field}", f"{field} too long (max {limit} chars)"))

    folder = general.get("ResourceFolder")
    if isinstance(folder, str) and folder and not _RESOURCE_FOLDER.match(folder):
        issues.append(ConfigIssue("General.ResourceFolder", "ResourceFolder must be a single folder name"))

    if "Tags" in general:
        tags = _normalize_tags(general["Tags"])
        general["Tags"] = tags
        if isinstance(tags, str):
            if len(tags) > 1024:
                issues.append(ConfigIssue("General.Tags", "Tags too long (max 1024 chars)"))
        elif isinstance(tags, list):
            if not all(isinstance(t, str) for t in tags):
                issues.append(ConfigIssue("General.Tags", "Tags must be strings"))
            elif len(",".join(tags)) > 1024:
                issues.append(ConfigIssue("General.Tags", "Tags too long (max 1024 chars)"))
        else:
            issues.append(ConfigIssue("General.Tags", "Tags must be a string or a list of strings"))

    for field in _BOOLEAN_FIELDS:
        if field in general and not isinstance(general[field], bool):
            issues.append(ConfigIssue(f"General.{field}", f"{field} must be boolean"))

    for field in _COUNT_FIELDS:
        if field in general:
            value = general[field]
            if not _is_int(value) or value < 1 or value > 1000:
                issues.append(ConfigIssue(f"General.{field}", f"{field} must be a number between 1 and 1000"))

    if "UpdateReminderTime" in misc:
        value = misc["UpdateReminderTime"]
        if not isinstance(value, str) or not _DURATION.match(value):
            issues.append(
                ConfigIssue(
                    "Misc.UpdateReminderTime",
                    "UpdateReminderTime must match format: number + unit (s, min, h, d)",
                )
            )
    return issues


def redact_auth_key(config: Mapping[str, Any]) -> Dict[str, Any]:
    """Deep copy of config without General.AuthKey, safe to return to callers."""
    safe = copy.deepcopy(dict(config))
    general = safe.get("General")
    if isinstance(general, dict):
        general.pop(AUTH_KEY_FIELD, None)
    return safe


def carry_forward_auth_key(previous: Mapping[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
    """
    Return update with General.AuthKey taken from previous. Any AuthKey sent in the
    update is discarded; replacing the key goes through the re-authenticated path.
    """
    merged = copy.deepcopy(update)
    general = merged.setdefault("General", {})
    general.pop(AUTH_KEY_FIELD, None)
    prev_general = previous.get("General")
    if isinstance(prev_general, Mapping) and AUTH_KEY_FIELD in prev_general:
        general[AUTH_KEY_FIELD] = prev_general[AUTH_KEY_FIELD]
    return merged


def with_auth_key(config: Mapping[str, Any], new_key: str) -> Dict[str, Any]:
    """Copy of config with General.AuthKey replaced."""
    updated = copy.deepcopy(dict(config))
    general = updated.setdefault("General", {})
    general[AUTH_KEY_FIELD] = new_key
    return updated


def auth_key_status(config: Mapping[str, Any]) -> Dict[str, bool]:
    general = config.get("General") or {}
    key = general.get(AUTH_KEY_FIELD) if isinstance(general, Mapping) else None
    is_default = key == DEFAULT_AUTH_KEY
    return {"isSet": bool(key) and not is_default, "isDefault": is_default}


def validate_new_auth_key(value: Any) -> List[ConfigIssue]:
    if not isinstance(value, str) or not (MIN_AUTH_KEY_LENGTH <= len(value) <= MAX_AUTH_KEY_LENGTH):
        return [ConfigIssue("newAuthKey", "Invalid AuthKey format")]
    return []


def compute_config_diff(old: Any, new: Any) -> Dict[str, Any]:
    """
    Nested diff of new against old: changed leaves become {"old": ..., "new": ...}.
    Keys only present in old are not reported. AuthKey values are redacted.
    """
    diff: Dict[str, Any] = {}
    old = old if isinstance(old, Mapping) else {}
    for key, new_value in new.items():
        old_value = old.get(key)
        if isinstance(new_value, Mapping):
            nested = compute_config_diff(old_value or {}, new_value)
            if nested:
                diff[key] = nested
        elif old_value != new_value:
            if key == AUTH_KEY_FIELD:
                diff[key] = {"old": REDACTED, "new": REDACTED}
            else:
                diff[key] = {"old": old_value, "new": new_value}
    return diff
