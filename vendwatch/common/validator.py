"""
Configuration Validator

Validates a raw monitor configuration dictionary before it is turned
into dataclasses.
"""

from typing import Any

from .config import ALERT_CATEGORIES, MachineType
from .logging_setup import get_service_logger

logger = get_service_logger("config.validator")

STORAGE_BACKENDS = ("memory", "supabase")
CLEANING_LEVELS = ("routine", "deep", "emergency", "overdue")


def _is_positive_number(value: Any) -> bool:
    return not isinstance(value, bool) and isinstance(value, (int, float)) and value > 0


class ConfigValidator:
    """Validates monitor configuration"""

    def validate(self, config: dict[str, Any]) -> tuple[bool, list[str]]:
        """
        Validate configuration.

        Args:
            config: Configuration dictionary

        Returns:
            Tuple of (is_valid, list of error messages)
        """
        if not isinstance(config, dict):
            errors = [f"Configuration must be a mapping, got {type(config).__name__}"]
            logger.warning("Config validation failed: top level is not a mapping")
            return False, errors

        errors: list[str] = []
        sections = {}
        for key, expected in (
            ("monitor", dict),
            ("thresholds", dict),
            ("cleaning_thresholds", dict),
            ("storage", dict),
            ("machines", list),
        ):
            value = config.get(key)
            if value is None:
                value = expected()
            elif not isinstance(value, expected):
                kind = "a mapping" if expected is dict else "a list"
                errors.append(f"{key} must be {kind}")
                value = expected()
            sections[key] = value

        errors.extend(self._validate_monitor(sections["monitor"]))
        errors.extend(self._validate_thresholds(sections["thresholds"]))
        errors.extend(self._validate_cleaning(sections["cleaning_thresholds"]))
        errors.extend(self._validate_storage(sections["storage"]))
        errors.extend(self._validate_machines(sections["machines"]))

        is_valid = len(errors) == 0

        if not is_valid:
            logger.warning(
                f"Config validation failed: {len(errors)} errors",
                extra={"errors": errors},
            )
        else:
            logger.debug("Config validation passed")

        return is_valid, errors

    def _validate_monitor(self, monitor: dict[str, Any]) -> list[str]:
        errors = []
        for key in ("poll_interval_s", "cleaning_interval_s"):
            if key in monitor and not _is_positive_number(monitor[key]):
                errors.append(f"monitor.{key} must be a positive number")

        concurrency = monitor.get("max_concurrency", 10)
        if isinstance(concurrency, bool) or not isinstance(concurrency, int) or concurrency < 1:
            errors.append("monitor.max_concurrency must be an integer >= 1")
        return errors

    def _validate_thresholds(self, thresholds: dict[str, Any]) -> list[str]:
        errors = []
        default = thresholds.get("default_offline_minutes", 5)
        critical = thresholds.get("critical_offline_minutes", 15)

        if not _is_positive_number(default):
            errors.append("thresholds.default_offline_minutes must be a positive number")
        if not _is_positive_number(critical):
            errors.append("thresholds.critical_offline_minutes must be a positive number")
        if not errors and critical < default:
            errors.append("critical_offline_minutes must not be lower than default_offline_minutes")
        return errors

    def _validate_cleaning(self, cleaning: dict[str, Any]) -> list[str]:
        """Each overridden machine type needs all four increasing day counts"""
        errors = []
        valid_types = {t.value for t in MachineType}

        for type_name, values in cleaning.items():
            if type_name not in valid_types:
                errors.append(f"cleaning_thresholds: unknown machine type '{type_name}'")
                continue
            if not isinstance(values, dict):
                errors.append(f"cleaning_thresholds.{type_name} must be a mapping")
                continue

            missing = [level for level in CLEANING_LEVELS if level not in values]
            if missing:
                errors.append(f"cleaning_thresholds.{type_name} missing: {', '.join(missing)}")
                continue

            days = [values[level] for level in CLEANING_LEVELS]
            if any(isinstance(d, bool) or not isinstance(d, int) or d <= 0 for d in days):
                errors.append(f"cleaning_thresholds.{type_name} must be positive integers")
            elif days != sorted(set(days)):
                errors.append(f"cleaning_thresholds.{type_name} must be strictly increasing")
        return errors

    def _validate_storage(self, storage: dict[str, Any]) -> list[str]:
        backend = storage.get("backend", "memory")
        if backend not in STORAGE_BACKENDS:
            return [f"storage.backend must be one of {list(STORAGE_BACKENDS)}"]
        return []

    def _validate_machines(self, machines: list[dict[str, Any]]) -> list[str]:
        errors = []
        seen: set[str] = set()
        valid_types = {t.value for t in MachineType}

        for i, machine in enumerate(machines):
            if not isinstance(machine, dict):
                errors.append(f"Machine {i}: must be a mapping")
                continue
            machine_id = machine.get("id")
            if not machine_id:
                errors.append(f"Machine {i}: missing id")
                continue
            if str(machine_id) in seen:
                errors.append(f"Machine {machine_id}: duplicate id")
            seen.add(str(machine_id))

            if machine.get("type") not in valid_types:
                errors.append(f"Machine {machine_id}: invalid type '{machine.get('type')}'")

            notifications = machine.get("notifications") or {}
            if not isinstance(notifications, dict):
                errors.append(f"Machine {machine_id}: notifications must be a mapping")
                continue
            enabled = notifications.get("enabled_alerts")
            if enabled is not None and not isinstance(enabled, list):
                errors.append(f"Machine {machine_id}: enabled_alerts must be a list")
            elif enabled is not None:
                unknown = {str(category) for category in enabled} - set(ALERT_CATEGORIES)
                if unknown:
                    errors.append(
                        f"Machine {machine_id}: unknown alert categories {sorted(unknown)}"
                    )
        return errors
