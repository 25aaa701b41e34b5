"""
Mapping from raw NUT variables to DeviceSnapshot fields.
"""

import math
from typing import Callable, Dict, Optional, Tuple

from .models import DeviceSnapshot
from .protocol import RawVariableSet

STATUS_UNKNOWN = "Unknown"
STATUS_ERROR = "Error"

# Checked in order, first token present wins.
STATUS_LABELS: Tuple[Tuple[str, str], ...] = (
    ("OL", "Online"),
    ("OB", "On Battery"),
    ("LB", "Low Battery"),
    ("RB", "Replace Battery"),
    ("CHRG", "Charging"),
    ("DISCHRG", "Discharging"),
    ("BYPASS", "Bypass"),
    ("CAL", "Calibration"),
    ("OFF", "Off"),
    ("OVER", "Overload"),
    ("TRIM", "Trimming Voltage"),
    ("BOOST", "Boosting Voltage"),
    ("FSD", "Forced Shutdown"),
)

# Identity fields: first variable present wins.
IDENTITY_KEYS: Dict[str, Tuple[str, ...]] = {
    "model": ("device.model", "ups.model"),
    "manufacturer": ("device.mfr", "ups.mfr"),
    "serial": ("device.serial", "ups.serial"),
}


def parse_float(value: Optional[str]) -> Optional[float]:
    """Parse a NUT number. Absent, empty, NaN and infinite values give None."""
    if value is None:
        return None
    try:
        number = float(value.strip())
    except (ValueError, AttributeError):
        return None
    return number if math.isfinite(number) else None


def round_half_up(value: Optional[float]) -> Optional[int]:
    if value is None:
        return None
    return int(math.floor(value + 0.5))


def round_one(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    return round(value, 1)


def seconds_to_minutes(value: Optional[float]) -> Optional[int]:
    if value is None:
        return None
    return round_half_up(value / 60)


# snapshot field -> (NUT variable, converter)
NUMERIC_KEYS: Dict[str, Tuple[str, Callable[[Optional[float]], object]]] = {
    "battery_charge": ("battery.charge", round_half_up),
    "battery_voltage": ("battery.voltage", round_one),
    "input_voltage": ("input.voltage", round_one),
    "output_voltage": ("output.voltage", round_one),
    "load": ("ups.load", round_half_up),
    "runtime_remaining": ("battery.runtime", seconds_to_minutes),
    "temperature": ("ups.temperature", round_one),
}


def status_label(status: Optional[str]) -> str:
    """Human readable label for a raw status such as ``OL CHRG``."""
    if not status:
        return STATUS_UNKNOWN
    tokens = set(status.split())
    for token, label in STATUS_LABELS:
        if token in tokens:
            return label
    return status


def group_details(variables: RawVariableSet) -> Dict[str, Dict[str, str]]:
    """Group variables by their top-level namespace, e.g. ``battery``."""
    groups: Dict[str, Dict[str, str]] = {}
    for name in sorted(variables):
        namespace, _, rest = name.partition(".")
        groups.setdefault(namespace, {})[rest or namespace] = variables[name]
    return groups


def build_snapshot(device_name: str, variables: RawVariableSet) -> DeviceSnapshot:
    """
    Build the snapshot for one device.

    An empty variable set yields status Unknown with every numeric field None.
    """
    if not variables:
        return unknown_snapshot(device_name)

    fields: Dict[str, object] = {}
    for field, keys in IDENTITY_KEYS.items():
        fields[field] = next((variables[k] for k in keys if variables.get(k)), None)
    for field, (key, convert) in NUMERIC_KEYS.items():
        fields[field] = convert(parse_float(variables.get(key)))

    status = variables.get("ups.status") or STATUS_UNKNOWN
    return DeviceSnapshot(
        name=device_name,
        display_name=variables.get("ups.id") or device_name,
        status=status,
        status_label=status_label(status if status != STATUS_UNKNOWN else None),
        details=group_details(variables),
        **fields,
    )


def unknown_snapshot(device_name: str) -> DeviceSnapshot:
    return DeviceSnapshot(
        name=device_name,
        display_name=device_name,
        status=STATUS_UNKNOWN,
        status_label=STATUS_UNKNOWN,
    )


def error_snapshot(device_name: str, message: str) -> DeviceSnapshot:
    return DeviceSnapshot(
        name=device_name,
        display_name=device_name,
        status=STATUS_ERROR,
        status_label=STATUS_ERROR,
        error=message,
    )
