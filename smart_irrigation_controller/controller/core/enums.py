from enum import Enum


class RelayCommand(str, Enum):
    """Command sent to a relay."""
    ON = "ON"
    OFF = "OFF"


class IrrigationAction(str, Enum):
    """Action recorded for one decision cycle."""
    ON = "ON"                               # Automatic ON, committed
    OFF = "OFF"                             # Automatic OFF, committed (incl. watchdog)
    RECOMMEND = "RECOMMEND"                 # No actuation happened
    FORCE_ON = "FORCE_ON"                   # Operator override, committed
    FORCE_OFF = "FORCE_OFF"                 # Operator override, committed


class PayloadFormat(str, Enum):
    """Relay payload encodings, tried in this order."""
    PLAIN = "plain"                         # "ON" / "OFF"
    NUMERIC = "numeric"                     # "1" / "0"
    JSON = "json"                           # {"cmd": "ON"}


class DecisionReason(str, Enum):
    # Committed transitions
    SOIL_BELOW_THRESHOLD_ON = "soil_below_threshold_on"
    SOIL_ABOVE_THRESHOLD_OFF = "soil_above_threshold_off"
    WATCHDOG_FORCED_OFF = "watchdog_forced_off"
    OPERATOR_FORCE_ON = "operator_force_on"
    OPERATOR_FORCE_OFF = "operator_force_off"

    # Recommendations
    NO_ACTION = "no_action"
    NO_NUMERIC_SOIL = "no_numeric_soil"
    MANUAL_LOCK_ACTIVE = "manual_lock_active"
    BLOCKED_AFTER_OFF_WAIT = "blocked_after_off_wait"
    BLOCKED_BY_MIN_BETWEEN_ON = "blocked_by_min_between_on"
    MIN_ON_NOT_ELAPSED = "min_on_not_elapsed"
    MIN_INTERVAL_BETWEEN_OFF_NOT_ELAPSED = "min_interval_between_off_not_elapsed"

    # Delivery failures
    PUBLISH_FAILED_ON = "publish_failed_on"
    PUBLISH_FAILED_OFF = "publish_failed_off"
    PUBLISH_FAILED_WATCHDOG_OFF = "publish_failed_watchdog_off"
    PUBLISH_FAILED_FORCE_ON = "publish_failed_force_on"
    PUBLISH_FAILED_FORCE_OFF = "publish_failed_force_off"
