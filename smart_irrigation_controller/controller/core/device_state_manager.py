import json
import os
import tempfile
import threading
from contextlib import contextmanager, suppress
from dataclasses import replace
from datetime import datetime
from typing import Any, Iterator, Optional

from smart_irrigation_controller.controller.core.status_models import DeviceState
from smart_irrigation_controller.controller.utils.logger import get_logger
import smart_irrigation_controller.controller.utils.time_utils as time_utils


class DeviceStateManager:
    """
    Manages the persistent state of all irrigation devices.

    The state is kept in memory and mirrored to a JSON file after every change, so relay state
    and interlock timestamps survive process restarts. With `state_file=None` the state is
    kept in memory only.
    Callers get copies of the stored records; a change is only visible after `save()`.
    """

    # =========================================================================
    # Initialization
    # =========================================================================

    def __init__(self, state_file: Optional[str]) -> None:
        self.logger = get_logger("DeviceStateManager")
        self.state_file: Optional[str] = state_file
        self.state: dict[str, Any] = self._load_state()

        self.state_lock = threading.RLock()           # Guards self.state and the state file
        self._device_locks: dict[str, threading.Lock] = {}
        self._device_locks_guard = threading.Lock()

        # Quick access to devices by their ID
        self.device_index: dict[str, int] = {}
        self._rebuild_device_index()

        self.logger.info(f"DeviceStateManager initialized with {len(self.device_index)} device(s).")


    # =========================================================================
    # Internal: Device entry management
    # =========================================================================

    def _get_entry_by_id(self, device_id: str) -> dict | None:
        if device_id in self.device_index:
            return self.state["devices"][self.device_index[device_id]]
        return None


    def _create_entry(self, device_id: str) -> dict:
        entry = DeviceState(device_id=device_id).to_dict()
        self.state["devices"].append(entry)
        self._rebuild_device_index()
        return entry


    def _rebuild_device_index(self) -> None:
        """Must be called after any structural change to `self.state["devices"]`."""
        self.device_index = {str(d["device_id"]): i for i, d in enumerate(self.state.get("devices", []))}


    # =========================================================================
    # Internal: State loading/saving & validation
    # =========================================================================

    def _empty_state(self) -> dict:
        return {"last_updated": time_utils.to_iso(time_utils.now()), "devices": []}


    def _save_state(self) -> bool:
        """Saves the current state to the state file. Returns False if the write failed."""
        with self.state_lock:
            self.state["last_updated"] = time_utils.to_iso(time_utils.now())
            if self.state_file is None:
                return True
            try:
                self._write_state_file()
            except (OSError, TypeError, ValueError) as e:
                self.logger.warning(f"Failed to save device state to {self.state_file}: {e}")
                return False
        return True


    def _write_state_file(self) -> None:
        """Replaces the state file atomically; a failed write leaves the previous file intact."""
        directory = os.path.dirname(os.path.abspath(self.state_file))
        fd, tmp_path = tempfile.mkstemp(prefix=".device_state.", suffix=".tmp", dir=directory)
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(self.state, f, indent=4)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.state_file)
        except BaseException:
            with suppress(OSError):
                os.unlink(tmp_path)
            raise


    def _load_state(self) -> dict:
        if self.state_file is None:
            return self._empty_state()
        try:
            with open(self.state_file, "r") as f:
                state = json.load(f)
        except FileNotFoundError:
            self.logger.warning(f"State file {self.state_file} not found. Starting with empty state.")
            return self._empty_state()
        except json.JSONDecodeError:
            self.logger.error(f"State file {self.state_file} is corrupted. Starting with empty state.")
            return self._empty_state()
        try:
            self._validate_state(state)
        except ValueError as e:
            self.logger.error(f"Invalid state structure in {self.state_file}: {e}. Starting with empty state.")
            return self._empty_state()

        return state


    def _validate_state(self, state: dict) -> None:
        if not isinstance(state, dict):
            raise ValueError("State must be a dictionary")

        if "last_updated" not in state:
            raise ValueError("State must contain 'last_updated' key")
        try:
            datetime.fromisoformat(state["last_updated"])
        except (TypeError, ValueError):
            raise ValueError("Invalid 'last_updated' timestamp format")

        devices = state.get("devices")
        if not isinstance(devices, list):
            raise ValueError("'devices' must be a list")

        seen: set[str] = set()
        for device in devices:
            if not isinstance(device, dict):
                raise ValueError("Each device must be a dictionary")
            if not isinstance(device.get("device_id"), str) or not device["device_id"]:
                raise ValueError("Each device must contain a non-empty string 'device_id'")
            if device["device_id"] in seen:
                raise ValueError(f"Duplicate device_id '{device['device_id']}'")
            seen.add(device["device_id"])
            if not isinstance(device.get("relay_state"), bool):
                raise ValueError(f"Device '{device['device_id']}' must contain boolean 'relay_state'")
            for key in ("last_action_ts", "last_on_ts", "last_off_ts"):
                value = device.get(key)
                if value is None:
                    continue
                try:
                    datetime.fromisoformat(value)
                except (TypeError, ValueError):
                    raise ValueError(f"Invalid '{key}' timestamp format for device '{device['device_id']}'")
            if not isinstance(device.get("last_telemetry", {}), dict):
                raise ValueError(f"Device '{device['device_id']}' 'last_telemetry' must be a dictionary")


    # =========================================================================
    # Public API
    # =========================================================================

    @contextmanager
    def device_lock(self, device_id: str) -> Iterator[None]:
        """Mutual exclusion for one device's read-modify-write cycle. Different devices do not block each other."""
        with self._device_locks_guard:
            lock = self._device_locks.setdefault(device_id, threading.Lock())
        with lock:
            yield


    def get(self, device_id: str) -> Optional[DeviceState]:
        """Returns a copy of the device state, or None if the device was never seen."""
        with self.state_lock:
            entry = self._get_entry_by_id(device_id)
            if entry is None:
                return None
            return DeviceState.from_dict(entry)


    def get_or_create(self, device_id: str) -> DeviceState:
        """Returns a copy of the device state, creating an OFF record on first sight."""
        with self.state_lock:
            entry = self._get_entry_by_id(device_id)
            if entry is None:
                self.logger.info(f"Device '{device_id}' seen for the first time. Creating state record.")
                entry = self._create_entry(device_id)
                self._save_state()
            return DeviceState.from_dict(entry)


    def save(self, device_state: DeviceState) -> bool:
        """
        Stores the given device state and writes the state file.
        Returns False if the file could not be written (in-memory state is updated regardless).
        """
        with self.state_lock:
            entry = self._get_entry_by_id(device_state.device_id)
            if entry is None:
                entry = self._create_entry(device_state.device_id)
            entry.update(device_state.to_dict())
            return self._save_state()


    def force_state(
        self,
        device_id: str,
        relay_state: Optional[bool] = None,
        last_on_ts: Optional[datetime] = None,
        last_off_ts: Optional[datetime] = None,
    ) -> DeviceState:
        """Operator escape hatch: overwrite relay state and interlock timestamps without actuating."""
        with self.device_lock(device_id):
            state = self.get_or_create(device_id)
            changes: dict[str, Any] = {}
            if relay_state is not None:
                changes["relay_state"] = relay_state
            if last_on_ts is not None:
                changes["last_on_ts"] = last_on_ts
            if last_off_ts is not None:
                changes["last_off_ts"] = last_off_ts
            state = replace(state, **changes)
            self.save(state)
        self.logger.warning(f"Device '{device_id}' state forced by operator: {state.to_dict()}")
        return state


    def set_manual_lock(self, device_id: str, locked: bool) -> DeviceState:
        with self.device_lock(device_id):
            state = replace(self.get_or_create(device_id), manual_lock=locked)
            self.save(state)
        self.logger.info(f"Manual lock for device '{device_id}' set to {locked}.")
        return state


    def all_states(self) -> list[DeviceState]:
        with self.state_lock:
            return [DeviceState.from_dict(entry) for entry in self.state.get("devices", [])]
