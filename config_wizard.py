import re
from typing import Callable

from scheduling_utils import DEFAULT_FREQUENCY_MINUTES, parse_frequency
from vfs_slot_monitor import DEFAULT_CONFIG_PATH, MonitorConfig, load_monitor_file, save_monitor_file


def _env_key(monitor_id: str, suffix: str) -> str:
    stem = re.sub(r"[^A-Za-z0-9]+", "_", monitor_id).strip("_").upper() or "VFS"
    return f"{stem}_{suffix}"


def run_cli_setup_wizard(
    config_path: str = DEFAULT_CONFIG_PATH,
    *,
    prompt: Callable[[str], str] = input,
) -> MonitorConfig:
    """Interactively add (or replace) one monitor in the monitors file.

    Credentials are never written; the wizard only records the names of the
    environment variables that will hold them.
    """
    monitors = load_monitor_file(config_path)

    def _prompt(label: str, default: str = "", *, required: bool = True) -> str:
        text = label
        if default:
            text += f" [{default}]"
        text += ": "
        while True:
            value = prompt(text).strip() or default
            if value or not required:
                return value
            print("This value is required.")

    print("VFS Monitor Setup Wizard")
    print("Press Enter to accept defaults shown in brackets.\n")
    monitor_id = _prompt("Monitor id (example: norway-islamabad-tourist)")
    login_url = _prompt("VFS login URL")
    center_value = _prompt("Center label as shown in the dropdown")
    visa_type_value = _prompt("Visa type label as shown in the dropdown")
    center_option_value = _prompt("Center option value (fallback, optional)", required=False)

    while True:
        frequency = _prompt("Check frequency in minutes (minimum 5)", str(DEFAULT_FREQUENCY_MINUTES))
        if parse_frequency(frequency) is not None:
            break
        print("Frequency must be a whole number of at least 5 minutes.")

    username_env_key = _prompt("Env var holding the VFS login email", _env_key(monitor_id, "USERNAME"))
    password_env_key = _prompt("Env var holding the VFS password", _env_key(monitor_id, "PASSWORD"))

    monitor = MonitorConfig(
        monitor_id=monitor_id,
        login_url=login_url,
        center_value=center_value,
        visa_type_value=visa_type_value,
        frequency_minutes=parse_frequency(frequency),
        username_env_key=username_env_key,
        password_env_key=password_env_key,
        center_option_value=center_option_value,
    )

    kept = [m for m in monitors if not (isinstance(m, dict) and m.get("id") == monitor_id)]
    if len(kept) != len(monitors):
        print(f"Replacing existing monitor '{monitor_id}'.")
    kept.append(monitor)
    saved = save_monitor_file(kept, config_path)

    print(f"\nSaved {len(kept)} monitor(s) to {saved}")
    print(f"Export {username_env_key} and {password_env_key} before running the checker.")
    return monitor


if __name__ == "__main__":
    run_cli_setup_wizard()
