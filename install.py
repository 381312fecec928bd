#!/usr/bin/env python3
"""
Installation script for the VFS Slot Monitor
This script installs the project with its dependencies and writes an example monitors file.
"""

import json
import subprocess
import sys
from pathlib import Path

EXAMPLE_MONITORS = [
    {
        "id": "norway-islamabad-visit",
        "vfsLoginUrl": "https://visa.vfsglobal.com/pak/en/nor/login",
        "centerValue": "Norway Visa Application Centre - Islamabad",
        "visaTypeValue": "Visit",
        "frequencyMinutes": 15,
        "usernameEnvKey": "VFS_NORWAY_USERNAME",
        "passwordEnvKey": "VFS_NORWAY_PASSWORD",
    }
]


def run_command(command, description):
    """Run a command and print status"""
    print(f"Installing {description}...")
    try:
        subprocess.run(command, check=True, capture_output=True, text=True)
        print(f"✓ {description} installed successfully")
        return True
    except subprocess.CalledProcessError as e:
        print(f"✗ Failed to install {description}: {e}")
        print(f"Error output: {e.stderr}")
        return False


def install_dependencies():
    """Install the project (selenium, webdriver-manager, flask, pyyaml)"""
    project_dir = Path(__file__).resolve().parent
    return run_command([sys.executable, "-m", "pip", "install", "-e", str(project_dir)], "vfs-slot-monitor")


def create_example_monitors(path="monitors.json"):
    """Write an example monitors file unless one already exists"""
    target = Path(path)
    if target.exists():
        print(f"✓ Keeping existing {target}")
        return True

    try:
        target.write_text(json.dumps(EXAMPLE_MONITORS, indent=2) + "\n", encoding="utf-8")
        print(f"✓ Example monitors created ({target})")
        return True
    except OSError as e:
        print(f"✗ Failed to create {target}: {e}")
        return False


def main():
    """Main installation function"""
    print("VFS Slot Monitor - Installation")
    print("=" * 50)

    if sys.version_info < (3, 9):
        print("✗ Python 3.9 or higher is required")
        sys.exit(1)

    print(f"✓ Python {sys.version.split()[0]} detected")

    if not install_dependencies():
        print("✗ Dependency installation failed. Please check the errors above.")
        sys.exit(1)

    if not create_example_monitors():
        sys.exit(1)

    print("\n" + "=" * 50)
    print("Installation completed successfully!")
    print("\nNext steps:")
    print("1. Edit monitors.json (python config_wizard.py or python web_ui.py)")
    print("2. Export the credential env vars named in each monitor")
    print("3. Export EMAIL_USER and EMAIL_PASS (Gmail app password) for notifications:")
    print("   https://myaccount.google.com/apppasswords")
    print("4. Schedule the checker every minute, e.g. cron: * * * * * vfs-slot-monitor")


if __name__ == "__main__":
    main()
