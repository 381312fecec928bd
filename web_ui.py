import json
import os

from flask import Flask, redirect, render_template, request, url_for

from scheduling_utils import DEFAULT_FREQUENCY_MINUTES, parse_frequency
from vfs_slot_monitor import (
    DEFAULT_CONFIG_PATH,
    MonitorConfig,
    MonitorConfigError,
    load_monitor_file,
    save_monitor_file,
)

app = Flask(__name__)
app.config["MONITOR_CONFIG_PATH"] = os.getenv("MONITOR_CONFIG_PATH", DEFAULT_CONFIG_PATH)

FORM_KEYS = [
    'id', 'vfsLoginUrl', 'centerValue', 'visaTypeValue', 'frequencyMinutes',
    'usernameEnvKey', 'passwordEnvKey', 'centerOptionValue'
]


def _config_path():
    return app.config["MONITOR_CONFIG_PATH"]


def _render(monitors, error=None):
    return render_template(
        'index.html',
        monitors=monitors,
        error=error,
        default_frequency=DEFAULT_FREQUENCY_MINUTES,
        env_value=json.dumps(monitors, separators=(',', ':')),
    ), (400 if error else 200)


def _broken_file_error(exc):
    return f"Cannot read {_config_path()}: {exc}. Fix or remove the file before editing monitors."


@app.route('/', methods=['GET', 'POST'])
def index():
    try:
        monitors = load_monitor_file(_config_path())
    except MonitorConfigError as exc:
        return _render([], _broken_file_error(exc))

    if request.method == 'POST':
        raw = {key: request.form.get(key, '').strip() for key in FORM_KEYS}
        try:
            monitor = MonitorConfig.from_dict(raw)
            if not monitor.username_env_key or not monitor.password_env_key:
                raise ValueError("Username and password env var names are required")
            frequency = parse_frequency(monitor.frequency_minutes)
            if frequency is None:
                raise ValueError("Frequency must be a whole number of at least 5 minutes")
            monitor.frequency_minutes = frequency
        except ValueError as exc:
            return _render(monitors, str(exc))

        monitors = [m for m in monitors if not (isinstance(m, dict) and m.get('id') == monitor.monitor_id)]
        monitors.append(monitor.to_dict())
        save_monitor_file(monitors, _config_path())
        return redirect(url_for('index'))

    return _render(monitors)


@app.route('/delete/<monitor_id>', methods=['POST'])
def delete(monitor_id):
    try:
        monitors = load_monitor_file(_config_path())
    except MonitorConfigError as exc:
        return _render([], _broken_file_error(exc))

    remaining = [m for m in monitors if not (isinstance(m, dict) and m.get('id') == monitor_id)]
    save_monitor_file(remaining, _config_path())
    return redirect(url_for('index'))


if __name__ == '__main__':
    app.run(debug=True)
