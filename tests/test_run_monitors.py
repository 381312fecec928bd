from datetime import datetime, timezone
from pathlib import Path
import logging
import re
import sys

import pytest
from selenium.common.exceptions import (
    ElementNotInteractableException,
    NoSuchElementException,
    TimeoutException,
    WebDriverException,
)
from selenium.webdriver.common.by import By
from selenium.webdriver.common.keys import Keys

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import vfs_slot_monitor
from notification_utils import EmailSettings
from vfs_slot_monitor import VfsSlotChecker, main, run_monitors

MINUTE_30 = datetime.fromtimestamp(30 * 60, timezone.utc)
ENV = {"A_USER": "a@example.com", "A_PASS": "a-pass", "B_USER": "b@example.com", "B_PASS": "b-pass"}


def _monitor(monitor_id: str, frequency=15, prefix: str = "A"):
    return {
        "id": monitor_id,
        "vfsLoginUrl": f"https://visa.example.com/{monitor_id}/login",
        "centerValue": "Islamabad",
        "visaTypeValue": "Visit",
        "frequencyMinutes": frequency,
        "usernameEnvKey": f"{prefix}_USER",
        "passwordEnvKey": f"{prefix}_PASS",
    }


class StubChecker:
    def __init__(self, results=None):
        self.results = results or {}
        self.calls = []

    def check_monitor(self, monitor, username, password):
        self.calls.append((monitor.monitor_id, username, password))
        result = self.results.get(monitor.monitor_id, False)
        if isinstance(result, Exception):
            raise result
        return result


def test_due_monitor_is_checked_with_its_credentials() -> None:
    checker = StubChecker({"a": True})
    summary = run_monitors([_monitor("a")], checker, environ=ENV, now=MINUTE_30)
    assert checker.calls == [("a", "a@example.com", "a-pass")]
    assert (summary.checked, summary.slots_found, summary.skipped) == (1, 1, 0)


def test_error_in_one_monitor_does_not_stop_the_next(caplog: pytest.LogCaptureFixture) -> None:
    checker = StubChecker({"a": WebDriverException("boom"), "b": True})
    with caplog.at_level(logging.INFO):
        summary = run_monitors(
            [_monitor("a"), _monitor("b", prefix="B")], checker, environ=ENV, now=MINUTE_30
        )
    assert [call[0] for call in checker.calls] == ["a", "b"]
    assert (summary.failed, summary.checked, summary.slots_found) == (1, 1, 1)
    assert "[a] Error during check" in caplog.text


def test_not_due_monitor_is_skipped_unless_forced(caplog: pytest.LogCaptureFixture) -> None:
    checker = StubChecker()
    with caplog.at_level(logging.INFO):
        summary = run_monitors([_monitor("a", frequency=7)], checker, environ=ENV, now=MINUTE_30)
    assert checker.calls == []
    assert summary.skipped == 1
    assert "[a] not due (frequency 7 min)" in caplog.text

    run_monitors([_monitor("a", frequency=7)], checker, environ=ENV, now=MINUTE_30, force=True)
    assert [call[0] for call in checker.calls] == ["a"]


def test_invalid_frequency_is_skipped(caplog: pytest.LogCaptureFixture) -> None:
    checker = StubChecker()
    with caplog.at_level(logging.INFO):
        summary = run_monitors([_monitor("a", frequency=3)], checker, environ=ENV, now=MINUTE_30, force=True)
    assert checker.calls == []
    assert summary.skipped == 1
    assert "[a] Invalid frequency 3, skipping" in caplog.text


def test_missing_frequency_defaults_to_fifteen() -> None:
    checker = StubChecker()
    entry = _monitor("a")
    del entry["frequencyMinutes"]
    run_monitors([entry], checker, environ=ENV, now=MINUTE_30)
    assert [call[0] for call in checker.calls] == ["a"]


def test_missing_credentials_are_skipped(caplog: pytest.LogCaptureFixture) -> None:
    checker = StubChecker()
    with caplog.at_level(logging.INFO):
        summary = run_monitors([_monitor("a")], checker, environ={}, now=MINUTE_30)
    assert checker.calls == []
    assert summary.skipped == 1
    assert "Missing username/password env keys A_USER/A_PASS" in caplog.text


def test_invalid_entries_are_skipped() -> None:
    checker = StubChecker()
    summary = run_monitors(
        ["junk", {"id": "no-url"}, _monitor("a")], checker, environ=ENV, now=MINUTE_30
    )
    assert [call[0] for call in checker.calls] == ["a"]
    assert summary.skipped == 2


def test_monitor_filter_limits_checks() -> None:
    checker = StubChecker()
    run_monitors(
        [_monitor("a"), _monitor("b", prefix="B")],
        checker,
        environ=ENV,
        now=MINUTE_30,
        only_ids=["b"],
    )
    assert [call[0] for call in checker.calls] == ["b"]


# ----------------------------------------------------------------------
# Page sequence against a scripted driver
# ----------------------------------------------------------------------
class FakeElement:
    def __init__(self, text: str = ""):
        self.text = text
        self.keys = []
        self.clicked = 0

    def clear(self):
        self.keys.clear()

    def send_keys(self, *values):
        self.keys.extend(values)

    def click(self):
        self.clicked += 1

    def get_attribute(self, name):
        return self.text if name == "textContent" else None


class FakeDriver:
    page_source = "<html><body>fake</body></html>"

    def __init__(self, elements=None, body_text: str = "", fail_on_get: bool = False):
        self.elements = elements or {}
        self.body = FakeElement(body_text)
        self.fail_on_get = fail_on_get
        self.visited = []
        self.quit_called = False

    def get(self, url):
        if self.fail_on_get:
            raise WebDriverException("net::ERR_CONNECTION_RESET")
        self.visited.append(url)

    def execute_script(self, script, *args):
        return "complete" if "readyState" in script else None

    def find_elements(self, by, value):
        return self.elements.get((by, value), [])

    def find_element(self, by, value):
        if (by, value) == (By.TAG_NAME, "body"):
            return self.body
        raise NoSuchElementException(value)

    def save_screenshot(self, path):
        Path(path).write_bytes(b"png")
        return True

    def quit(self):
        self.quit_called = True


@pytest.fixture
def sent(monkeypatch: pytest.MonkeyPatch):
    messages = []
    monkeypatch.setattr(
        vfs_slot_monitor,
        "send_notification",
        lambda settings, subject, message: messages.append((subject, message)) or True,
    )
    return messages


def _checker(driver: FakeDriver) -> VfsSlotChecker:
    checker = VfsSlotChecker(
        EmailSettings(user="me@example.com", password="app-pass", notify_email="me@example.com"),
        driver_factory=lambda: driver,
    )
    checker._pause = lambda seconds: None
    return checker


def _login_elements(with_submit: bool = True):
    email, password, submit = FakeElement(), FakeElement(), FakeElement()
    elements = {
        VfsSlotChecker.EMAIL_SELECTORS[0]: [email],
        VfsSlotChecker.PASSWORD_SELECTORS[0]: [password],
    }
    if with_submit:
        elements[VfsSlotChecker.SUBMIT_SELECTORS[0]] = [submit]
    return elements, email, password, submit


def test_check_monitor_reports_slots_and_notifies(sent) -> None:
    elements, email, password, submit = _login_elements()
    driver = FakeDriver(elements, body_text="Next available appointment: 14 Nov 2026")
    monitor = vfs_slot_monitor.MonitorConfig.from_dict(_monitor("a"))

    assert _checker(driver).check_monitor(monitor, "a@example.com", "a-pass") is True

    assert driver.visited == ["https://visa.example.com/a/login"]
    assert email.keys == ["a@example.com"]
    assert password.keys == ["a-pass"]
    assert submit.clicked == 1
    assert driver.quit_called
    assert sent == [
        (
            "VFS Slot Found — a",
            "SLOT FOUND for a (Islamabad - Visit)\nLogin: https://visa.example.com/a/login",
        )
    ]


def test_check_monitor_without_submit_button_presses_enter(sent) -> None:
    elements, _, password, _ = _login_elements(with_submit=False)
    driver = FakeDriver(elements, body_text="No appointment slots are currently available")
    monitor = vfs_slot_monitor.MonitorConfig.from_dict(_monitor("a"))

    assert _checker(driver).check_monitor(monitor, "a@example.com", "a-pass") is False

    assert password.keys == ["a-pass", Keys.ENTER]
    assert sent == []
    assert driver.quit_called


def test_check_monitor_times_out_without_login_form(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ARTIFACTS_DIR", str(tmp_path))
    driver = FakeDriver(body_text="Maintenance")
    checker = _checker(driver)
    checker.LOGIN_FIELD_TIMEOUT_SECONDS = 0
    monitor = vfs_slot_monitor.MonitorConfig.from_dict(_monitor("a"))

    with pytest.raises(TimeoutException, match="Login email field not found"):
        checker.check_monitor(monitor, "a@example.com", "a-pass")

    assert driver.quit_called
    assert checker.driver is None
    assert list(tmp_path.glob("*_a_error.html"))


def test_check_monitor_closes_browser_when_navigation_fails(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ARTIFACTS_DIR", str(tmp_path))
    driver = FakeDriver(fail_on_get=True)
    monitor = vfs_slot_monitor.MonitorConfig.from_dict(_monitor("a"))

    with pytest.raises(WebDriverException):
        _checker(driver).check_monitor(monitor, "a@example.com", "a-pass")
    assert driver.quit_called


# ----------------------------------------------------------------------
# Booking steps: start button, center/visa selects, next
# ----------------------------------------------------------------------
class FakeOption:
    def __init__(self, value: str, text: str, enabled: bool = True, clickable: bool = True):
        self.value = value
        self.text = text
        self.enabled = enabled
        self.clickable = clickable
        self.selected = False

    def is_enabled(self):
        return self.enabled

    def is_selected(self):
        return self.selected

    def is_displayed(self):
        return True

    def value_of_css_property(self, name):
        return "visible"

    def get_attribute(self, name):
        return self.value if name == "value" else None

    get_dom_attribute = get_attribute

    def click(self):
        if not (self.enabled and self.clickable):
            raise ElementNotInteractableException("element not interactable")
        self.selected = True


class FakeSelect:
    tag_name = "select"

    def __init__(self, *options: FakeOption):
        self.options = list(options)

    def get_dom_attribute(self, name):
        return None

    get_attribute = get_dom_attribute

    def find_elements(self, by, query):
        if by == By.TAG_NAME:
            return list(self.options)
        literals = re.findall(r"\"([^\"]*)\"|'([^']*)'", query)
        literal = "".join(literals[-1]) if literals else ""
        if by == By.CSS_SELECTOR:
            return [o for o in self.options if o.value == literal]
        if "normalize-space" in query:
            return [o for o in self.options if o.text.strip() == literal]
        return [o for o in self.options if literal in o.text]


def _booking_monitor(**overrides):
    return vfs_slot_monitor.MonitorConfig.from_dict(dict(_monitor("a"), **overrides))


def test_booking_steps_click_start_select_options_and_next(sent) -> None:
    elements, *_ = _login_elements()
    start, next_button = FakeElement(), FakeElement()
    placeholder = FakeOption("", "Select centre", enabled=False)
    lahore = FakeOption("LHR", "Lahore")
    visit = FakeOption("VIS", "Visit")
    elements.update(
        {
            VfsSlotChecker.START_BOOKING_SELECTORS[0]: [start],
            VfsSlotChecker.CENTER_SELECTORS[0]: [FakeSelect(placeholder, lahore)],
            VfsSlotChecker.VISA_TYPE_SELECTORS[0]: [FakeSelect(FakeOption("", "Select"), visit)],
            VfsSlotChecker.NEXT_SELECTORS[0]: [next_button],
        }
    )
    driver = FakeDriver(elements, body_text="3 slots available")

    assert _checker(driver).check_monitor(_booking_monitor(centerValue="Lahore"), "a@example.com", "a-pass")

    assert start.clicked == 1
    assert lahore.selected and not placeholder.selected
    assert visit.selected
    assert next_button.clicked == 1
    assert len(sent) == 1


def test_booking_steps_use_fallbacks(sent) -> None:
    elements, *_ = _login_elements()
    start, continue_button = FakeElement(), FakeElement()
    lahore = FakeOption("LHR", "Lahore")
    elements.update(
        {
            VfsSlotChecker.NEW_BOOKING_SELECTORS[0]: [start],
            VfsSlotChecker.CENTER_SELECTORS[2]: [FakeSelect(FakeOption("ISB", "Islamabad"), lahore)],
            VfsSlotChecker.NEXT_SELECTORS[1]: [continue_button],
        }
    )
    driver = FakeDriver(elements, body_text="Choose a slot")
    monitor = _booking_monitor(centerValue="Karachi", centerOptionValue="LHR")

    assert _checker(driver).check_monitor(monitor, "a@example.com", "a-pass") is True

    assert start.clicked == 1
    assert lahore.selected
    assert continue_button.clicked == 1


def test_disabled_placeholder_fallback_is_ignored(sent) -> None:
    elements, *_ = _login_elements()
    placeholder = FakeOption("", "Select centre", enabled=False)
    lahore = FakeOption("LHR", "Lahore")
    elements[VfsSlotChecker.CENTER_SELECTORS[0]] = [FakeSelect(placeholder, lahore)]
    driver = FakeDriver(elements, body_text="3 slots available")

    assert _checker(driver).check_monitor(_booking_monitor(), "a@example.com", "a-pass") is True
    assert not placeholder.selected and not lahore.selected
    assert driver.quit_called


def test_non_interactable_options_are_ignored(sent) -> None:
    elements, *_ = _login_elements()
    islamabad = FakeOption("ISB", "Islamabad", clickable=False)
    visit = FakeOption("VIS", "Visit", enabled=False)
    elements[VfsSlotChecker.CENTER_SELECTORS[0]] = [FakeSelect(islamabad)]
    elements[VfsSlotChecker.VISA_TYPE_SELECTORS[0]] = [FakeSelect(visit)]
    driver = FakeDriver(elements, body_text="3 slots available")

    assert _checker(driver).check_monitor(_booking_monitor(), "a@example.com", "a-pass") is True
    assert not islamabad.selected and not visit.selected
    assert len(sent) == 1


def test_missing_booking_controls_are_logged(sent, caplog: pytest.LogCaptureFixture) -> None:
    elements, *_ = _login_elements()
    driver = FakeDriver(elements, body_text="Welcome back")

    with caplog.at_level(logging.INFO):
        assert _checker(driver).check_monitor(_booking_monitor(), "a@example.com", "a-pass") is False

    assert "[a] Start New Booking button not found" in caplog.text
    assert "[a] Center select not found" in caplog.text
    assert "[a] Visa type select not found" in caplog.text
    assert "[a] No slots found (checked)." in caplog.text


# ----------------------------------------------------------------------
# Process entry point
# ----------------------------------------------------------------------
@pytest.fixture
def isolated_logging(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("MONITOR_CONFIG_PATH", str(tmp_path / "monitors.json"))
    monkeypatch.setenv("SELECTOR_REGISTRY_PATH", str(tmp_path / "selectors.yml"))
    monkeypatch.delenv("EMAIL_USER", raising=False)
    monkeypatch.delenv("EMAIL_PASS", raising=False)
    monkeypatch.delenv("SMTP_PORT", raising=False)
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_main_exits_on_unparseable_config(isolated_logging, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MONITOR_CONFIG_JSON", "{oops")
    with pytest.raises(SystemExit) as excinfo:
        main([])
    assert excinfo.value.code == 1


def test_main_with_no_monitors_finishes_cleanly(isolated_logging, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MONITOR_CONFIG_JSON", "[]")
    assert main(["--json-logs"]) == 0
