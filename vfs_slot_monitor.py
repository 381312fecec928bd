import argparse
import json
import logging
import os
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, List, Mapping, Optional, Tuple

from selenium import webdriver
from selenium.common.exceptions import (
    ElementClickInterceptedException,
    ElementNotInteractableException,
    NoSuchElementException,
    StaleElementReferenceException,
    TimeoutException,
    WebDriverException,
)
from selenium.webdriver.common.by import By
from selenium.webdriver.common.keys import Keys
from selenium.webdriver.support.ui import Select, WebDriverWait
from webdriver_manager.chrome import ChromeDriverManager

from browser_session import start_chrome
from logging_utils import artifacts_dir, configure_logging
from notification_utils import EmailSettings, send_notification
from scheduling_utils import is_due, parse_frequency
from selector_registry import apply_selector_overrides

Selector = Tuple[str, str]

DEFAULT_CONFIG_PATH = "monitors.json"

NO_SLOT_PATTERN = re.compile(
    r"no appointment slots are currently available|no appointments available|no slots available",
    re.IGNORECASE,
)
AVAILABLE_PATTERN = re.compile(
    r"appointments available|slots available|next available appointment|choose a slot",
    re.IGNORECASE,
)

_LOWER = "translate(., 'ABCDEFGHIJKLMNOPQRSTUVWXYZ', 'abcdefghijklmnopqrstuvwxyz')"


def _button_text(text: str) -> Selector:
    return (By.XPATH, f"//button[contains({_LOWER}, '{text.lower()}')]")


class MonitorConfigError(ValueError):
    """Raised when MONITOR_CONFIG_JSON cannot be read as a list of monitors."""


@dataclass
class MonitorConfig:
    monitor_id: str
    login_url: str
    center_value: str
    visa_type_value: str
    frequency_minutes: Any
    username_env_key: str
    password_env_key: str
    center_option_value: str = ""

    @classmethod
    def from_dict(cls, raw: Any) -> "MonitorConfig":
        if not isinstance(raw, dict):
            raise ValueError(f"Monitor entry must be an object, got {type(raw).__name__}")

        missing = [key for key in ("id", "vfsLoginUrl") if not raw.get(key)]
        if missing:
            raise ValueError("Monitor entry missing required keys: " + ", ".join(missing))

        def _text(key: str) -> str:
            value = raw.get(key)
            return "" if value is None else str(value).strip()

        return cls(
            monitor_id=_text("id"),
            login_url=_text("vfsLoginUrl"),
            center_value=_text("centerValue"),
            visa_type_value=_text("visaTypeValue"),
            frequency_minutes=raw.get("frequencyMinutes"),
            username_env_key=_text("usernameEnvKey"),
            password_env_key=_text("passwordEnvKey"),
            center_option_value=_text("centerOptionValue"),
        )

    def to_dict(self) -> dict:
        data = {
            "id": self.monitor_id,
            "vfsLoginUrl": self.login_url,
            "centerValue": self.center_value,
            "visaTypeValue": self.visa_type_value,
            "frequencyMinutes": self.frequency_minutes,
            "usernameEnvKey": self.username_env_key,
            "passwordEnvKey": self.password_env_key,
        }
        if self.center_option_value:
            data["centerOptionValue"] = self.center_option_value
        return data

    def resolve_credentials(self, environ: Optional[Mapping[str, str]] = None) -> Optional[Tuple[str, str]]:
        env = os.environ if environ is None else environ
        username = env.get(self.username_env_key) if self.username_env_key else None
        password = env.get(self.password_env_key) if self.password_env_key else None
        if not username or not password:
            return None
        return username, password

    def masked_summary(self) -> str:
        return (
            f"id={self.monitor_id} | center={self.center_value} | visa={self.visa_type_value} | "
            f"frequency={self.frequency_minutes} | username_key={self.username_env_key}"
        )


def read_monitor_config_json(environ: Optional[Mapping[str, str]] = None) -> str:
    env = os.environ if environ is None else environ
    raw = env.get("MONITOR_CONFIG_JSON")
    if raw and raw.strip():
        return raw

    config_path = Path(env.get("MONITOR_CONFIG_PATH") or DEFAULT_CONFIG_PATH)
    if config_path.is_file():
        logging.info("MONITOR_CONFIG_JSON not set; reading monitors from %s", config_path)
        return config_path.read_text(encoding="utf-8")
    return "[]"


def load_monitors(raw_json: str) -> List[Any]:
    try:
        monitors = json.loads(raw_json)
    except json.JSONDecodeError as exc:
        raise MonitorConfigError(f"MONITOR_CONFIG_JSON parse error: {exc}") from exc

    if not isinstance(monitors, list):
        raise MonitorConfigError(
            f"MONITOR_CONFIG_JSON must be a JSON array, got {type(monitors).__name__}"
        )
    return monitors


def load_monitor_file(path: str = DEFAULT_CONFIG_PATH) -> List[Any]:
    config_path = Path(path)
    if not config_path.is_file():
        return []
    return load_monitors(config_path.read_text(encoding="utf-8"))


def save_monitor_file(monitors: Iterable[Any], path: str = DEFAULT_CONFIG_PATH) -> Path:
    config_path = Path(path)
    payload = [m.to_dict() if isinstance(m, MonitorConfig) else m for m in monitors]
    config_path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
    return config_path


def detect_availability(body_text: str) -> bool:
    text = body_text or ""
    return bool(AVAILABLE_PATTERN.search(text)) and not NO_SLOT_PATTERN.search(text)


def build_slot_message(monitor: MonitorConfig) -> Tuple[str, str]:
    subject = f"VFS Slot Found — {monitor.monitor_id}"
    message = (
        f"SLOT FOUND for {monitor.monitor_id} ({monitor.center_value} - {monitor.visa_type_value})\n"
        f"Login: {monitor.login_url}"
    )
    return subject, message


class VfsSlotChecker:
    EMAIL_SELECTORS: List[Selector] = [
        (By.CSS_SELECTOR, "input[type='email']"),
        (By.CSS_SELECTOR, "input[name='email']"),
        (By.CSS_SELECTOR, "input#email"),
        (By.CSS_SELECTOR, "input[name='username']"),
    ]

    PASSWORD_SELECTORS: List[Selector] = [
        (By.CSS_SELECTOR, "input[type='password']"),
        (By.CSS_SELECTOR, "input[name='password']"),
    ]

    SUBMIT_SELECTORS: List[Selector] = [
        (By.CSS_SELECTOR, "button[type='submit']"),
        _button_text("Sign in"),
    ]

    START_BOOKING_SELECTORS: List[Selector] = [
        _button_text("Start New Booking"),
        (By.XPATH, f"//a[contains({_LOWER}, 'start new booking')]"),
        (By.XPATH, "//*[normalize-space(text())='Start New Booking']"),
    ]

    NEW_BOOKING_SELECTORS: List[Selector] = [
        _button_text("New Booking"),
    ]

    CENTER_SELECTORS: List[Selector] = [
        (By.CSS_SELECTOR, "select[name='centre']"),
        (By.CSS_SELECTOR, "select[name='centreId']"),
        (By.CSS_SELECTOR, "select[name='center']"),
        (By.CSS_SELECTOR, "select#center"),
        (By.CSS_SELECTOR, "select[name='location']"),
    ]

    VISA_TYPE_SELECTORS: List[Selector] = [
        (By.CSS_SELECTOR, "select[name='visaType']"),
        (By.CSS_SELECTOR, "select[name='visa_type']"),
        (By.CSS_SELECTOR, "select#visaType"),
        (By.CSS_SELECTOR, "select[name='service']"),
    ]

    NEXT_SELECTORS: List[Selector] = [
        _button_text("Next"),
        _button_text("Continue"),
        _button_text("Proceed"),
        _button_text("Check Availability"),
    ]

    LOGIN_FIELD_TIMEOUT_SECONDS = 10
    PAGE_READY_TIMEOUT_SECONDS = 30
    LOGIN_SETTLE_SECONDS = 2
    BOOKING_SETTLE_SECONDS = 2
    RESULTS_SETTLE_SECONDS = 3

    def __init__(
        self,
        email_settings: EmailSettings,
        *,
        headless: bool = True,
        driver_factory: Optional[Callable[[], webdriver.Chrome]] = None,
    ) -> None:
        self.email_settings = email_settings
        self.headless = headless
        self._driver_factory = driver_factory or self._start_chrome
        self.driver: Optional[webdriver.Chrome] = None
        self.driver_path: Optional[str] = None

    def _start_chrome(self) -> webdriver.Chrome:
        if self.driver_path is None:
            self.driver_path = ChromeDriverManager().install()
        return start_chrome(headless=self.headless, driver_path=self.driver_path)

    # ------------------------------------------------------------------
    # Single monitor check
    # ------------------------------------------------------------------
    def check_monitor(self, monitor: MonitorConfig, username: str, password: str) -> bool:
        tag = f"[{monitor.monitor_id}]"
        logging.info(
            "%s Starting check (center=%s visa=%s)",
            tag,
            monitor.center_value,
            monitor.visa_type_value,
        )

        self.driver = self._driver_factory()
        try:
            self._login(monitor, username, password)
            self._start_new_booking(tag)
            self._select_center(monitor, tag)
            self._select_visa_type(monitor, tag)

            next_button = self._first_present(self.NEXT_SELECTORS)
            if next_button is not None:
                self._click(next_button)
            self._pause(self.RESULTS_SETTLE_SECONDS)

            if detect_availability(self._body_text()):
                subject, message = build_slot_message(monitor)
                logging.info("*** SLOT FOUND *** %s", message)
                send_notification(self.email_settings, subject, message)
                return True

            logging.info("%s No slots found (checked).", tag)
            return False
        except Exception:
            self._capture_artifact(f"{monitor.monitor_id}_error")
            raise
        finally:
            self.quit_driver()

    def quit_driver(self) -> None:
        if self.driver is None:
            return
        try:
            self.driver.quit()
        except Exception:  # noqa: BLE001
            logging.debug("Driver quit raised; ignoring to continue cleanup.")
        finally:
            self.driver = None

    # ------------------------------------------------------------------
    # Page steps
    # ------------------------------------------------------------------
    def _login(self, monitor: MonitorConfig, username: str, password: str) -> None:
        driver = self.driver
        driver.get(monitor.login_url)
        self._wait_for_page_ready()

        try:
            email_field = WebDriverWait(driver, self.LOGIN_FIELD_TIMEOUT_SECONDS).until(
                lambda d: self._first_present(self.EMAIL_SELECTORS)
            )
        except TimeoutException as exc:
            raise TimeoutException(
                f"Login email field not found within {self.LOGIN_FIELD_TIMEOUT_SECONDS}s"
            ) from exc
        password_field = self._first_present(self.PASSWORD_SELECTORS)
        if password_field is None:
            raise NoSuchElementException("Login password field not found")

        self._enter_text(email_field, username)
        self._enter_text(password_field, password)

        submit = self._first_present(self.SUBMIT_SELECTORS)
        if submit is not None:
            self._click(submit)
        else:
            password_field.send_keys(Keys.ENTER)

        self._wait_for_page_ready()

    def _start_new_booking(self, tag: str) -> None:
        self._pause(self.LOGIN_SETTLE_SECONDS)
        button = self._first_present(self.START_BOOKING_SELECTORS) or self._first_present(
            self.NEW_BOOKING_SELECTORS
        )
        if button is not None:
            self._click(button)
        else:
            logging.info("%s Start New Booking button not found; adjust START_BOOKING_SELECTORS.", tag)
        self._pause(self.BOOKING_SETTLE_SECONDS)

    def _select_center(self, monitor: MonitorConfig, tag: str) -> None:
        element = self._first_present(self.CENTER_SELECTORS)
        if element is None:
            logging.info("%s Center select not found. May need special handling (radio buttons or custom dropdown).", tag)
            return

        if self._try_select(element, tag, text=monitor.center_value):
            return
        self._try_select(element, tag, value=monitor.center_option_value)

    def _select_visa_type(self, monitor: MonitorConfig, tag: str) -> None:
        element = self._first_present(self.VISA_TYPE_SELECTORS)
        if element is None:
            logging.info("%s Visa type select not found; may be custom UI.", tag)
            return

        self._try_select(element, tag, text=monitor.visa_type_value)

    def _try_select(self, element, tag: str, *, text: Optional[str] = None, value: Optional[str] = None) -> bool:
        how = f"label '{text}'" if text is not None else f"value '{value}'"
        # Disabled placeholders raise NotImplementedError inside Select.
        try:
            select = Select(element)
            if text is not None:
                select.select_by_visible_text(text)
            else:
                select.select_by_value(value)
        except (NoSuchElementException, NotImplementedError, WebDriverException) as exc:
            logging.debug("%s Could not select %s: %s", tag, how, str(exc).strip() or type(exc).__name__)
            return False
        logging.info("%s Selected %s", tag, how)
        return True

    def _body_text(self) -> str:
        body = self.driver.find_element(By.TAG_NAME, "body")
        return body.get_attribute("textContent") or body.text or ""

    # ------------------------------------------------------------------
    # Element helpers
    # ------------------------------------------------------------------
    def _first_present(self, selectors: Iterable[Selector]):
        for by, value in selectors:
            try:
                elements = self.driver.find_elements(by, value)
            except WebDriverException:
                continue
            if elements:
                return elements[0]
        return None

    def _wait_for_page_ready(self) -> None:
        try:
            WebDriverWait(self.driver, self.PAGE_READY_TIMEOUT_SECONDS).until(
                lambda d: d.execute_script("return document.readyState") == "complete"
            )
        except TimeoutException:
            logging.warning("Page did not finish loading within %ss; continuing", self.PAGE_READY_TIMEOUT_SECONDS)

    def _enter_text(self, element, value: str) -> None:
        try:
            element.clear()
        except WebDriverException:
            logging.debug("Unable to clear field before typing")
        element.send_keys(value)

    def _scroll_into_view(self, element) -> None:
        try:
            self.driver.execute_script(
                "arguments[0].scrollIntoView({block: 'center', inline: 'center'});",
                element,
            )
        except WebDriverException:
            logging.debug("Unable to scroll element into view; continuing anyway.")

    def _click(self, element) -> None:
        self._scroll_into_view(element)
        try:
            element.click()
        except (ElementClickInterceptedException, ElementNotInteractableException, StaleElementReferenceException):
            logging.debug("Direct click failed; attempting scripted click")
            self.driver.execute_script("arguments[0].click();", element)

    def _pause(self, seconds: float) -> None:
        time.sleep(seconds)

    def _capture_artifact(self, label: str) -> None:
        driver = self.driver
        if driver is None:
            return

        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        safe_label = re.sub(r"[^A-Za-z0-9_.-]", "_", label)
        base = artifacts_dir() / f"{timestamp}_{safe_label}"

        try:
            base.with_suffix(".html").write_text(driver.page_source, encoding="utf-8")
        except Exception as exc:  # noqa: BLE001
            logging.debug("Failed to persist page source artifact: %s", exc)

        try:
            driver.save_screenshot(str(base.with_suffix(".png")))
        except Exception as exc:  # noqa: BLE001
            logging.debug("Failed to capture screenshot artifact: %s", exc)


@dataclass
class RunSummary:
    checked: int = 0
    skipped: int = 0
    failed: int = 0
    slots_found: int = 0


def run_monitors(
    monitors: Iterable[Any],
    checker: VfsSlotChecker,
    *,
    environ: Optional[Mapping[str, str]] = None,
    now: Optional[datetime] = None,
    force: bool = False,
    only_ids: Optional[Iterable[str]] = None,
) -> RunSummary:
    summary = RunSummary()
    run_started = now or datetime.now(timezone.utc)
    wanted = set(only_ids) if only_ids else None

    for raw in monitors:
        try:
            monitor = MonitorConfig.from_dict(raw)
        except ValueError as exc:
            label = raw.get("id", "?") if isinstance(raw, dict) else "?"
            logging.warning("[%s] Invalid monitor entry: %s, skipping", label, exc)
            summary.skipped += 1
            continue

        tag = f"[{monitor.monitor_id}]"
        logging.debug("%s %s", tag, monitor.masked_summary())
        if wanted is not None and monitor.monitor_id not in wanted:
            logging.debug("%s not selected via --monitor; skipping", tag)
            summary.skipped += 1
            continue

        frequency = parse_frequency(monitor.frequency_minutes)
        if frequency is None:
            logging.info("%s Invalid frequency %s, skipping", tag, monitor.frequency_minutes)
            summary.skipped += 1
            continue

        if not force and not is_due(frequency, run_started):
            logging.info("%s not due (frequency %s min), skipping", tag, frequency)
            summary.skipped += 1
            continue

        credentials = monitor.resolve_credentials(environ)
        if credentials is None:
            logging.info(
                "%s Missing username/password env keys %s/%s",
                tag,
                monitor.username_env_key,
                monitor.password_env_key,
            )
            summary.skipped += 1
            continue

        try:
            found = checker.check_monitor(monitor, *credentials)
        except Exception as exc:  # noqa: BLE001
            logging.exception("%s Error during check: %s", tag, exc)
            summary.failed += 1
            continue

        summary.checked += 1
        if found:
            summary.slots_found += 1

    return summary


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="VFS appointment slot monitor (run once per cron tick)")
    parser.add_argument(
        "--no-headless",
        dest="headless",
        action="store_false",
        help="Run Chrome in visible mode (useful for adjusting selectors).",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Check every selected monitor now, ignoring its frequency.",
    )
    parser.add_argument(
        "--monitor",
        dest="monitor_ids",
        action="append",
        metavar="ID",
        help="Only check the monitor with this id (repeatable).",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON lines.")
    parser.set_defaults(headless=True)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)
    log_path = configure_logging(debug=args.debug, json_logs=args.json_logs)
    logging.debug("Logs rotate under %s", log_path.resolve())

    try:
        monitors = load_monitors(read_monitor_config_json())
        email_settings = EmailSettings.from_env()
    except (MonitorConfigError, ValueError) as exc:
        logging.error("Configuration error: %s", exc)
        raise SystemExit(1) from exc

    if not email_settings.is_configured():
        logging.info("EMAIL_USER/EMAIL_PASS not set; slot notifications will only be logged.")

    apply_selector_overrides(VfsSlotChecker)

    logging.info("VFS Monitor run: checking monitors due now (%d configured)", len(monitors))
    checker = VfsSlotChecker(email_settings, headless=args.headless)
    summary = run_monitors(
        monitors,
        checker,
        force=args.force,
        only_ids=args.monitor_ids,
    )
    logging.info(
        "All monitors processed. checked=%d skipped=%d failed=%d slots_found=%d. Exiting.",
        summary.checked,
        summary.skipped,
        summary.failed,
        summary.slots_found,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
