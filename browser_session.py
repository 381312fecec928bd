import logging
import os
from typing import Optional

from selenium import webdriver
from selenium.common.exceptions import WebDriverException
from selenium.webdriver.chrome.options import Options
from selenium.webdriver.chrome.service import Service
from webdriver_manager.chrome import ChromeDriverManager

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
PAGE_LOAD_TIMEOUT_SECONDS = 90

# Keep webdriver-manager quiet unless user overrides
os.environ.setdefault("WDM_LOG_LEVEL", "0")


def build_chrome_options(*, headless: bool) -> Options:
    options = Options()
    if headless:
        options.add_argument("--headless=new")

    options.add_argument("--no-sandbox")
    options.add_argument("--disable-dev-shm-usage")
    options.add_argument("--disable-gpu")
    options.add_argument("--disable-extensions")
    options.add_argument("--disable-blink-features=AutomationControlled")
    options.add_argument("--window-size=1366,900")

    # VFS pages render selects and buttons without images; skip them to keep runs short.
    minimal_browser = os.getenv("MINIMAL_BROWSER", "true").lower() == "true"
    prefs = {
        "profile.default_content_setting_values": {
            "images": 2 if minimal_browser else 0,
            "popups": 2,
            "geolocation": 2,
            "notifications": 2,
        }
    }
    options.add_experimental_option("prefs", prefs)

    user_agent = os.getenv("CHECKER_USER_AGENT", DEFAULT_USER_AGENT)
    options.add_argument(f"--user-agent={user_agent}")
    options.add_experimental_option("excludeSwitches", ["enable-automation"])
    options.add_experimental_option("useAutomationExtension", False)
    return options


def start_chrome(*, headless: bool, driver_path: Optional[str] = None) -> webdriver.Chrome:
    """Launch a fresh Chrome session for a single monitor check."""
    service = Service(driver_path or ChromeDriverManager().install())
    try:
        driver = webdriver.Chrome(service=service, options=build_chrome_options(headless=headless))
    except WebDriverException as exc:
        logging.error("Failed to start Chrome driver: %s", exc)
        raise

    driver.set_page_load_timeout(PAGE_LOAD_TIMEOUT_SECONDS)
    driver.implicitly_wait(0)

    try:
        driver.execute_cdp_cmd(
            "Page.addScriptToEvaluateOnNewDocument",
            {"source": "Object.defineProperty(navigator, 'webdriver', {get: () => undefined});"},
        )
    except Exception:  # noqa: BLE001
        logging.debug("Unable to tweak navigator.webdriver; continuing anyway.")

    logging.debug(
        "Chrome session started (headless=%s, browser=%s)",
        headless,
        driver.capabilities.get("browserVersion", "unknown"),
    )
    return driver
