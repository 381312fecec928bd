import logging
import os
import threading
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import yaml
from selenium.webdriver.common.by import By

Selector = Tuple[str, str]

BY_MAP = {
    "ID": By.ID,
    "NAME": By.NAME,
    "XPATH": By.XPATH,
    "CSS_SELECTOR": By.CSS_SELECTOR,
    "CSS": By.CSS_SELECTOR,
    "TAG_NAME": By.TAG_NAME,
    "CLASS_NAME": By.CLASS_NAME,
    "LINK_TEXT": By.LINK_TEXT,
    "PARTIAL_LINK_TEXT": By.PARTIAL_LINK_TEXT,
}
_APPLIED_LOCK = threading.Lock()
_APPLIED_TARGETS = set()


def default_registry_path() -> str:
    return os.getenv("SELECTOR_REGISTRY_PATH", "selectors.yml")


def load_selector_registry(path: Optional[str] = None) -> Dict[str, List[Selector]]:
    """Read selector overrides from a YAML (or JSON) file.

    The file maps a selector-list name such as ``CENTER_SELECTORS`` to a list
    of ``{by, value}`` entries. Unknown ``by`` names and blank values are
    dropped.
    """
    registry_path = Path(path or default_registry_path())
    if not registry_path.exists():
        return {}

    try:
        raw = yaml.safe_load(registry_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        logging.warning("Unable to parse selector registry file %s: %s", registry_path, exc)
        return {}
    if not isinstance(raw, dict):
        return {}

    parsed: Dict[str, List[Selector]] = {}
    for key, value in raw.items():
        if not isinstance(value, list):
            continue
        selectors: List[Selector] = []
        for item in value:
            if not isinstance(item, dict):
                continue
            by_name = str(item.get("by", "")).upper().strip()
            selector_value = str(item.get("value", "")).strip()
            if by_name in BY_MAP and selector_value:
                selectors.append((BY_MAP[by_name], selector_value))
        if selectors:
            parsed[str(key).strip()] = selectors
    return parsed


def apply_selector_overrides(target_cls, path: Optional[str] = None) -> None:
    path = path or default_registry_path()
    target_key = (id(target_cls), path)
    with _APPLIED_LOCK:
        if target_key in _APPLIED_TARGETS:
            return

    registry = load_selector_registry(path)
    if not registry:
        return

    for selector_name, override_selectors in registry.items():
        if not hasattr(target_cls, selector_name):
            logging.warning("Selector registry entry %s does not match any selector list", selector_name)
            continue
        default_selectors = list(getattr(target_cls, selector_name))
        merged = list(override_selectors)
        for selector in default_selectors:
            if selector not in merged:
                merged.append(selector)
        setattr(target_cls, selector_name, merged)
        logging.info(
            "Selector registry applied for %s (%d overrides + %d defaults)",
            selector_name,
            len(override_selectors),
            len(default_selectors),
        )
    with _APPLIED_LOCK:
        _APPLIED_TARGETS.add(target_key)
