"""
Dismiss-control probes shared by the classifier and the resolver.

A "dismiss control" is anything that closes the continue-shopping overlay or
the add-to-cart side sheet: a known id, an accessible button whose name says
continue/keep shopping, or the same inside an attach/side-sheet child frame.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, List, Optional

from playwright.async_api import Error as PlaywrightError

from .exceptions import is_closed_target_error

logger = logging.getLogger(__name__)


KNOWN_DISMISS_SELECTORS = [
    "#hlb-continue-shopping-announce",
    "a#hlb-continue-shopping-announce",
    "#continue-shopping",
    "button#continue-shopping",
    'a[href*="continueShopping"]',
    'button[name*="continueShopping"]',
    'input[type="submit"][value*="Continue shopping" i]',
    "#attach-close_sideSheet-link",
]

CONTINUE_TEXT_RE = re.compile(r"(continue|keep)\s+shopping", re.IGNORECASE)

SIDE_FRAME_HINTS = ("attach", "sidesheet", "side-sheet", "side_sheet")

CLICKABLE_ROLES = ("button", "link")


@dataclass
class DismissControl:
    """A visible control plus where it was found."""
    source: str  # "selector", "role" or "frame"
    locator: Any
    description: str = ""


async def _visible(locator) -> bool:
    try:
        return await locator.is_visible()
    except PlaywrightError as e:
        if is_closed_target_error(e):
            raise
        return False


def side_frames(page) -> List[Any]:
    """Child frames whose name or URL looks like an attach/side-sheet panel."""
    frames = []
    for frame in page.main_frame.child_frames:
        marker = f"{frame.name or ''} {frame.url or ''}".lower()
        if any(hint in marker for hint in SIDE_FRAME_HINTS):
            frames.append(frame)
    return frames


async def find_by_selector(scope) -> Optional[DismissControl]:
    for selector in KNOWN_DISMISS_SELECTORS:
        locator = scope.locator(selector).first
        if await _visible(locator):
            return DismissControl("selector", locator, selector)
    return None


async def find_by_role(scope, source: str = "role") -> Optional[DismissControl]:
    for role in CLICKABLE_ROLES:
        locator = scope.get_by_role(role, name=CONTINUE_TEXT_RE).first
        if await _visible(locator):
            return DismissControl(source, locator, f"{role}:{CONTINUE_TEXT_RE.pattern}")
    return None


async def find_in_side_frames(page) -> Optional[DismissControl]:
    for frame in side_frames(page):
        control = await find_by_selector(frame)
        if control is None:
            control = await find_by_role(frame, source="frame")
        if control is not None:
            control.source = "frame"
            control.description = f"{frame.name or frame.url} > {control.description}"
            return control
    return None


async def find_dismiss_control(page) -> Optional[DismissControl]:
    """First visible dismiss control: known ids, then role text, then side frames."""
    return (
        await find_by_selector(page)
        or await find_by_role(page)
        or await find_in_side_frames(page)
    )
