"""Menu-bar cat: animated status icon plus a read-only usage menu.

The animation thread owns its own frame timing; it only reads the
engine's snapshot and never shares a timer with the polling cadence.
"""

from __future__ import annotations

import logging
import threading

import pystray

from .config import ANIMATION_INTERVALS, APP_NAME
from .sprites import frames_for
from .state import CatState, UsageSnapshot
from .usage_engine import UsageEngine
from .utils import format_clock, format_credits, pct_str

log = logging.getLogger(__name__)


def _noop(icon, item) -> None:
    """Action for the disabled informational rows."""


def menu_lines(snapshot: UsageSnapshot) -> list[str]:
    """The informational rows shown above the actions."""
    lines = []
    header = APP_NAME
    if snapshot.subscription_tier is not None:
        header += f" · {snapshot.subscription_tier.value}"
    lines.append(header)
    if snapshot.account_email:
        lines.append(snapshot.account_email)

    lines.append(f"Session Usage: {pct_str(snapshot.usage_percent)}")
    lines.append(snapshot.session_reset_text())
    if snapshot.show_weekly:
        lines.append(f"Weekly Usage: {pct_str(snapshot.weekly_utilization)}")
    if snapshot.show_extra_usage:
        extra = snapshot.extra_usage
        lines.append(
            f"Extra Usage: {format_credits(extra.used_credits, extra.monthly_limit_credits)}"
        )
    if snapshot.error_message:
        lines.append(f"⚠ {snapshot.error_message}")

    if snapshot.using_mock_data:
        lines.append(snapshot.connection_hint)
    elif snapshot.last_updated is not None:
        lines.append(f"Connected · updated {format_clock(snapshot.last_updated)}")
    else:
        lines.append("Connected")
    return lines


def tooltip(snapshot: UsageSnapshot) -> str:
    if snapshot.error_message:
        return f"{APP_NAME}: {snapshot.error_message}"
    if snapshot.using_mock_data:
        return f"{APP_NAME}: not connected"
    return f"{APP_NAME}: {pct_str(snapshot.usage_percent)} of session used"


class TrayIcon:
    """Status icon powered by pystray."""

    def __init__(self, engine: UsageEngine, on_exit=None) -> None:
        self._engine = engine
        self._on_exit = on_exit
        self._icon: pystray.Icon | None = None
        self._state = CatState.IDLE
        self._state_changed = threading.Event()
        self._stop_event = threading.Event()
        self._unsubscribe = None

    def run(self) -> None:
        """Create the icon and block in its event loop (main thread on macOS)."""
        snapshot = self._engine.snapshot
        self._state = snapshot.cat_state
        self._icon = pystray.Icon(
            name="tokencat",
            icon=frames_for(self._state)[0],
            title=tooltip(snapshot),
            menu=self._build_menu(snapshot),
        )
        self._unsubscribe = self._engine.subscribe(self._on_snapshot)
        self._icon.run(setup=self._setup)

    def stop(self) -> None:
        self._stop_event.set()
        self._state_changed.set()
        if self._unsubscribe:
            self._unsubscribe()
        if self._icon:
            self._icon.stop()
        log.info("Tray icon stopped")

    def _setup(self, icon: pystray.Icon) -> None:
        icon.visible = True
        threading.Thread(target=self._animate, daemon=True, name="CatAnimation").start()
        log.info("Tray icon started")

    def _animate(self) -> None:
        """Loop the current state's frames until the state changes."""
        while not self._stop_event.is_set():
            state = self._state
            frames = frames_for(state)
            interval = ANIMATION_INTERVALS[state.value]
            self._state_changed.clear()
            index = 0
            while not self._stop_event.is_set() and state is self._state:
                self._icon.icon = frames[index]
                index = (index + 1) % len(frames)
                if self._state_changed.wait(interval):
                    break

    def _on_snapshot(self, snapshot: UsageSnapshot) -> None:
        if not self._icon:
            return
        new_state = snapshot.cat_state
        if new_state is not self._state:
            log.debug("Cat state %s -> %s", self._state.value, new_state.value)
            self._state = new_state
            self._state_changed.set()
        self._icon.title = tooltip(snapshot)
        self._icon.menu = self._build_menu(snapshot)

    def _build_menu(self, snapshot: UsageSnapshot) -> pystray.Menu:
        items = [pystray.MenuItem(line, _noop, enabled=False) for line in menu_lines(snapshot)]
        items.append(pystray.Menu.SEPARATOR)
        if snapshot.using_mock_data:
            items.append(pystray.MenuItem("Cycle State", self._handle_cycle))
        else:
            items.append(pystray.MenuItem("Refresh", self._handle_refresh))
        items.append(pystray.Menu.SEPARATOR)
        items.append(pystray.MenuItem("Quit", self._handle_exit))
        return pystray.Menu(*items)

    def _handle_cycle(self, icon=None, item=None) -> None:
        self._engine.cycle_mock_usage()

    def _handle_refresh(self, icon=None, item=None) -> None:
        self._engine.refresh()

    def _handle_exit(self, icon=None, item=None) -> None:
        if self._on_exit:
            self._on_exit()
