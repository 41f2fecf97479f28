"""
Browser host interface.

The engine never talks to a browser directly. It asks the host which tab
is active and whether its window is focused, and tells it to redirect a
tab or show a near-limit warning. The local bridge server implements this
for the real extension; tests use a fake.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol


@dataclass(frozen=True)
class Tab:
    """Minimal view of a browser tab."""

    id: int
    url: str = ""
    active: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Tab":
        """
        Build a Tab from a JSON payload ({"id": 3, "url": "...", "active": true}).

        Raises:
            ValueError: If the id is missing or not an integer.
        """
        try:
            tab_id = int(data["id"])
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Invalid tab payload: {data!r}") from e
        return cls(id=tab_id, url=str(data.get("url") or ""), active=bool(data.get("active", False)))


class BrowserHost(Protocol):
    """Side effects and queries the engine needs from the browser."""

    def get_active_tab(self) -> Optional[Tab]:
        ...

    def is_window_focused(self) -> bool:
        ...

    def redirect(self, tab_id: int, url: str) -> None:
        ...

    def show_warning(self, tab_id: int, used_minutes: int, limit_minutes: int) -> None:
        ...


class NullHost:
    """Host with no browser attached: nothing is active, nothing is focused."""

    def get_active_tab(self) -> Optional[Tab]:
        return None

    def is_window_focused(self) -> bool:
        return False

    def redirect(self, tab_id: int, url: str) -> None:
        pass

    def show_warning(self, tab_id: int, used_minutes: int, limit_minutes: int) -> None:
        pass
