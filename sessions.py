# sessions.py
from dataclasses import dataclass
from typing import List, Optional

from positions import Position

POSITIONS_PER_PAGE = 9


@dataclass
class UserSession:
    """Per-request view state for one user. Owned and stored by the caller."""
    telegram_id: str
    hide_zero_balances: bool = False
    current_page: int = 0
    selected_token: Optional[str] = None


@dataclass
class PositionsPage:
    positions: List[Position]
    page: int
    total_pages: int
    selected: Optional[Position]


def paginate_positions(positions: List[Position], session: UserSession, per_page: int = POSITIONS_PER_PAGE) -> PositionsPage:
    """
    Filters, sorts by symbol and pages the positions for display.

    Clamps the session's page into range and falls back to the first visible
    position when nothing (or a hidden token) is selected. Mutates ``session``.
    """
    visible = [p for p in positions if p.total_tokens > 0] if session.hide_zero_balances else list(positions)
    visible.sort(key=lambda p: p.token_symbol)

    total_pages = max(1, -(-len(visible) // per_page))
    session.current_page = min(max(session.current_page, 0), total_pages - 1)
    start = session.current_page * per_page
    page = visible[start:start + per_page]

    selected = next((p for p in visible if p.token_address == session.selected_token), None)
    if selected is None and visible:
        selected = page[0] if page else visible[0]
    session.selected_token = selected.token_address if selected else None

    return PositionsPage(positions=page, page=session.current_page, total_pages=total_pages, selected=selected)
