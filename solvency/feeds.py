"""
feeds.py - Reference price feeds

Provides in-process implementations of the PriceFeed protocol for
simulations, demos and tests. Answers are USD per whole asset with
FEED_DECIMALS (8) decimals, matching what the engine expects.

Classes:
- StaticPriceFeed: Manually updated feed that keeps every round it published
- TimeSeriesPriceFeed: Replays a price path against a clock
"""

from __future__ import annotations
from bisect import bisect_right
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from .core import FEED_DECIMALS, RoundData


class StaticPriceFeed:
    """
    Price feed whose answer changes only when updated explicitly.

    Each update publishes a new round with a sequential round id. Past
    rounds stay queryable with get_round_data() and round_at().

    Example:
        feed = StaticPriceFeed(2000 * 10**8, updated_at=datetime(2025, 1, 1))
        feed.update_answer(1400 * 10**8, updated_at=datetime(2025, 1, 2))
        feed.latest_round_data().answer  # 140000000000
    """

    def __init__(
        self,
        initial_answer: int,
        updated_at: datetime,
        decimals: int = FEED_DECIMALS,
        description: str = "",
    ):
        """
        Create a feed with one published round.

        Args:
            initial_answer: First answer (USD with `decimals` decimals)
            updated_at: Time the first answer was published
            decimals: Decimals of every answer
            description: Free-form label, e.g. "ETH / USD"
        """
        self.decimals = decimals
        self.description = description
        self.rounds: Dict[int, RoundData] = {}
        self.latest_round = 0
        self.update_answer(initial_answer, updated_at)

    def update_answer(self, answer: int, updated_at: datetime) -> RoundData:
        """Publish a new round started and updated at updated_at."""
        return self.update_round_data(self.latest_round + 1, answer, updated_at, updated_at)

    def update_round_data(
        self,
        round_id: int,
        answer: int,
        started_at: datetime,
        updated_at: datetime,
    ) -> RoundData:
        """
        Publish a round with explicit id and timestamps.

        The latest round becomes round_id, so this can also rewind the feed.
        """
        round_data = RoundData(round_id, answer, started_at, updated_at, round_id)
        self.rounds[round_id] = round_data
        self.latest_round = round_id
        return round_data

    def latest_round_data(self) -> RoundData:
        return self.rounds[self.latest_round]

    def get_round_data(self, round_id: int) -> RoundData:
        """
        Raises:
            KeyError: If no round with this id was published
        """
        if round_id not in self.rounds:
            raise KeyError(f"Round {round_id} not published")
        return self.rounds[round_id]

    def round_at(self, timestamp: datetime) -> Optional[RoundData]:
        """
        Most recent round updated at or before timestamp, or None.

        Uses binary search over rounds ordered by update time.
        """
        history = sorted(self.rounds.values(), key=lambda r: r.updated_at)
        idx = bisect_right([r.updated_at for r in history], timestamp)
        if idx == 0:
            return None
        return history[idx - 1]

    def __repr__(self):
        return f"StaticPriceFeed({self.description or 'unnamed'}, {len(self.rounds)} rounds)"


class TimeSeriesPriceFeed:
    """
    Price feed that replays a (timestamp, answer) path.

    The latest round is the last point at or before clock(). Round ids are
    1-based positions in the path. Once the clock runs past the final point
    the feed stops updating, which is how an oracle outage looks to the engine.

    Example:
        engine = SolvencyEngine("engine", [weth], [feed], token, initial_time=t0)
        feed = TimeSeriesPriceFeed(
            [(t0, 2000 * 10**8), (t0 + timedelta(hours=1), 1400 * 10**8)],
            clock=lambda: engine.current_time,
        )
    """

    def __init__(
        self,
        price_path: List[Tuple[datetime, int]],
        clock: Callable[[], datetime],
        decimals: int = FEED_DECIMALS,
    ):
        """
        Args:
            price_path: (timestamp, answer) points; sorted on construction
            clock: Returns the current time
            decimals: Decimals of every answer

        Raises:
            ValueError: If price_path is empty
        """
        if not price_path:
            raise ValueError("price_path must contain at least one point")
        self.price_path = sorted(price_path, key=lambda x: x[0])
        self.clock = clock
        self.decimals = decimals

    def add_price(self, timestamp: datetime, answer: int) -> None:
        """Add a point to the path, keeping it in timestamp order."""
        self.price_path.append((timestamp, answer))
        self.price_path.sort(key=lambda x: x[0])

    def latest_round_data(self) -> RoundData:
        """
        Raises:
            LookupError: If the clock is before the first point
        """
        now = self.clock()
        timestamps = [ts for ts, _ in self.price_path]
        idx = bisect_right(timestamps, now)
        if idx == 0:
            raise LookupError(f"No price published at or before {now}")
        timestamp, answer = self.price_path[idx - 1]
        return RoundData(idx, answer, timestamp, timestamp, idx)

    def __repr__(self):
        return f"TimeSeriesPriceFeed({len(self.price_path)} points)"
