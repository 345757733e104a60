"""In-memory cache of the latest quote per (symbol, venue)."""

from __future__ import annotations

from .models import OrderBookSnapshot, Quote


class QuoteCache:
    """Latest quote and order book for each (symbol, venue) key.

    Last value wins and nothing expires; entries leave only by being
    overwritten. Writers and readers all run on the event loop, so the
    cache needs no lock.
    """

    def __init__(self) -> None:
        self._quotes: dict[tuple[str, str], Quote] = {}
        self._books: dict[tuple[str, str], OrderBookSnapshot] = {}
        self._version: int = 0  # Monotonically increasing; bumped on every update

    def put(self, quote: Quote) -> Quote | None:
        """Store ``quote``, returning the quote it replaced (if any)."""
        previous = self._quotes.get(quote.key)
        self._quotes[quote.key] = quote
        self._version += 1
        return previous

    def get(self, symbol: str, venue_id: str) -> Quote | None:
        return self._quotes.get((symbol, venue_id))

    def for_symbol(self, symbol: str) -> list[Quote]:
        """Every venue's latest quote for ``symbol``, ordered by venue id."""
        return sorted(
            (q for (sym, _venue), q in self._quotes.items() if sym == symbol),
            key=lambda q: q.venue_id,
        )

    def get_all(self) -> dict[tuple[str, str], Quote]:
        """Snapshot of all current quotes. Returns a shallow copy."""
        return dict(self._quotes)

    def symbols(self) -> list[str]:
        return sorted({sym for sym, _venue in self._quotes})

    def put_book(self, book: OrderBookSnapshot) -> None:
        self._books[(book.symbol, book.venue_id)] = book
        self._version += 1

    def get_book(self, symbol: str, venue_id: str) -> OrderBookSnapshot | None:
        return self._books.get((symbol, venue_id))

    @property
    def version(self) -> int:
        """Current version counter. Useful for change detection."""
        return self._version

    def __len__(self) -> int:
        return len(self._quotes)

    def __contains__(self, key: tuple[str, str]) -> bool:
        return key in self._quotes
