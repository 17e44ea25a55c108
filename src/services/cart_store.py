"""
Client-held cart.

The cart lives in a local snapshot store shared by every view of the same
user (other screens, other app processes pointed at the same file). Writes
replace the whole snapshot and the last writer wins: concurrent edits from
two views are not merged.
"""

from __future__ import annotations

import dataclasses
import json
import os
import tempfile
from typing import Any, Callable, Dict, List, Optional, Protocol

from db.models import CartLine
from utils.errors import ValidationError
from utils.logger import get_logger

_logger = get_logger(__name__)

Snapshot = List[Dict[str, Any]]
Listener = Callable[[Snapshot], None]


class CartStorage(Protocol):
    def load(self) -> Snapshot: ...

    def save(self, snapshot: Snapshot) -> None: ...

    def subscribe(self, listener: Listener) -> Callable[[], None]: ...


class _ListenerMixin:
    def __init__(self) -> None:
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, snapshot: Snapshot) -> None:
        for listener in list(self._listeners):
            listener(snapshot)


class MemoryCartStorage(_ListenerMixin):
    """In-process storage, shared by every CartStore built on the same instance."""

    def __init__(self, snapshot: Optional[Snapshot] = None) -> None:
        super().__init__()
        self._snapshot: Snapshot = list(snapshot or [])

    def load(self) -> Snapshot:
        return [dict(entry) for entry in self._snapshot]

    def save(self, snapshot: Snapshot) -> None:
        self._snapshot = [dict(entry) for entry in snapshot]
        self._notify(self.load())


class JsonFileCartStorage(_ListenerMixin):
    """
    Snapshot kept as JSON under `key` in a file. Other processes using the
    same file are picked up by `poll()`.
    """

    def __init__(self, path: str, key: str = "cart") -> None:
        super().__init__()
        self.path = path
        self.key = key
        self._seen_mtime: Optional[int] = self._mtime()

    def _mtime(self) -> Optional[int]:
        try:
            return os.stat(self.path).st_mtime_ns
        except FileNotFoundError:
            return None

    def _read_all(self) -> Dict[str, Any]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except ValueError:
            _logger.warning(f"Cart file {self.path} is not valid JSON, starting empty")
            return {}
        return data if isinstance(data, dict) else {}

    def load(self) -> Snapshot:
        snapshot = self._read_all().get(self.key, [])
        return snapshot if isinstance(snapshot, list) else []

    def save(self, snapshot: Snapshot) -> None:
        data = self._read_all()
        data[self.key] = snapshot
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        # write-then-rename so readers never see a half written file
        fd, tmp = tempfile.mkstemp(dir=directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False)
            os.replace(tmp, self.path)
        except OSError:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise
        self._seen_mtime = self._mtime()
        _logger.debug(f"Saved cart snapshot with {len(snapshot)} line(s)")
        self._notify(self.load())

    def poll(self) -> bool:
        """Notify listeners if another process rewrote the file. True if it did."""
        mtime = self._mtime()
        if mtime == self._seen_mtime:
            return False
        self._seen_mtime = mtime
        self._notify(self.load())
        return True


def _to_quantity(qty) -> int:
    try:
        return max(1, int(qty))
    except (TypeError, ValueError, OverflowError):
        return 1


class CartStore:
    """Cart lines keyed by product id, persisted on every mutation."""

    def __init__(self, storage: Optional[CartStorage] = None) -> None:
        self._storage = storage if storage is not None else MemoryCartStorage()
        self._lines: List[CartLine] = self._parse(self._storage.load())
        self._change_listeners: List[Callable[[], None]] = []
        self._unsubscribe = self._storage.subscribe(self._on_storage_change)

    @staticmethod
    def _parse(snapshot: Snapshot) -> List[CartLine]:
        lines: Dict[int, CartLine] = {}
        for entry in snapshot:
            try:
                line = CartLine.from_dict(entry)
            except (KeyError, TypeError, ValueError, AttributeError):
                _logger.warning(f"Dropping unreadable cart entry: {entry!r}")
                continue
            lines[line.product_id] = line
        return list(lines.values())

    def _on_storage_change(self, snapshot: Snapshot) -> None:
        self._lines = self._parse(snapshot)
        for listener in list(self._change_listeners):
            listener()

    def on_change(self, listener: Callable[[], None]) -> None:
        """Call `listener` whenever the cart is rewritten, by us or by another view."""
        self._change_listeners.append(listener)

    def close(self) -> None:
        self._unsubscribe()

    def _persist(self) -> None:
        self._storage.save([line.to_dict() for line in self._lines])

    def reload(self) -> None:
        self._lines = self._parse(self._storage.load())

    # ---------------------------
    # queries
    # ---------------------------

    @property
    def lines(self) -> List[CartLine]:
        return list(self._lines)

    def get(self, product_id: int) -> Optional[CartLine]:
        for line in self._lines:
            if line.product_id == product_id:
                return line
        return None

    def is_empty(self) -> bool:
        return not self._lines

    def __len__(self) -> int:
        return len(self._lines)

    def total(self) -> float:
        return sum(line.unit_price * line.quantity for line in self._lines)

    # ---------------------------
    # mutations
    # ---------------------------

    def add_item(
        self,
        product_id: int,
        unit_price: float,
        name: str,
        image_ref: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> CartLine:
        """Add one unit. An existing line keeps its price and gets quantity + 1."""
        existing = self.get(product_id)
        if existing is not None:
            line = dataclasses.replace(existing, quantity=existing.quantity + 1)
            self._lines = [line if x.product_id == product_id else x for x in self._lines]
        else:
            if unit_price is None or unit_price < 0:
                raise ValidationError("Unit price cannot be negative.")
            line = CartLine(
                product_id=product_id,
                name=name,
                unit_price=float(unit_price),
                quantity=1,
                image_ref=image_ref,
                options=options,
            )
            self._lines = [*self._lines, line]
        self._persist()
        return line

    def update_quantity(self, product_id: int, qty) -> None:
        """Set the quantity of a line. Anything below 1 or not a number becomes 1."""
        q = _to_quantity(qty)
        self._lines = [
            dataclasses.replace(x, quantity=q)
            if x.product_id == product_id
            else x
            for x in self._lines
        ]
        self._persist()

    def remove_item(self, product_id: int) -> None:
        self._lines = [x for x in self._lines if x.product_id != product_id]
        self._persist()

    def clear(self) -> None:
        # only after an order is confirmed
        self._lines = []
        self._persist()
