"""Observable in-memory state store shared by the managers."""
from __future__ import annotations

from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

Listener = Callable[[str, Any], None]


@dataclass(eq=False)
class _Subscription:
    listener: Listener
    key: Optional[str]


class ObservableStore:
    """Keyed state with subscribe/notify semantics.

    Listeners run synchronously on the thread that called ``set``. A listener
    registered with a key only hears about that key.
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self._lock = Lock()
        self._state: Dict[str, Any] = dict(initial or {})
        self._subscriptions: List[_Subscription] = []

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._state.get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._state[key] = value
            listeners = [
                sub.listener
                for sub in self._subscriptions
                if sub.key is None or sub.key == key
            ]
        for listener in listeners:
            listener(key, value)

    def update(self, values: Dict[str, Any]) -> None:
        for key, value in values.items():
            self.set(key, value)

    def subscribe(self, listener: Listener, key: Optional[str] = None) -> Callable[[], None]:
        """Register a listener and return a callable that removes it."""

        subscription = _Subscription(listener=listener, key=key)
        with self._lock:
            self._subscriptions.append(subscription)

        def _unsubscribe() -> None:
            with self._lock:
                if subscription in self._subscriptions:
                    self._subscriptions.remove(subscription)

        return _unsubscribe

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self._state)

    def clear(self) -> None:
        with self._lock:
            self._state.clear()
