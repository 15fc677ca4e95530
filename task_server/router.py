"""
Exact-path dispatch of exchanges to handlers.
"""

from typing import Callable, Dict, Optional
import logging

from task_server.http_response import HttpExchange

LOGGER = logging.getLogger(__name__)

Handler = Callable[[HttpExchange], None]


class Router:
    def __init__(self) -> None:
        self._handlers: Dict[str, Handler] = {}

    def register(self, path: str, handler: Handler) -> None:
        if path in self._handlers:
            raise ValueError(f"Handler already registered for {path}")
        self._handlers[path] = handler

    def resolve(self, path: str) -> Optional[Handler]:
        return self._handlers.get(path)

    def dispatch(self, exchange: HttpExchange) -> bool:
        """Run the handler for the request path. Returns False when no handler matches."""
        handler = self.resolve(exchange.request.path)
        if handler is None:
            LOGGER.info("No handler for %s", exchange.request.path)
            return False

        handler(exchange)
        return True
