import logging
from typing import Callable, Awaitable, Mapping, Any

from txproxy.core.models.message import Message


RouteHandler = Callable[[Mapping[str, Any]], Awaitable[Message]]


class Router:
    """
    Maps message types (strings) to asynchronous handlers for
    RoutedApplication.

    Each handler is a coroutine accepting the request data and returning
    the reply `Message`. A message type can only be registered once; a
    second registration raises RuntimeError.
    """

    def __init__(self) -> None:
        self._routes: dict[str, RouteHandler] = {}
        self._logger = logging.getLogger("core.routing.router")

    def request(self, method: str) -> Callable[[RouteHandler], RouteHandler]:
        def decorator(func: RouteHandler) -> RouteHandler:
            self.add(method, func)
            return func

        return decorator

    def add(self, method: str, func: RouteHandler) -> None:
        if method in self._routes:
            raise RuntimeError(f"Handler already registered for '{method}'")

        self._routes[method] = func
        self._logger.debug(f"Registered handler for '{method}'")

    def resolve(self, method: str) -> RouteHandler | None:
        return self._routes.get(method)

    def routes(self) -> dict[str, RouteHandler]:
        return dict(self._routes)
