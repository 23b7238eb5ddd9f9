"""
=============================================================================
BASE MIDDLEWARE INTERFACE
=============================================================================

Defines the middleware contract and the ordered pipeline that chains the
echo server's stages together (Chain of Responsibility).

    ┌─────────────────────────────────────────────────────────────────────┐
    │                 ECHO SERVER PIPELINE - REQUEST FLOW                 │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Request ────────────────────────────────────────────────►         │
    │                                                                      │
    │   ┌──────────┐    ┌──────────┐    ┌──────────┐    ┌──────────┐     │
    │   │   CORS   │───►│  Access  │───►│ Metrics  │───►│   Echo   │     │
    │   │          │    │   Log    │    │          │    │ Handler  │     │
    │   └────┬─────┘    └────┬─────┘    └────┬─────┘    └────┬─────┘     │
    │        │               │               │               │            │
    │   [before]        [before]        [before]         [exec]          │
    │   OPTIONS?        start clock     scrape path?     reflect         │
    │   → 204, stop                     → serve, stop    request         │
    │        ▲               ▲               ▲               │            │
    │   [after]         [after]         [after]              ▼            │
    │   add CORS        log line        observe          response        │
    │   headers                         duration                          │
    │                                                                      │
    │   ◄──────────────────────────────────────────────── Response        │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Every stage receives a `next` callable. Calling it continues the chain;
returning without calling it short-circuits everything downstream. Calling
it twice is a programming error and raises RuntimeError, because the
request body stream can only be consumed once.

=============================================================================
"""

from abc import ABC, abstractmethod
from typing import Callable, List
import logging

from ..http.request import HTTPRequest
from ..http.response import HTTPResponse


logger = logging.getLogger(__name__)


# Type alias: the rest of the chain, from the point of view of one stage
NextHandler = Callable[[HTTPRequest], HTTPResponse]


class Middleware(ABC):
    """
    Abstract base class for middleware.

        class MyMiddleware(Middleware):
            def __call__(self, request, next):
                if request.method == "OPTIONS":
                    return empty_response()   # short-circuit

                response = next(request)      # continue (at most once)
                response.set_header("X-Seen", "yes")
                return response
    """

    @abstractmethod
    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        """
        Process the request.

        Args:
            request: The incoming HTTP request
            next: The rest of the chain

        Returns:
            HTTP response (either from next() or short-circuited)
        """

    @property
    def name(self) -> str:
        return self.__class__.__name__


class MiddlewarePipeline:
    """
    Chains middleware around a final handler.

    The first middleware added is the outermost layer:

        pipeline = MiddlewarePipeline()
        pipeline.add(CORSMiddleware(config))      # outermost
        pipeline.add(LoggingMiddleware(config))
        pipeline.add(MetricsMiddleware(config))   # closest to the handler

        handler = pipeline.wrap(echo_handler)
        response = handler(request)
    """

    def __init__(self):
        self._middleware: List[Middleware] = []

    def add(self, middleware: Middleware) -> "MiddlewarePipeline":
        """Append a stage. Returns self for chaining."""
        self._middleware.append(middleware)
        logger.debug(f"Added middleware: {middleware.name}")
        return self

    def use(self, *middleware: Middleware) -> "MiddlewarePipeline":
        """Append several stages at once."""
        for mw in middleware:
            self.add(mw)
        return self

    def wrap(self, handler: NextHandler) -> NextHandler:
        """
        Build the chain.

        Given [MW1, MW2, MW3] the result is MW1 → MW2 → MW3 → handler,
        so we wrap in REVERSE order.
        """
        current = handler

        for middleware in reversed(self._middleware):
            current = self._create_wrapped_handler(middleware, current)

        return current

    @staticmethod
    def _create_wrapped_handler(middleware: Middleware, next_handler: NextHandler) -> NextHandler:
        """Closure that hands `middleware` a one-shot `next`."""

        def wrapped(request: HTTPRequest) -> HTTPResponse:
            called = False

            def next_once(req: HTTPRequest) -> HTTPResponse:
                nonlocal called
                if called:
                    raise RuntimeError(f"{middleware.name} called next() more than once")
                called = True
                return next_handler(req)

            return middleware(request, next_once)

        return wrapped
