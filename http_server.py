from concurrent.futures import ThreadPoolExecutor
from typing import Final, List, Optional, Tuple
import logging
import os
import socket
import sys
import threading

from task_server.calculator import lift_int_digit_limit
from task_server.config import ServerConfig
from task_server.handlers import build_router
from task_server.http_request import RequestParseError, UnsupportedVersionError, parse_request
from task_server.http_response import HttpExchange, HttpResponse
from task_server.router import Router

LOGGER = logging.getLogger(__name__)

ACCEPT_POLL_INTERVAL: Final[float] = 0.5  # Seconds between stop checks in the accept loop
LOG_LEVEL_ENV: Final[str] = "TASK_SERVER_LOG_LEVEL"


def send_error(client_socket: socket.socket, status_code: int, message: str) -> None:
    response = HttpResponse(status_code=status_code, body=message.encode("utf-8"))
    client_socket.sendall(response.serialize())


def handle_connection(client_socket: socket.socket, client_address: Tuple[str, int], router: Router, config: ServerConfig) -> None:
    LOGGER.info("Connection from %s", client_address)

    rfile = client_socket.makefile("rb")
    wfile = client_socket.makefile("wb")

    try:
        try:
            request = parse_request(rfile, config.max_header_bytes)
        except UnsupportedVersionError as e:
            LOGGER.info("Error parsing request: %s", e)
            send_error(client_socket, 505, str(e))
            return
        except RequestParseError as e:
            LOGGER.info("Error parsing request: %s", e)
            send_error(client_socket, 400, str(e))
            return

        if request is None:
            return

        LOGGER.debug("Request: %s %s %s", request.method, request.target, request.http_version)

        exchange = HttpExchange(request, rfile, wfile)
        router.dispatch(exchange)
        # Unknown paths and rejected methods leave without a status line
        exchange.close()

    except Exception:
        LOGGER.exception("Error handling connection from %s", client_address)
    finally:
        for stream in (rfile, wfile):
            try:
                stream.close()
            except OSError:
                pass
        client_socket.close()


class TaskServer:
    """
    Accepts connections on one listening socket and hands each one to a fixed-size
    worker pool; every connection carries exactly one request.
    """

    def __init__(self, config: ServerConfig, router: Optional[Router] = None) -> None:
        self.config = config
        self.router = router or build_router()
        self._server_socket: Optional[socket.socket] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._stopped = threading.Event()

    @property
    def server_address(self) -> Tuple[str, int]:
        if self._server_socket is None:
            raise RuntimeError("Server not started")
        return self._server_socket.getsockname()[:2]

    def start(self) -> None:
        """Bind and listen. OSError from socket creation propagates and aborts startup."""
        server_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            server_socket.bind((self.config.host, self.config.port))
            server_socket.listen(self.config.backlog)
            server_socket.settimeout(ACCEPT_POLL_INTERVAL)
        except OSError:
            server_socket.close()
            raise

        self._server_socket = server_socket
        self._executor = ThreadPoolExecutor(max_workers=self.config.pool_size, thread_name_prefix="task-worker")
        self._stopped.clear()

        host, port = self.server_address
        LOGGER.info("Server listening on http://%s:%d", host, port)

    def serve_forever(self) -> None:
        if self._server_socket is None or self._executor is None:
            self.start()

        try:
            while not self._stopped.is_set():
                try:
                    client_socket, client_address = self._server_socket.accept()
                except socket.timeout:
                    continue
                except OSError:
                    if self._stopped.is_set():
                        break
                    raise

                self._executor.submit(handle_connection, client_socket, client_address, self.router, self.config)
        finally:
            self._close()

    def shutdown(self) -> None:
        self._stopped.set()

    def _close(self) -> None:
        if self._server_socket is not None:
            self._server_socket.close()
            self._server_socket = None
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None


def configure_logging() -> None:
    level = os.environ.get(LOG_LEVEL_ENV, "INFO").upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s",
    )


def main(argv: Optional[List[str]] = None) -> None:
    configure_logging()
    args = sys.argv[1:] if argv is None else argv

    try:
        config = ServerConfig.from_argv(args)
    except ValueError as e:
        LOGGER.error("Invalid port argument: %s", e)
        sys.exit(2)

    lift_int_digit_limit()
    server = TaskServer(config)
    server.start()

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        LOGGER.info("Shutting down server...")
        server.shutdown()


if __name__ == "__main__":
    main()
