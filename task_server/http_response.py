"""
Responsibility: build status-line, headers and body bytes for a response, and
write exactly one response per exchange before closing the connection.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from http import HTTPStatus
from typing import BinaryIO, Dict, Final, Optional
import logging

from task_server.http_request import HttpRequest, read_body

LOGGER = logging.getLogger(__name__)

HTTP_VERSION: Final[str] = "HTTP/1.1"
SERVER_NAME: Final[str] = "TaskServer/1.0"


def http_date(moment: Optional[datetime] = None) -> str:
    """IMF-fixdate as used by the Date header (RFC 9110 Section 5.6.7)."""
    moment = moment or datetime.now(timezone.utc)
    return moment.strftime('%a, %d %b %Y %H:%M:%S GMT')


def reason_phrase(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return ""


@dataclass
class HttpResponse:
    status_code: int
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)

    def serialize(self) -> bytes:
        start_line = f"{HTTP_VERSION} {self.status_code} {reason_phrase(self.status_code)}"

        fields = {
            "Date": http_date(),
            "Server": SERVER_NAME,
            "Content-Length": str(len(self.body)),
            "Connection": "close",
        }
        # Handler-supplied headers can't override the framing headers
        for key, value in self.headers.items():
            if key.lower() not in ("content-length", "connection"):
                fields[key] = value

        field_lines = "".join(f"{key}: {value}\r\n" for key, value in fields.items())
        return f"{start_line}\r\n{field_lines}\r\n".encode("iso-8859-1") + self.body


class HttpExchange:
    """
    One request and the means to answer it.

    read_body() consumes the request body from the connection on first use.
    send_response() writes the single response and closes the connection;
    close() on its own ends the connection without sending a status line.
    """

    def __init__(self, request: HttpRequest, rfile: BinaryIO, wfile: BinaryIO) -> None:
        self.request = request
        self.response_headers: Dict[str, str] = {}
        self._rfile = rfile
        self._wfile = wfile
        self._body: Optional[bytes] = None
        self._responded = False
        self._closed = False

    @property
    def responded(self) -> bool:
        return self._responded

    @property
    def closed(self) -> bool:
        return self._closed

    def read_body(self) -> bytes:
        if self._body is None:
            self._body = read_body(self._rfile, self.request.headers)
        return self._body

    def send_response(self, body: bytes, status_code: int = HTTPStatus.OK) -> None:
        if self._responded:
            raise RuntimeError("Response already sent for this exchange")
        if self._closed:
            raise RuntimeError("Exchange is closed")
        self._responded = True

        response = HttpResponse(status_code=int(status_code), body=body, headers=dict(self.response_headers))
        try:
            self._wfile.write(response.serialize())
            self._wfile.flush()
        finally:
            self.close()

        LOGGER.debug("%s %s -> %d (%d bytes)", self.request.method, self.request.target, response.status_code, len(body))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._wfile.close()
