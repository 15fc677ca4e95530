"""
Responsibility: read the request line and headers from a connection and build an
HttpRequest with fields: method, target, path, http_version, headers. The body
stays on the stream until a handler reads it with read_body().

Error cases: malformed framing -> RequestParseError (answered with 400),
unsupported major version -> UnsupportedVersionError (answered with 505).
"""

from dataclasses import dataclass, field
from typing import BinaryIO, Dict, Final, Iterator, List, Optional, Tuple
import re

from task_server.config import MAX_HEADER_BYTES

MAX_LINE_BYTES: Final[int] = 8192
SUPPORTED_VERSIONS: Final[Tuple[str, ...]] = ("HTTP/1.0", "HTTP/1.1")

TOKEN_PATTERN: re.Pattern = re.compile(r"^[!#$%&'*+\-.\^_`|~0-9A-Za-z]+$")
VERSION_PATTERN: re.Pattern = re.compile(r"^HTTP/(\d)\.(\d)$")
DIGITS_PATTERN: re.Pattern = re.compile(r"^[0-9]+$")
HEX_PATTERN: re.Pattern = re.compile(r"^[0-9A-Fa-f]+$")


class RequestParseError(ValueError):
    pass


class UnsupportedVersionError(RequestParseError):
    pass


class HttpHeaders:
    """
    Header fields keyed case-insensitively, each name holding one or more values
    in the order they were received.
    """

    def __init__(self, fields: Optional[List[Tuple[str, str]]] = None) -> None:
        self._values: Dict[str, List[str]] = {}
        self._names: Dict[str, str] = {}
        for name, value in fields or []:
            self.add(name, value)

    def add(self, name: str, value: str) -> None:
        key = name.lower()
        self._names.setdefault(key, name)
        self._values.setdefault(key, []).append(value)

    def get_all(self, name: str) -> List[str]:
        return list(self._values.get(name.lower(), []))

    def get_first(self, name: str) -> Optional[str]:
        values = self._values.get(name.lower())
        if not values:
            return None
        return values[0]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._names.values())

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"HttpHeaders({[(self._names[k], v) for k, vs in self._values.items() for v in vs]!r})"


@dataclass(frozen=True)
class HttpRequest:
    method: str
    target: str
    http_version: str
    headers: HttpHeaders = field(default_factory=HttpHeaders)

    @property
    def path(self) -> str:
        # Query string doesn't take part in routing
        return self.target.split("?", maxsplit=1)[0]


def _read_line(rfile: BinaryIO) -> bytes:
    line = rfile.readline(MAX_LINE_BYTES + 1)
    if len(line) > MAX_LINE_BYTES:
        raise RequestParseError("Line too long")
    return line


def _strip_eol(line: bytes) -> str:
    # A bare LF is accepted as a line terminator, per RFC 9112 Section 2.2
    return line.rstrip(b"\r\n").decode("iso-8859-1")


def parse_request_line(line: str) -> Tuple[str, str, str]:
    parts = line.split(" ")
    if len(parts) != 3:
        raise RequestParseError("Malformed request-line")

    method, target, version = parts

    if method == "" or TOKEN_PATTERN.match(method) is None:
        raise RequestParseError("Invalid request-line method")

    if target == "":
        raise RequestParseError("Empty request-target")

    match = VERSION_PATTERN.match(version)
    if match is None:
        raise RequestParseError("Invalid HTTP version")
    if version not in SUPPORTED_VERSIONS:
        if match.group(1) == "1":
            # Unknown HTTP/1.x minor versions are served as HTTP/1.1
            version = "HTTP/1.1"
        else:
            raise UnsupportedVersionError("Unsupported HTTP version")

    return method, target, version


def parse_headers(rfile: BinaryIO, max_header_bytes: int = MAX_HEADER_BYTES) -> HttpHeaders:
    headers = HttpHeaders()
    total = 0

    while True:
        line = _read_line(rfile)
        total += len(line)
        if total > max_header_bytes:
            raise RequestParseError("Header section too large")
        if not line:
            raise RequestParseError("Connection closed inside header section")

        field_line = _strip_eol(line)
        if field_line == "":
            return headers

        if ":" not in field_line:
            raise RequestParseError("Malformed header field-line")

        name, value = field_line.split(":", maxsplit=1)
        if TOKEN_PATTERN.match(name) is None:
            raise RequestParseError(f"Invalid header field-name: {name!r}")

        headers.add(name, value.strip(" \t"))


def _read_exact(rfile: BinaryIO, size: int) -> bytes:
    data = rfile.read(size)
    if len(data) != size:
        raise RequestParseError(f"Body truncated: expected {size} bytes, got {len(data)}")
    return data


def _read_chunked(rfile: BinaryIO) -> bytes:
    chunks = []
    while True:
        size_line = _strip_eol(_read_line(rfile))
        # Chunk extensions are ignored
        size_text = size_line.split(";", maxsplit=1)[0].strip()
        if HEX_PATTERN.match(size_text) is None:
            raise RequestParseError(f"Invalid chunk size: {size_text!r}")
        size = int(size_text, 16)

        if size == 0:
            # Skip trailer fields up to the terminating empty line
            while _strip_eol(_read_line(rfile)) != "":
                pass
            return b"".join(chunks)

        chunks.append(_read_exact(rfile, size))
        if _strip_eol(_read_line(rfile)) != "":
            raise RequestParseError("Missing CRLF after chunk data")


def body_length(headers: HttpHeaders) -> Optional[int]:
    """
    Validate the framing headers. Returns the Content-Length, 0 when the request
    has no body, or None for a chunked body.
    """
    transfer_encoding = headers.get_first("Transfer-Encoding")
    if transfer_encoding is not None:
        if transfer_encoding.strip().lower() != "chunked":
            raise RequestParseError(f"Unsupported Transfer-Encoding: {transfer_encoding}")
        return None

    lengths = set(value.strip() for value in headers.get_all("Content-Length"))
    if not lengths:
        return 0
    if len(lengths) > 1:
        raise RequestParseError("Conflicting Content-Length values")

    length_text = lengths.pop()
    if DIGITS_PATTERN.match(length_text) is None:
        raise RequestParseError(f"Invalid Content-Length: {length_text!r}")

    return int(length_text)


def read_body(rfile: BinaryIO, headers: HttpHeaders) -> bytes:
    length = body_length(headers)
    if length is None:
        return _read_chunked(rfile)
    return _read_exact(rfile, length)


def parse_request(rfile: BinaryIO, max_header_bytes: int = MAX_HEADER_BYTES) -> Optional[HttpRequest]:
    """
    Read the request-line and header section of one request from a binary stream.

    The body is left on the stream for the handler to consume. Framing headers
    are validated here so a bad Content-Length is rejected before dispatch.
    Returns None when the peer closes the connection before sending anything.
    """
    line = _read_line(rfile)
    # Leading empty lines before the request-line are ignored (RFC 9112 Section 2.2)
    while line in (b"\r\n", b"\n"):
        line = _read_line(rfile)
    if not line:
        return None

    method, target, version = parse_request_line(_strip_eol(line))
    headers = parse_headers(rfile, max_header_bytes)
    body_length(headers)

    return HttpRequest(
        method=method,
        target=target,
        http_version=version,
        headers=headers
    )
