"""
Server configuration, built once at startup and handed to the server.
"""

from dataclasses import dataclass
from typing import Final, Sequence

HOST: Final[str] = "0.0.0.0"
PORT: Final[int] = 8080         # Used when no port (or more than one argument) is given
POOL_SIZE: Final[int] = 8       # Fixed number of worker threads
BACKLOG: Final[int] = 50
MAX_HEADER_BYTES: Final[int] = 64 * 1024


@dataclass(frozen=True)
class ServerConfig:
    host: str = HOST
    port: int = PORT
    pool_size: int = POOL_SIZE
    backlog: int = BACKLOG
    max_header_bytes: int = MAX_HEADER_BYTES

    def __post_init__(self) -> None:
        if not 0 <= self.port <= 65535:
            raise ValueError(f"Port out of range: {self.port}")
        if self.pool_size < 1:
            raise ValueError(f"Pool size must be positive: {self.pool_size}")

    @classmethod
    def from_argv(cls, argv: Sequence[str]) -> "ServerConfig":
        return cls(port=parse_port(argv))


def parse_port(argv: Sequence[str]) -> int:
    """
    Port from the command-line arguments (program name excluded).

    Exactly one argument is read as the port; zero or several fall back to PORT.
    A non-integer argument raises ValueError.
    """
    if len(argv) == 1:
        return int(argv[0])
    return PORT
