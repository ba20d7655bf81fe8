"""OSC 7 working-directory detection

Shells report their cwd inline in their output:

    ESC ] 7 ; file://host/path BEL
    ESC ] 7 ; file://host/path ESC \\

PTY output arrives in arbitrary chunks, so a sequence may be split at any
byte. ``Osc7Scanner`` carries the unfinished tail of a chunk over to the
next one. Work per chunk is linear in its length and the carried tail is
bounded by ``OSC7_MAX_PENDING_BYTES``.
"""

from urllib.parse import unquote

from ..config import METRICS_ENABLED, OSC7_MAX_PENDING_BYTES
from ..telemetry import get_logger, metrics

logger = get_logger(__name__)

OSC7_PREFIX = b"\x1b]7;"
_BEL = b"\x07"
_ESC = b"\x1b"
_ST_FINAL = b"\\"


def parse_osc7_uri(payload: str) -> str | None:
    """Extract the path from an OSC 7 payload.

    Accepts ``file://host/path``, ``file:///path`` or a bare path and
    percent-decodes it.

    Returns:
        The decoded path, or None when there is none
    """
    payload = payload.strip()
    if not payload:
        return None

    if payload.startswith("file://"):
        rest = payload[len("file://"):]
        slash = rest.find("/")
        if slash == -1:
            return None
        path = rest[slash:]
    else:
        path = payload

    path = unquote(path)
    return path or None


class Osc7Scanner:
    """Incremental OSC 7 matcher over a byte stream"""

    def __init__(self, max_pending: int = OSC7_MAX_PENDING_BYTES):
        self._max_pending = max_pending
        self._pending = b""

    @property
    def pending(self) -> bytes:
        """Bytes held back from the previous chunk"""
        return self._pending

    def reset(self) -> None:
        self._pending = b""

    def feed(self, chunk: bytes) -> list[str]:
        """Scan one output chunk.

        Returns:
            Paths of every complete OSC 7 sequence, in stream order
        """
        if not chunk:
            return []

        data = self._pending + chunk
        self._pending = b""
        paths: list[str] = []
        pos = 0

        while True:
            start = data.find(OSC7_PREFIX, pos)
            if start == -1:
                self._pending = self._partial_prefix(data, pos)
                break

            payload_start = start + len(OSC7_PREFIX)
            end, term_len = self._find_terminator(data, payload_start)

            if end == -1:
                # unterminated, wait for more output
                if len(data) - start > self._max_pending:
                    logger.debug(f"[OSC7] Dropped unterminated sequence ({len(data) - start} bytes)")
                    if METRICS_ENABLED:
                        metrics.inc("osc7.overflow")
                else:
                    self._pending = data[start:]
                break

            if term_len == 0:
                # another escape sequence began: this one was abandoned
                pos = end
                continue

            path = parse_osc7_uri(data[payload_start:end].decode("utf-8", errors="replace"))
            if path:
                paths.append(path)
            pos = end + term_len

        return paths

    def _find_terminator(self, data: bytes, start: int) -> tuple[int, int]:
        """Locate the end of an OSC payload.

        Returns:
            (index, terminator length); length 0 means the sequence was cut
            short by an unrelated ESC; index -1 means more data is needed
        """
        bel = data.find(_BEL, start)
        esc = data.find(_ESC, start)

        if esc != -1 and (bel == -1 or esc < bel):
            if esc + 1 >= len(data):
                return -1, 0
            if data[esc + 1:esc + 2] == _ST_FINAL:
                return esc, 2
            return esc, 0

        if bel != -1:
            return bel, 1
        return -1, 0

    @staticmethod
    def _partial_prefix(data: bytes, pos: int) -> bytes:
        """Tail of ``data`` that could be the start of an OSC 7 prefix"""
        for length in range(len(OSC7_PREFIX) - 1, 0, -1):
            if len(data) - pos >= length and data.endswith(OSC7_PREFIX[:length]):
                return data[-length:]
        return b""
