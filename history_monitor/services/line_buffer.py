"""Incremental line splitting for tailed byte ranges."""

import codecs


class LineBuffer:
    """Turns a stream of byte chunks into complete newline-terminated lines.

    The unterminated suffix of each chunk is carried over to the next call,
    so the lines produced are the same wherever the chunk boundaries fall.
    Decoding is incremental: a multi-byte UTF-8 character split across two
    reads is reassembled rather than replaced.

    Whitespace-only lines are dropped. The carry buffer is unbounded.
    """

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._pending = ""

    @property
    def pending(self) -> str:
        """Text received after the last newline."""
        return self._pending

    def feed(self, chunk: bytes) -> list[str]:
        """Add a chunk and return the lines it completed, in order."""
        text = self._pending + self._decoder.decode(chunk)
        *complete, self._pending = text.split("\n")
        return [line.rstrip("\r") for line in complete if line.strip()]

    def flush(self) -> list[str]:
        """Return the pending fragment as a final line and clear it."""
        text = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        return [text.rstrip("\r")] if text.strip() else []

    def reset(self) -> None:
        """Discard any carried bytes (used after truncation)."""
        self._decoder.reset()
        self._pending = ""
