"""
inferkit :: Token Streamer

Forwards decoded text to a sink while watching for stop sequences that
may span several fragments.

The last L-1 characters (L = longest stop sequence) are held back,
since they could be the start of a stop sequence. On a match only the
text before it is forwarded and the streamer stops for good.

INL - 2025
"""

from typing import Callable, Iterable, List, Optional


class TokenStreamer:
    """
    Stop-sequence aware text streamer.

    Usage:
        streamer = TokenStreamer(["</s>"], sink=print)
        for fragment in fragments:
            streamer.accept(fragment)
            if streamer.is_stopped:
                break
        streamer.flush()
    """

    def __init__(
        self,
        stop_sequences: Iterable[str] = (),
        sink: Optional[Callable[[str], None]] = None,
    ):
        self.stop_sequences: List[str] = []
        for stop in stop_sequences:
            if not stop:
                raise ValueError("Stop sequences must be non-empty strings")
            if stop not in self.stop_sequences:
                self.stop_sequences.append(stop)
        self.sink = sink
        longest = max((len(s) for s in self.stop_sequences), default=0)
        self.hold_back = max(longest - 1, 0)

        self._buffer = ""
        self._emitted: List[str] = []
        self._stopped = False

    @property
    def is_stopped(self) -> bool:
        return self._stopped

    @property
    def text(self) -> str:
        """Everything forwarded to the sink so far."""
        return "".join(self._emitted)

    def accept(self, fragment: str):
        if self._stopped or not fragment:
            return
        self._buffer += fragment

        match = self._find_stop()
        if match >= 0:
            self._emit(self._buffer[:match])
            self._buffer = ""
            self._stopped = True
            return

        safe = len(self._buffer) - self.hold_back
        if safe > 0:
            self._emit(self._buffer[:safe])
            self._buffer = self._buffer[safe:]

    def flush(self):
        """Forward whatever is held back. No-op once stopped."""
        if self._stopped or not self._buffer:
            return
        self._emit(self._buffer)
        self._buffer = ""

    def _find_stop(self) -> int:
        """Earliest stop-sequence position in the buffer, or -1."""
        best = -1
        for stop in self.stop_sequences:
            idx = self._buffer.find(stop)
            if idx >= 0 and (best < 0 or idx < best):
                best = idx
        return best

    def _emit(self, text: str):
        if not text:
            return
        self._emitted.append(text)
        if self.sink is not None:
            self.sink(text)
