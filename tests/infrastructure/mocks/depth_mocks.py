"""Depth compressor doubles with injectable failures.

``FlakyCompressorFactory`` is passed as ``compressor_factory`` to
``DepthRecorder``/``ChunkFile.open``. Feed and open calls are counted across
every compressor the factory hands out, so "fail on the 4th frame" means the
4th frame of the session regardless of chunk boundaries.
"""

from __future__ import annotations

from typing import Iterable, Optional

from rgbd_logger.modules.Depth.compressor import ChunkCompressor
from rgbd_logger.modules.Depth.errors import CompressorError, CompressorInitError


class FlakyCompressor(ChunkCompressor):
    """Real compressor whose open/feed consult the owning factory first."""

    def __init__(self, capacity: int, *, factory: "FlakyCompressorFactory") -> None:
        super().__init__(capacity)
        self._factory = factory
        self.released = False

    def open(self) -> "FlakyCompressor":
        self._factory.opens += 1
        if self._factory.opens in self._factory.fail_open_on:
            raise CompressorInitError(f"injected init failure on open {self._factory.opens}")
        return super().open()

    def feed(self, payload, length: Optional[int] = None) -> int:
        self._factory.feeds += 1
        if self._factory.feeds in self._factory.fail_on:
            raise CompressorError(f"injected failure on feed {self._factory.feeds}")
        return super().feed(payload, length)

    def finalize(self) -> int:
        if self._factory.fail_finalize:
            raise CompressorError("injected finalize failure")
        return super().finalize()

    def release(self) -> None:
        self.released = True
        super().release()


class FlakyCompressorFactory:
    """Callable ``capacity -> FlakyCompressor`` with shared failure schedule."""

    def __init__(
        self,
        fail_on: Iterable[int] = (),
        *,
        fail_open_on: Iterable[int] = (),
        fail_finalize: bool = False,
    ) -> None:
        self.fail_on = set(fail_on)
        self.fail_open_on = set(fail_open_on)
        self.fail_finalize = fail_finalize
        self.feeds = 0
        self.opens = 0
        self.instances: list[FlakyCompressor] = []

    def __call__(self, capacity: int) -> FlakyCompressor:
        compressor = FlakyCompressor(capacity, factory=self)
        self.instances.append(compressor)
        return compressor
