# photoarchiver/services/progress.py
# Progress sinks for the archive and retrieval pipelines.
# Values passed to bytes_progress/item_progress are running totals, not deltas.

from __future__ import annotations

from typing import Optional, Protocol

from tqdm import tqdm


class ProgressIndicator(Protocol):
    def initialize(self, total_bytes: int, total_items: int) -> None: ...

    def bytes_progress(self, done: int) -> None: ...

    def item_progress(self, done: int) -> None: ...

    def finished(self) -> None: ...

    def error(self) -> None: ...

    def indeterminate(self) -> None: ...


class NullProgressIndicator:
    def initialize(self, total_bytes: int, total_items: int) -> None:
        pass

    def bytes_progress(self, done: int) -> None:
        pass

    def item_progress(self, done: int) -> None:
        pass

    def finished(self) -> None:
        pass

    def error(self) -> None:
        pass

    def indeterminate(self) -> None:
        pass


class TransferProgressShim:
    """
    Adapts the store's per-chunk byte callback to the running byte total:
    reports bytes already finished in earlier files plus bytes sent for this one.
    """

    def __init__(self, indicator: ProgressIndicator, base: int, limit: Optional[int] = None) -> None:
        self.indicator = indicator
        self.base = base
        self.limit = limit
        self.sent = 0

    def __call__(self, nbytes: int) -> None:
        self.sent += nbytes
        sent = self.sent if self.limit is None else min(self.sent, self.limit)
        self.indicator.bytes_progress(self.base + sent)


class TqdmProgressIndicator:
    """Byte-level tqdm bar; the item counter is shown in the postfix."""

    def __init__(self, desc: str = "Uploading", disable: bool = False) -> None:
        self.desc = desc
        self.disable = disable
        self._bar: Optional[tqdm] = None
        self._total_items = 0

    def initialize(self, total_bytes: int, total_items: int) -> None:
        self.close()
        self._total_items = total_items
        self._bar = tqdm(
            total=total_bytes,
            unit="B",
            unit_scale=True,
            unit_divisor=1024,
            desc=self.desc,
            leave=True,
            disable=self.disable,
        )
        self._bar.set_postfix_str(f"0/{total_items} files")

    def bytes_progress(self, done: int) -> None:
        if self._bar is None:
            return
        self._bar.n = min(done, self._bar.total or done)
        self._bar.refresh()

    def item_progress(self, done: int) -> None:
        if self._bar is not None:
            self._bar.set_postfix_str(f"{done}/{self._total_items} files")

    def indeterminate(self) -> None:
        # total=None makes tqdm fall back to a plain counter
        if self._bar is not None:
            self._bar.total = None
            self._bar.refresh()

    def error(self) -> None:
        if self._bar is not None:
            self._bar.colour = "red"
            self._bar.refresh()

    def finished(self) -> None:
        self.close()

    def close(self) -> None:
        if self._bar is not None:
            self._bar.close()
            self._bar = None
