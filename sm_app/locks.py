"""
Write gate around protected team surfaces.

Team tabs carry Sheets protected ranges so nobody edits them by hand. The
service account lifts those protections for the duration of a batch of
writes and puts every one of them back afterwards, including when the
batch raises. With several surfaces they are always taken in name order.
"""
from __future__ import annotations
from contextlib import contextmanager
from typing import Callable, Iterator, List, Sequence, TypeVar, Union

from loguru import logger

from .config import Settings
from .errors import BackingStoreError, NotFoundError
from .quotas import open_sheet, retry_429

T = TypeVar("T")
Surfaces = Union[str, Sequence[str]]

_READ_ONLY_FIELDS = ("protectedRangeId", "requestingUserCanEdit", "unprotectedRanges")


class SheetProtection:
    """Protected-range bookkeeping for one spreadsheet."""

    def __init__(self, ss, editors: Sequence[str] = ()):
        self.ss = ss
        self.editors = list(editors)

    def ranges(self, ws) -> List[dict]:
        return list(retry_429(self.ss.list_protected_ranges, ws.id) or [])

    def suspend(self, ws) -> List[dict]:
        current = self.ranges(ws)
        if not current:
            return []
        requests = [{"deleteProtectedRange": {"protectedRangeId": p["protectedRangeId"]}} for p in current]
        retry_429(self.ss.batch_update, {"requests": requests})
        return [{k: v for k, v in p.items() if k not in _READ_ONLY_FIELDS} for p in current]

    def restore(self, ws, saved: List[dict]) -> None:
        if not saved:
            return
        requests = [{"addProtectedRange": {"protectedRange": p}} for p in saved]
        retry_429(self.ss.batch_update, {"requests": requests})

    def protect(self, ws, description: str) -> None:
        rng = {
            "range": {"sheetId": ws.id},
            "description": description,
            "warningOnly": False,
        }
        if self.editors:
            rng["editors"] = {"users": self.editors}
        retry_429(self.ss.batch_update, {"requests": [{"addProtectedRange": {"protectedRange": rng}}]})


class ProtectionGate:
    def __init__(self, ss, settings: Settings, protection: SheetProtection = None):
        self.ss = ss
        self.enabled = settings.protect_surfaces
        self.protection = protection or SheetProtection(ss, settings.protection_editors)

    @staticmethod
    def _names(surfaces: Surfaces) -> List[str]:
        names = [surfaces] if isinstance(surfaces, str) else list(surfaces)
        return sorted(set(names))

    @contextmanager
    def exclusive_write(self, label: str, surfaces: Surfaces) -> Iterator[None]:
        names = self._names(surfaces)
        if not self.enabled:
            logger.debug("{}: protection disabled, writing {} directly", label, names)
            yield
            return

        lifted: List[tuple] = []
        try:
            for name in names:
                ws = open_sheet(self.ss, name)
                if ws is None:
                    raise NotFoundError(f"Sheet '{name}' not found.")
                saved = self.protection.suspend(ws)
                lifted.append((ws, saved))
                logger.debug("{}: lifted {} protection(s) on '{}'", label, len(saved), name)
            yield
        finally:
            failed = []
            for ws, saved in reversed(lifted):
                try:
                    self.protection.restore(ws, saved)
                except Exception as e:
                    logger.exception("{}: could not restore protection on '{}'", label, ws.title)
                    failed.append(e)
            if failed:
                raise BackingStoreError(f"{label}: protection not restored on {len(failed)} sheet(s).") from failed[0]

    def with_exclusive_write(self, operation: Callable[[], T], label: str, surfaces: Surfaces) -> T:
        with self.exclusive_write(label, surfaces):
            return operation()

    def protect_surface(self, ws, description: str = "Edit through the Schedule Manager app.") -> None:
        self.protection.protect(ws, description)
        logger.info("protected sheet '{}'", ws.title)
