"""Rollback ledger for one install or uninstall run.

Usage::

    with InstallTransaction(plugin_id) as txn:
        ...perform an action, then record it...
        txn.record_copy(path)
        txn.commit()

Leaving the block without :meth:`InstallTransaction.commit`, including by an
exception, undoes every recorded action in reverse order.
"""

from __future__ import annotations

import enum
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple, Union

from hostext.plugin_system.modules import Module, ModuleContext
from hostext.utils.fileops import schedule_delete_on_exit


class TransactionState(str, enum.Enum):
    OPEN = "open"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class ActionType(str, enum.Enum):
    COPY = "copy"
    RENAME = "rename"
    ENABLE = "enable"
    DISABLE = "disable"


@dataclass(frozen=True)
class LedgerEntry:
    """One performed action.

    Attributes:
        action: What was done
        path: File copied in, or original location of a renamed file
        target: Where a renamed file now lives
        module: Module enabled or disabled
        context: Context the module action ran in
        moves: ``(resource, saved)`` renames a disable performed, when known
    """

    action: ActionType
    path: Optional[Path] = None
    target: Optional[Path] = None
    module: Optional[Module] = None
    context: Optional[ModuleContext] = None
    moves: Optional[Tuple[Tuple[Path, Path], ...]] = None


class TransactionError(RuntimeError):
    """Raised when a closed transaction is used."""


class InstallTransaction:
    """Ordered ledger of reversible filesystem and module actions."""

    def __init__(self, plugin_id: Optional[str] = None, logger: Optional[logging.Logger] = None) -> None:
        self.plugin_id = plugin_id
        self._logger = logger or logging.getLogger("install_transaction")
        self._ledger: List[LedgerEntry] = []
        self._state = TransactionState.OPEN

    @property
    def state(self) -> TransactionState:
        return self._state

    @property
    def ledger(self) -> List[LedgerEntry]:
        return list(self._ledger)

    @property
    def copied_files(self) -> List[Path]:
        return [e.path for e in self._ledger if e.action == ActionType.COPY]

    @property
    def renamed_away(self) -> List[Tuple[Path, Path]]:
        return [(e.path, e.target) for e in self._ledger if e.action == ActionType.RENAME]

    @property
    def modules_enabled(self) -> List[str]:
        return [e.module.id for e in self._ledger if e.action == ActionType.ENABLE]

    @property
    def modules_disabled(self) -> List[str]:
        return [e.module.id for e in self._ledger if e.action == ActionType.DISABLE]

    def _record(self, entry: LedgerEntry) -> None:
        if self._state != TransactionState.OPEN:
            raise TransactionError(f"Transaction for {self.plugin_id} is {self._state.value}")
        self._ledger.append(entry)

    def record_copy(self, path: Union[str, Path]) -> None:
        self._record(LedgerEntry(ActionType.COPY, path=Path(path)))

    def record_copies(self, paths: List[Path]) -> None:
        for path in paths:
            self.record_copy(path)

    def record_rename(self, original: Union[str, Path], moved_to: Union[str, Path]) -> None:
        self._record(LedgerEntry(ActionType.RENAME, path=Path(original), target=Path(moved_to)))

    def record_enable(self, module: Module, context: ModuleContext) -> None:
        self._record(LedgerEntry(ActionType.ENABLE, module=module, context=context))

    def record_disable(
            self,
            module: Module,
            context: ModuleContext,
            moves: Optional[List[Tuple[Path, Path]]] = None
    ) -> None:
        """Record a disabled module.

        With ``moves`` the undo puts each saved resource back over its
        destination; without it the module is enabled again.
        """
        self._record(LedgerEntry(
            ActionType.DISABLE,
            module=module,
            context=context,
            moves=tuple(moves) if moves is not None else None,
        ))

    def commit(self) -> None:
        """Keep every action; the ledger is discarded."""
        if self._state != TransactionState.OPEN:
            raise TransactionError(f"Transaction for {self.plugin_id} is {self._state.value}")
        self._ledger.clear()
        self._state = TransactionState.COMMITTED
        self._logger.debug(f"Committed transaction for {self.plugin_id}", extra={"plugin_id": self.plugin_id})

    def rollback(self) -> None:
        """Undo every recorded action, newest first.

        Failures are logged and the remaining undo steps still run. Calling
        this on a closed transaction does nothing.
        """
        if self._state != TransactionState.OPEN:
            return

        if self._ledger:
            self._logger.info(
                f"Rolling back {len(self._ledger)} action(s) for {self.plugin_id}",
                extra={"plugin_id": self.plugin_id},
            )
        for entry in reversed(self._ledger):
            try:
                self._undo(entry)
            except Exception as e:
                self._logger.error(
                    f"Rollback of {entry.action.value} failed for {self.plugin_id}: {e}",
                    extra={"plugin_id": self.plugin_id},
                )
        self._ledger.clear()
        self._state = TransactionState.ROLLED_BACK

    def _undo(self, entry: LedgerEntry) -> None:
        if entry.action == ActionType.COPY:
            try:
                if entry.path.exists():
                    entry.path.unlink()
            except OSError as e:
                self._logger.warning(
                    f"Could not delete {entry.path}, deferring: {e}",
                    extra={"plugin_id": self.plugin_id, "path": str(entry.path)},
                )
                schedule_delete_on_exit(entry.path)
        elif entry.action == ActionType.RENAME:
            entry.path.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(entry.target), str(entry.path))
        elif entry.action == ActionType.ENABLE:
            entry.module.disable(entry.context, True)
        elif entry.action == ActionType.DISABLE:
            if entry.moves is None:
                entry.module.enable(entry.context)
                return
            for destination, saved in reversed(entry.moves):
                os.replace(saved, destination)

    def __enter__(self) -> InstallTransaction:
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> bool:
        if self._state == TransactionState.OPEN:
            self.rollback()
        return False
