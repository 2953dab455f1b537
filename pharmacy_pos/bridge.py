# pharmacy_pos/bridge.py
from __future__ import annotations

import logging
from typing import Any, Mapping

from PySide6.QtCore import QObject, Signal, Slot

from .database.errors import DomainError, StorageError
from .operations import Operations

_log = logging.getLogger(__name__)


class OperationBridge(QObject):
    """
    Qt-facing front for `Operations`.

    Views call `call(name, payload)` and listen to:
      - succeeded(name, result)  result is JSON-compatible
      - failed(name, error)      error is {"code", "message", ["field"]}
    Each call is attempted once; the view decides what to tell the user.
    """

    succeeded = Signal(str, object)
    failed = Signal(str, dict)

    def __init__(self, operations: Operations, parent: QObject | None = None):
        super().__init__(parent)
        self.operations = operations

    @Slot(str, object, result=bool)
    def call(self, name: str, payload: Mapping[str, Any] | None = None) -> bool:
        """Returns True on success. Never raises for domain or storage failures."""
        try:
            result = self.operations.invoke(name, payload)
        except DomainError as e:
            self.failed.emit(name, e.to_dict())
            return False
        except Exception as e:  # unexpected bug: still report it, but keep the trace
            _log.exception("operation %s crashed", name)
            self.failed.emit(name, StorageError(f"Unexpected error: {e}").to_dict())
            return False
        self.succeeded.emit(name, result)
        return True
