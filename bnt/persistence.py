"""JSON result store: operator → network → latest outcome, atomically replaced."""

import json
import logging
import os
import threading
from pathlib import Path

from bnt.models import TestOutcome

logger = logging.getLogger(__name__)


class ResultStoreError(Exception):
    """Raised when the result document cannot be read or written."""


class ResultStore:
    """Shared on-disk result document.

    Layout::

        {"<operator>": {"<network>": {<outcome fields>}, ...}, ...}

    Every merge reads the whole document, updates one entry, writes it to
    a temporary file and renames it over the original.  Merges are
    serialized with a lock so concurrent probes never lose an update.

    Args:
        path: Location of the result document.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def load(self) -> dict:
        """Return the current document, or ``{}`` if it doesn't exist yet.

        Raises:
            ResultStoreError: If the file is unreadable, not JSON, or not an
                object.
        """
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            raise ResultStoreError(f"Cannot read {self.path}: {exc}") from exc

        try:
            doc = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ResultStoreError(f"Malformed result file {self.path}: {exc}") from exc

        if not isinstance(doc, dict):
            raise ResultStoreError(
                f"Expected a JSON object in {self.path}, got {type(doc).__name__}"
            )
        return doc

    def merge(self, outcome: TestOutcome) -> None:
        """Store *outcome* under its operator and network.

        An existing entry for the same operator and network is overwritten.

        Raises:
            ResultStoreError: If the existing document is malformed or the
                new one cannot be written.
        """
        with self._lock:
            doc = self.load()

            operator_entry = doc.setdefault(outcome.id, {})
            if not isinstance(operator_entry, dict):
                raise ResultStoreError(
                    f"Entry for operator {outcome.id!r} in {self.path} is not an object"
                )
            operator_entry[outcome.network] = outcome.to_dict()

            self._write(doc)

        logger.debug("Stored result for %s/%s in %s", outcome.id, outcome.network, self.path)

    def _write(self, doc: dict) -> None:
        tmp_path = self.path.with_suffix(".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(doc, indent=2) + "\n", encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise ResultStoreError(f"Cannot write {self.path}: {exc}") from exc
