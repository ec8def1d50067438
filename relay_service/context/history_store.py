"""
Request history with a byte quota.

Entries are kept most-recent first and bounded to max_items. The serialized
list must fit in max_bytes; when it does not, the oldest entries are evicted
(down to half of max_items, then down to the newest entry alone) instead of
failing the write.
"""
import datetime
import json
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from relay_service.core.interfaces import HistoryStorage
from relay_service.core.logging import logger
from relay_service.protocol.request import prompt_preview


class QuotaExceeded(Exception):
    pass


def build_history_entry(request: Dict[str, Any], response: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "id": uuid.uuid4().hex,
        "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "request": request,
        "response": response,
        "model": request.get("model"),
        "prompt": prompt_preview(request.get("messages") or []),
        "token_usage": (response or {}).get("usage") or None,
    }


class HistoryStore(HistoryStorage):
    def __init__(self, path: Optional[str] = None, max_items: int = 50, max_bytes: int = 5_000_000):
        self.path = Path(path).expanduser() if path else None
        self.max_items = max_items
        self.max_bytes = max_bytes
        self._blob: Optional[str] = None
        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)

    # --- raw storage ---

    def _read(self) -> List[Dict[str, Any]]:
        if self.path is not None:
            raw = self.path.read_text(encoding="utf-8") if self.path.is_file() else None
        else:
            raw = self._blob
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error(f"History: stored data is unreadable, starting empty: {e}")
            return []
        return data if isinstance(data, list) else []

    def _write(self, entries: List[Dict[str, Any]], force: bool = False) -> None:
        raw = json.dumps(entries, default=str)
        if not force and len(raw.encode("utf-8")) > self.max_bytes:
            raise QuotaExceeded(f"{len(raw)} bytes exceeds quota of {self.max_bytes}")
        if self.path is not None:
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp.write_text(raw, encoding="utf-8")
            tmp.replace(self.path)
        else:
            self._blob = raw

    # --- HistoryStorage ---

    async def append(self, entry: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        entries = self._read()
        entries.insert(0, entry)
        del entries[self.max_items :]

        try:
            self._write(entries)
        except QuotaExceeded as e:
            logger.warning(f"History quota exceeded ({e}); keeping the newest {self.max_items // 2} entries")
            del entries[max(1, self.max_items // 2) :]
            try:
                self._write(entries)
            except QuotaExceeded:
                logger.warning("History still over quota; keeping only the newest entry")
                self._write(entries[:1], force=True)
        return entry

    async def list(self) -> List[Dict[str, Any]]:
        return self._read()[: self.max_items]

    async def get(self, entry_id: str) -> Optional[Dict[str, Any]]:
        for item in self._read():
            if item.get("id") == entry_id:
                return item
        return None

    async def delete(self, entry_id: str) -> bool:
        entries = self._read()
        kept = [item for item in entries if item.get("id") != entry_id]
        if len(kept) == len(entries):
            return False
        self._write(kept, force=True)
        return True

    async def clear(self) -> None:
        if self.path is not None:
            self.path.unlink(missing_ok=True)
        self._blob = None

    async def export_json(self) -> str:
        return json.dumps(self._read(), indent=2, default=str)

    async def import_json(self, text: str) -> bool:
        try:
            imported = json.loads(text)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to import history: {e}")
            return False
        if not isinstance(imported, list):
            logger.error("Failed to import history: invalid history format")
            return False
        try:
            self._write(imported)
        except QuotaExceeded:
            logger.error("Imported history is too large for the history quota")
            return False
        return True
