import asyncio
import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

CONTENT_TYPE_EXTENSIONS = {
    "application/json": ".json",
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "text/plain": ".txt",
}


def _safe_name(name: str) -> str:
    return re.sub(r'[^\w\-.]', '_', name)


class KeyValueStore:
    """Run-state records and blobs, one file per key."""

    def __init__(self, root: Union[str, Path], name: str = "default"):
        self.path = Path(root) / "key_value_stores" / _safe_name(name)
        self.path.mkdir(parents=True, exist_ok=True)

    def _file_for(self, key: str, content_type: str) -> Path:
        return self.path / f"{_safe_name(key)}{CONTENT_TYPE_EXTENSIONS.get(content_type, '.bin')}"

    async def set_value(self, key: str, value: Any, content_type: str = "application/json") -> Path:
        filepath = self._file_for(key, content_type)
        if content_type == "application/json":
            filepath.write_text(json.dumps(value, indent=2, ensure_ascii=False, default=str), encoding="utf-8")
        elif isinstance(value, (bytes, bytearray)):
            filepath.write_bytes(bytes(value))
        else:
            filepath.write_text(str(value), encoding="utf-8")
        logger.debug(f"Stored '{key}' at {filepath}")
        return filepath

    async def get_value(self, key: str, content_type: str = "application/json") -> Optional[Any]:
        filepath = self._file_for(key, content_type)
        if not filepath.is_file():
            return None
        if content_type == "application/json":
            return json.loads(filepath.read_text(encoding="utf-8"))
        if content_type.startswith("text/"):
            return filepath.read_text(encoding="utf-8")
        return filepath.read_bytes()


class Dataset:
    """Append-only JSON Lines sink. Items are written in arrival order."""

    def __init__(self, root: Union[str, Path], name: str = "default"):
        directory = Path(root) / "datasets"
        directory.mkdir(parents=True, exist_ok=True)
        self.path = directory / f"{_safe_name(name)}.jsonl"
        self._lock = asyncio.Lock()

    async def push_data(self, item: Dict[str, Any]) -> None:
        line = json.dumps(item, ensure_ascii=False, default=str)
        async with self._lock:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")

    def get_items(self) -> List[Dict[str, Any]]:
        if not self.path.is_file():
            return []
        with open(self.path, "r", encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]
