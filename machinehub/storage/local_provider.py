"""
Local filesystem cache for the machine list.
Keeps every machine snapshot as JSON under a single key so a restart can be
served without the remote store.
"""
import json
import os
import tempfile
from pathlib import Path
from typing import List, Optional

import structlog
from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from ..config import settings
from ..errors import PersistenceError
from ..schemas.machines import Machine
from .provider import MachineCache


logger = structlog.get_logger(__name__)

_machine_list = TypeAdapter(List[Machine])


class LocalCacheProvider(MachineCache):
    """JSON file cache: {"dashboard_machines": [<machine>, ...]}."""

    def __init__(self, path: Optional[str] = None, key: Optional[str] = None):
        self.path = Path(path or settings.local_cache_path)
        self.key = key or settings.local_cache_key

    def _load_document(self) -> dict:
        """Load the whole cache document, or an empty one if the file is missing."""
        if not self.path.exists():
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError("cache document is not a JSON object")
        return data

    def read(self) -> Optional[List[Machine]]:
        """Return the cached machines, or None if nothing has been cached yet."""
        try:
            document = self._load_document()
        except (OSError, ValueError) as e:
            logger.warning("local_cache_unreadable", path=str(self.path), error=str(e))
            raise PersistenceError(f"Local cache at {self.path} is unreadable") from e
        if self.key not in document:
            return None
        try:
            return _machine_list.validate_python(document[self.key])
        except PydanticValidationError as e:
            logger.warning("local_cache_invalid", path=str(self.path), error=str(e))
            raise PersistenceError(f"Local cache at {self.path} holds invalid machines") from e

    def dumps(self, machines: List[Machine]) -> list:
        return [m.model_dump(mode="json", by_alias=True) for m in machines]

    def write(self, machines: List[Machine]) -> None:
        """Write all machines atomically (temp file + rename)."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            try:
                document = self._load_document()
            except ValueError:
                # Unreadable document gets replaced by a fresh one
                document = {}
            document[self.key] = self.dumps(machines)

            fd, tmp_name = tempfile.mkstemp(prefix=".cache-", suffix=".json", dir=str(self.path.parent))
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(document, f, ensure_ascii=False)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, self.path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except (OSError, TypeError, ValueError) as e:
            logger.error("local_cache_write_failed", path=str(self.path), error=str(e))
            raise PersistenceError(f"Could not write local cache at {self.path}") from e
        logger.debug("local_cache_written", path=str(self.path), machines=len(machines))
