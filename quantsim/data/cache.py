"""
JSON bar cache shared by all sources.

Entries are ``{<validity fields>, "bars": [...]}`` files written atomically.
Any read problem (missing file, truncated JSON, wrong shape) is a miss.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import orjson

from quantsim.core.models import Bar
from quantsim.data.utils import sanitize_bars

logger = logging.getLogger(__name__)


class BarCache:
    def __init__(self, cache_dir: Path):
        self.cache_dir = Path(cache_dir)

    def path_for(self, key: str) -> Path:
        return self.cache_dir / f"{key}.json"

    def read(self, key: str) -> Optional[Tuple[Dict[str, Any], List[Bar]]]:
        """Return (payload, sanitized bars) or None on any failure."""
        path = self.path_for(key)
        try:
            payload = orjson.loads(path.read_bytes())
        except FileNotFoundError:
            return None
        except (OSError, orjson.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable cache entry {path}: {e}")
            return None

        if not isinstance(payload, dict) or not isinstance(payload.get("bars"), list):
            logger.warning(f"Ignoring malformed cache entry {path}")
            return None

        return payload, sanitize_bars(payload["bars"])

    def write(self, key: str, bars: Sequence[Bar], **meta: Any) -> None:
        """
        Persist bars with validity metadata. Write failures are logged, not
        raised: the caller already holds the bars it needs.
        """
        path = self.path_for(key)
        payload = dict(meta)
        payload["bars"] = [bar.model_dump() for bar in bars]
        tmp = None
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.cache_dir, suffix=".tmp")
            with os.fdopen(fd, "wb") as fh:
                fh.write(orjson.dumps(payload))
            os.replace(tmp, path)
        except OSError as e:
            logger.warning(f"Failed to write cache entry {path}: {e}")
            if tmp is not None and os.path.exists(tmp):
                os.unlink(tmp)
