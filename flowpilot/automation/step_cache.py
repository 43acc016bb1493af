"""
Step cache: remembers vision decisions that moved an unknown page forward.

Entries are keyed by the location path (no query string or fragment) and
carry success/attempt counters. An entry whose success rate drops below
50% after more than five attempts is forgotten.
"""

import json
import time
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from loguru import logger

MIN_SUCCESS_RATE = 0.5
MIN_ATTEMPTS_BEFORE_EVICTION = 5


def normalize_location(url: str) -> str:
    """Reduce a URL to its path, e.g. ``https://x.com/shop/llc/?a=1#b`` -> ``/shop/llc/``."""
    try:
        path = urlparse(url).path
    except ValueError:
        return url
    return path or "/"


class StepCache:
    """JSON-file backed store of replayable steps per location."""

    def __init__(self, path: str):
        self.path = Path(path)
        self.entries: Dict[str, Dict[str, Any]] = {}
        self._load()

    def _load(self):
        if not self.path.exists():
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if isinstance(data, dict):
                self.entries = data
                logger.debug(f"Loaded {len(self.entries)} cached steps from {self.path}")
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"⚠️ Could not read step cache {self.path}: {e}")

    def _save(self):
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(self.entries, f, indent=2)
        except OSError as e:
            logger.warning(f"⚠️ Could not write step cache {self.path}: {e}")

    def get(self, url: str) -> Optional[List[Dict[str, Any]]]:
        """Return the cached steps for a location, if any."""
        entry = self.entries.get(normalize_location(url))
        if not entry:
            return None
        return entry.get("steps") or None

    def save_success(self, url: str, steps: List[Dict[str, Any]]):
        key = normalize_location(url)
        entry = self.entries.setdefault(key, {"steps": steps, "success_count": 0, "total_attempts": 0})
        entry["steps"] = steps
        entry["success_count"] += 1
        entry["total_attempts"] += 1
        entry["last_success"] = time.time()
        self._save()
        logger.debug(f"💾 Cached steps for {key}")

    def mark_failed(self, url: str):
        """Count a failed replay and evict the entry when it is no longer reliable."""
        key = normalize_location(url)
        entry = self.entries.get(key)
        if entry is None:
            return

        entry["total_attempts"] += 1
        rate = entry["success_count"] / entry["total_attempts"]
        if rate < MIN_SUCCESS_RATE and entry["total_attempts"] > MIN_ATTEMPTS_BEFORE_EVICTION:
            del self.entries[key]
            logger.info(f"🗑️ Dropped unreliable cached steps for {key} ({rate:.0%} success)")
        self._save()

    def stats(self) -> Dict[str, Any]:
        total = sum(e["total_attempts"] for e in self.entries.values())
        successes = sum(e["success_count"] for e in self.entries.values())
        return {
            "locations": len(self.entries),
            "total_attempts": total,
            "success_rate": successes / total if total else 0.0,
        }
