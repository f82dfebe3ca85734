from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, Optional

from .models import ApplicationResult
from .util import read_json, write_json

_SAFE_RE = re.compile(r"[^A-Za-z0-9._-]+")


class ResultCache:
    """
    Verdict sets already computed for an application, one file per
    (content fingerprint, rule-set version): <fingerprint>_<version>.json.
    A cache miss is None; there is no locking across processes.
    """

    def __init__(self, cache_dir: Path):
        self.cache_dir = Path(cache_dir)

    def path_for(self, fingerprint: str, version: str) -> Path:
        return self.cache_dir / f"{fingerprint}_{_SAFE_RE.sub('-', version)}.json"

    def get(self, fingerprint: str, version: str) -> Optional[Dict[str, Any]]:
        p = self.path_for(fingerprint, version)
        if not p.exists():
            logging.info("Cache miss: %s (%s)", fingerprint[:8], version)
            return None
        try:
            data = read_json(p)
        except (OSError, json.JSONDecodeError) as e:
            logging.warning("Ignoring unreadable cache entry %s: %s", p.name, e)
            return None
        if not isinstance(data, dict) or not isinstance(data.get("results"), dict):
            logging.warning("Ignoring cache entry without results: %s", p.name)
            return None
        failed = [name for name, v in data["results"].items() if isinstance(v, dict) and v.get("error")]
        if failed:
            logging.info("Ignoring cache entry %s with failed sections: %s", p.name, ", ".join(failed))
            return None
        logging.info("Cache hit: %s (%s)", fingerprint[:8], version)
        return data

    def put(self, fingerprint: str, version: str, result: ApplicationResult) -> Path:
        payload = {
            "fileHash": fingerprint,
            "manualVersion": version,
            "timestamp": ApplicationResult.now_iso(),
            "applicationName": result.filename,
            "applicationNumber": result.application_number,
            "results": result.validation.results_dict(),
        }
        p = write_json(self.path_for(fingerprint, version), payload)
        logging.info("Saved to cache: %s", p.name)
        return p
