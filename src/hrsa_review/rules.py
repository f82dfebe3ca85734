from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .errors import RuleSetMissing
from .models import ComplianceChapter, RuleSet

RULES_FILENAME = "compliance-rules.json"
DEFAULT_VERSION_LABEL = "default"

_YEAR_DIR_RE = re.compile(r"^\d{2}$")


@dataclass(frozen=True)
class YearRules:
    year: str
    path: Path
    rules: List[ComplianceChapter]

    @property
    def full_year(self) -> str:
        return f"20{self.year}"


def parse_rules(data: Any) -> List[ComplianceChapter]:
    """Chapters from a decoded rule file (a list, or a mapping with a `rules` list)."""
    if isinstance(data, dict):
        data = data.get("rules") or data.get("chapters") or []
    if not isinstance(data, list):
        return []
    chapters: List[ComplianceChapter] = []
    for block in data:
        if not isinstance(block, dict):
            continue
        ch = ComplianceChapter.from_dict(block)
        if not ch.section_name:
            continue
        chapters.append(ch)
    return chapters


def read_rules_file(path: Path) -> List[ComplianceChapter]:
    # JSON is a subset of YAML, so one loader covers both rule file flavours
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    return parse_rules(data)


def scan_rule_years(rules_dir: Union[Path, str], filename: str = RULES_FILENAME) -> Dict[str, YearRules]:
    """
    Year-specific rule sets found under `rules_dir/<YY>/<filename>`.
    Unreadable files are logged and skipped.
    """
    base = Path(rules_dir)
    years: Dict[str, YearRules] = {}
    if not base.exists() or not base.is_dir():
        logging.warning("Rules directory not found: %s", base)
        return years

    for entry in sorted(base.iterdir()):
        if not entry.is_dir() or not _YEAR_DIR_RE.match(entry.name):
            continue
        rules_file = entry / filename
        if not rules_file.exists():
            continue
        try:
            chapters = read_rules_file(rules_file)
        except (OSError, yaml.YAMLError) as e:
            logging.warning("Could not parse rules in %s: %s", rules_file, e)
            continue
        years[entry.name] = YearRules(year=entry.name, path=rules_file, rules=chapters)
        logging.info("Found rules for 20%s: %d chapters", entry.name, len(chapters))
    return years


def load_default_rules(rules_dir: Union[Path, str], filename: str = RULES_FILENAME) -> Optional[List[ComplianceChapter]]:
    path = Path(rules_dir) / filename
    if not path.exists():
        return None
    try:
        return read_rules_file(path)
    except (OSError, yaml.YAMLError) as e:
        logging.warning("Could not parse default rules %s: %s", path, e)
        return None


class RuleStore:
    """
    Rule sets available on disk: one default set plus optional per-year sets.

    Loaded once and then passed explicitly to each validation run.
    """

    def __init__(
        self,
        default_rules: Optional[List[ComplianceChapter]] = None,
        years: Optional[Dict[str, YearRules]] = None,
    ):
        self.default_rules = default_rules
        self.years: Dict[str, YearRules] = dict(years or {})

    @classmethod
    def from_dir(cls, rules_dir: Union[Path, str], filename: str = RULES_FILENAME) -> "RuleStore":
        years = scan_rule_years(rules_dir, filename)
        default = load_default_rules(rules_dir, filename)
        if default is None:
            logging.warning("No default %s in %s; relying on year-specific rules only", filename, rules_dir)
        else:
            logging.info("Loaded %d chapters from default rules", len(default))
        return cls(default_rules=default, years=years)

    def available_years(self) -> List[str]:
        return sorted(self.years)

    def load_rule_set(self, year_code: Optional[str] = None) -> RuleSet:
        """
        Rule set for a two-digit announcement year, labelled with the
        four-digit year; otherwise the default set labelled "default".
        """
        if year_code and year_code in self.years:
            yr = self.years[year_code]
            logging.info("Using %s rules (%d chapters) from %s", yr.full_year, len(yr.rules), yr.path)
            return RuleSet(rules=list(yr.rules), version_label=yr.full_year)

        if year_code:
            logging.warning("No rules found for year 20%s, falling back to default rules", year_code)

        if not self.default_rules:
            raise RuleSetMissing(
                f"No rules for year {year_code!r} and no default rule set available"
                if year_code
                else "No default rule set available"
            )
        return RuleSet(rules=list(self.default_rules), version_label=DEFAULT_VERSION_LABEL)


def load_rule_set(year_code: Optional[str], rules_dir: Union[Path, str]) -> RuleSet:
    return RuleStore.from_dir(rules_dir).load_rule_set(year_code)
