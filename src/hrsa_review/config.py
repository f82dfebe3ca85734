from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

import yaml

from .retry import RetryPolicy

DEFAULT_CONFIG_PATH = Path("config") / "review.yaml"

DEFAULT_EXCLUDED_ELEMENTS = ["Element b - Update of Needs Assessment"]


@dataclass
class LlmConfig:
    endpoint: str = ""
    api_key: str = ""
    deployment: str = "gpt-4"
    api_version: str = "2024-02-15-preview"
    temperature: float = 0.1
    max_tokens: int = 16000
    chapter_temperature: float = 0.3
    chapter_max_tokens: int = 4000
    timeout_sec: float = 600.0


@dataclass
class RetryConfig:
    max_attempts: int = 3
    chapter_max_attempts: int = 4
    bulk_rate_limit_base_sec: float = 10.0
    chapter_rate_limit_base_sec: float = 30.0
    error_delay_sec: float = 5.0

    def bulk_policy(self) -> RetryPolicy:
        return RetryPolicy(self.max_attempts, self.bulk_rate_limit_base_sec, self.error_delay_sec)

    def chapter_policy(self) -> RetryPolicy:
        return RetryPolicy(self.chapter_max_attempts, self.chapter_rate_limit_base_sec, self.error_delay_sec)


@dataclass
class BatchConfig:
    delay_between_applications_sec: float = 5.0
    chapter_delay_sec: float = 25.0
    max_applications: Optional[int] = None
    ocr: bool = False
    ocr_lang: str = "eng"
    ocr_dpi: int = 200


@dataclass
class RulesConfig:
    rules_dir: Path = Path("data")
    filename: str = "compliance-rules.json"


@dataclass
class ComparisonConfig:
    element_aliases: Dict[str, str] = field(default_factory=dict)
    excluded_elements: List[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDED_ELEMENTS))
    letter_fallback: bool = True


@dataclass
class ReviewConfig:
    llm: LlmConfig = field(default_factory=LlmConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)
    rules: RulesConfig = field(default_factory=RulesConfig)
    comparison: ComparisonConfig = field(default_factory=ComparisonConfig)
    cache_dir: Path = Path("data") / "cache"


def _block(data: dict, key: str) -> dict:
    b = data.get(key) or {}
    return b if isinstance(b, dict) else {}


def _opt_int(v) -> Optional[int]:
    if v is None or v == "" or int(v) <= 0:
        return None
    return int(v)


def load_config(config_path: Optional[Union[Path, str]] = None, env: Optional[Dict[str, str]] = None) -> ReviewConfig:
    """
    Run configuration from YAML, falling back to defaults for a missing file
    or missing keys. Credentials come from the environment only.
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    data: dict = {}
    if path.exists():
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    env = os.environ if env is None else env

    d_llm = LlmConfig()
    llm = _block(data, "llm")
    llm_cfg = LlmConfig(
        endpoint=str(env.get("AZURE_OPENAI_ENDPOINT") or llm.get("endpoint") or "").rstrip("/"),
        api_key=str(env.get("AZURE_OPENAI_KEY") or ""),
        deployment=str(env.get("AZURE_OPENAI_DEPLOYMENT") or llm.get("deployment") or d_llm.deployment),
        api_version=str(llm.get("api_version", d_llm.api_version)),
        temperature=float(llm.get("temperature", d_llm.temperature)),
        max_tokens=int(llm.get("max_tokens", d_llm.max_tokens)),
        chapter_temperature=float(llm.get("chapter_temperature", d_llm.chapter_temperature)),
        chapter_max_tokens=int(llm.get("chapter_max_tokens", d_llm.chapter_max_tokens)),
        timeout_sec=float(llm.get("timeout_sec", d_llm.timeout_sec)),
    )

    d_retry = RetryConfig()
    rt = _block(data, "retry")
    retry_cfg = RetryConfig(
        max_attempts=int(rt.get("max_attempts", d_retry.max_attempts)),
        chapter_max_attempts=int(rt.get("chapter_max_attempts", d_retry.chapter_max_attempts)),
        bulk_rate_limit_base_sec=float(rt.get("bulk_rate_limit_base_sec", d_retry.bulk_rate_limit_base_sec)),
        chapter_rate_limit_base_sec=float(rt.get("chapter_rate_limit_base_sec", d_retry.chapter_rate_limit_base_sec)),
        error_delay_sec=float(rt.get("error_delay_sec", d_retry.error_delay_sec)),
    )

    d_batch = BatchConfig()
    bt = _block(data, "batch")
    batch_cfg = BatchConfig(
        delay_between_applications_sec=float(bt.get("delay_between_applications_sec", d_batch.delay_between_applications_sec)),
        chapter_delay_sec=float(bt.get("chapter_delay_sec", d_batch.chapter_delay_sec)),
        max_applications=_opt_int(bt.get("max_applications")),
        ocr=bool(bt.get("ocr", d_batch.ocr)),
        ocr_lang=str(bt.get("ocr_lang", d_batch.ocr_lang)),
        ocr_dpi=int(bt.get("ocr_dpi", d_batch.ocr_dpi)),
    )

    rl = _block(data, "rules")
    rules_cfg = RulesConfig(
        rules_dir=Path(rl.get("rules_dir") or RulesConfig.rules_dir),
        filename=str(rl.get("filename") or RulesConfig.filename),
    )

    cmp_ = _block(data, "comparison")
    aliases = cmp_.get("element_aliases") or {}
    excluded = cmp_.get("excluded_elements")
    comparison_cfg = ComparisonConfig(
        element_aliases={str(k): str(v) for k, v in aliases.items()} if isinstance(aliases, dict) else {},
        excluded_elements=[str(x) for x in excluded] if isinstance(excluded, list) else list(DEFAULT_EXCLUDED_ELEMENTS),
        letter_fallback=bool(cmp_.get("letter_fallback", True)),
    )

    return ReviewConfig(
        llm=llm_cfg,
        retry=retry_cfg,
        batch=batch_cfg,
        rules=rules_cfg,
        comparison=comparison_cfg,
        cache_dir=Path(data.get("cache_dir") or ReviewConfig.cache_dir),
    )
