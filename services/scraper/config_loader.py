# services/scraper/config_loader.py
"""
Loads the extraction catalogue from ``configs/targets.yaml`` and validates
it with Pydantic models.  The file maps each scrape kind to the page it
lives on and an ordered list of extraction strategies, so selectors can be
swapped without touching code when the target site's markup changes.

Public API:
* ``get_target(kind)`` – returns a validated ``TargetConfig`` or raises
  ``TargetNotFoundError``.
* ``list_available_targets()`` – the kinds present in the file.
"""

from pathlib import Path
from typing import Annotated, Dict, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, Field

from core.config import get_settings
from models.scrape import ScrapeKind


# ----------------------------------------------------------------------
# Strategy schemas – discriminated on ``type``
# ----------------------------------------------------------------------
class SelectorStrategyConfig(BaseModel):
    """Wait for a CSS selector and read the element's text."""
    type: Literal["selector"]
    name: Optional[str] = None
    css: str


class TextStrategyConfig(BaseModel):
    """Find an element of ``tag`` whose text contains ``contains``."""
    type: Literal["text"]
    name: Optional[str] = None
    tag: str = "span"
    contains: str


class SourceStrategyConfig(BaseModel):
    """Regex over the rendered page's visible text."""
    type: Literal["source"]
    name: Optional[str] = None
    pattern: str


StrategyConfig = Annotated[
    Union[SelectorStrategyConfig, TextStrategyConfig, SourceStrategyConfig],
    Field(discriminator="type"),
]


class TargetConfig(BaseModel):
    """Where a kind's value lives and how to dig it out."""
    path: str
    normalize: Literal["digits", "passthrough"] = "passthrough"
    race: bool = True
    strategies: List[StrategyConfig] = Field(min_length=1)

    def url_for(self, base_url: str, subject_id: str) -> str:
        return base_url.rstrip("/") + self.path.format(subject_id=subject_id)


class AllTargets(BaseModel):
    """Top‑level container – maps scrape kind → its config."""
    targets: Dict[ScrapeKind, TargetConfig]


# ----------------------------------------------------------------------
# Loading & caching
# ----------------------------------------------------------------------
_cached_all: Dict[Path, AllTargets] = {}


def _load_yaml(path: Path) -> dict:
    """Read the YAML file and return the inner ``targets`` mapping."""
    with path.open("r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}
        return raw.get("targets", raw)


def load_targets(path: Optional[Path] = None) -> AllTargets:
    """
    Parse and validate the catalogue, caching it per path.  Any schema
    problem raises ``pydantic.ValidationError`` naming the offending field.
    """
    path = Path(path or get_settings().TARGETS_PATH)
    if path not in _cached_all:
        _cached_all[path] = AllTargets(targets=_load_yaml(path))
    return _cached_all[path]


class TargetNotFoundError(KeyError):
    """Raised when a scrape kind has no entry in the catalogue."""

    def __init__(self, kind: str):
        super().__init__(f"No extraction target configured for '{kind}'.")
        self.kind = kind


def get_target(kind: ScrapeKind, path: Optional[Path] = None) -> TargetConfig:
    all_cfg = load_targets(path)
    try:
        return all_cfg.targets[ScrapeKind(kind)]
    except (KeyError, ValueError) as exc:
        raise TargetNotFoundError(str(kind)) from exc


def list_available_targets(path: Optional[Path] = None) -> List[ScrapeKind]:
    return list(load_targets(path).targets.keys())
