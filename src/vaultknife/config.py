"""Run configuration.

A configuration is a YAML mapping, read either from a plain ``.yaml`` /
``.yml`` file or from the front-matter of a Markdown note kept inside the
vault itself::

    ---
    vault_path: ~/Documents/brain
    apply_changes: false
    do_not_back_populate:
      - "Ed:"
    ignore_folders:
      - templates
    ---

Every value is validated up front; the first bad key raises
:class:`~vaultknife.errors.ConfigError` naming it.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from vaultknife.cache import CACHE_FILE, CACHE_FOLDER
from vaultknife.errors import ConfigError
from vaultknife.parser import parse_frontmatter, strip_md_suffix
from vaultknife.resolver import ExclusionRules

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_FOLDER = "vaultknife"
OBSIDIAN_FOLDER = ".obsidian"

_KNOWN_KEYS = frozenset(
    {
        "vault_path",
        "obsidian_path",
        "apply_changes",
        "do_not_back_populate",
        "ignore_rendered_text",
        "ignore_folders",
        "back_populate_file_filter",
        "back_populate_file_count",
        "output_folder",
        "workers",
        "learn_from_links",
    }
)


def default_workers() -> int:
    return min(8, os.cpu_count() or 1)


@dataclass
class Config:
    vault_path: Path
    apply_changes: bool = False
    do_not_back_populate: list[str] = field(default_factory=list)
    ignore_rendered_text: list[str] = field(default_factory=list)
    #: Absolute folders skipped by the scanner; always holds the output,
    #: cache and ``.obsidian`` folders.
    ignore_folders: list[Path] = field(default_factory=list)
    #: Note file name (``"Some Note.md"``) restricting back-population to one file.
    back_populate_file_filter: str | None = None
    back_populate_file_count: int | None = None
    output_folder: Path | None = None
    workers: int = field(default_factory=default_workers)
    learn_from_links: bool = True
    config_file: Path | None = None

    def __post_init__(self) -> None:
        if self.output_folder is None:
            self.output_folder = self.vault_path / DEFAULT_OUTPUT_FOLDER
        for folder in (self.output_folder, self.vault_path / CACHE_FOLDER, self.vault_path / OBSIDIAN_FOLDER):
            if folder not in self.ignore_folders:
                self.ignore_folders.append(folder)

    @property
    def report_folder(self) -> Path:
        return self.output_folder or self.vault_path / DEFAULT_OUTPUT_FOLDER

    @property
    def cache_path(self) -> Path:
        return self.vault_path / CACHE_FOLDER / CACHE_FILE

    def exclusion_rules(self) -> ExclusionRules:
        return ExclusionRules(self.do_not_back_populate, self.ignore_rendered_text)

    def is_ignored(self, path: Path) -> bool:
        """True when *path* lies inside one of the ignored folders."""
        return any(path == folder or folder in path.parents for folder in self.ignore_folders)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _bool(data: Mapping[str, Any], key: str, default: bool) -> bool:
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ConfigError(key, f"expected true or false, got {value!r}")
    return value


def _positive_int(data: Mapping[str, Any], key: str) -> int | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(key, f"expected an integer, got {value!r}")
    if value < 1:
        raise ConfigError(key, "must be at least 1")
    return value


def _string_list(data: Mapping[str, Any], key: str) -> list[str]:
    value = data.get(key)
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        raise ConfigError(key, f"expected a list of strings, got {type(value).__name__}")
    items: list[str] = []
    for item in value:
        if item is None or not str(item).strip():
            raise ConfigError(key, "must not contain blank entries")
        items.append(str(item))
    return items


def normalize_file_filter(value: str) -> str:
    """``"[[Note]]"``, ``"Note"`` and ``"Note.md"`` all become ``"Note.md"``."""
    value = value.strip()
    if value.startswith("[[") and value.endswith("]]"):
        value = value[2:-2].split("|", 1)[0].strip()
    return f"{strip_md_suffix(value)}.md"


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def config_from_mapping(data: Mapping[str, Any], *, config_file: Path | None = None) -> Config:
    """Validate a raw mapping and build a :class:`Config`."""
    unknown = sorted(set(data) - _KNOWN_KEYS)
    if unknown:
        logger.warning("ignoring unknown configuration keys: %s", ", ".join(unknown))

    key = "vault_path" if data.get("vault_path") is not None else "obsidian_path"
    raw_vault = data.get(key)
    if raw_vault is None or not str(raw_vault).strip():
        raise ConfigError("vault_path", "is required")
    vault_path = Path(str(raw_vault).strip()).expanduser()
    if not vault_path.is_absolute() and config_file is not None:
        vault_path = config_file.parent / vault_path
    vault_path = vault_path.resolve()
    if not vault_path.is_dir():
        raise ConfigError(key, f"vault folder does not exist: {vault_path}")

    output_folder = None
    raw_output = data.get("output_folder")
    if raw_output is not None:
        if not isinstance(raw_output, str) or not raw_output.strip():
            raise ConfigError("output_folder", "must be a non-empty folder name")
        output_folder = vault_path / raw_output.strip()

    file_filter = data.get("back_populate_file_filter")
    if file_filter is not None:
        if not isinstance(file_filter, str) or not file_filter.strip():
            raise ConfigError("back_populate_file_filter", "must be a non-empty file name")
        file_filter = normalize_file_filter(file_filter)

    ignore_folders = [vault_path / folder.strip().strip("/") for folder in _string_list(data, "ignore_folders")]

    return Config(
        vault_path=vault_path,
        apply_changes=_bool(data, "apply_changes", False),
        do_not_back_populate=_string_list(data, "do_not_back_populate"),
        ignore_rendered_text=_string_list(data, "ignore_rendered_text"),
        ignore_folders=ignore_folders,
        back_populate_file_filter=file_filter,
        back_populate_file_count=_positive_int(data, "back_populate_file_count"),
        output_folder=output_folder,
        workers=_positive_int(data, "workers") or default_workers(),
        learn_from_links=_bool(data, "learn_from_links", True),
        config_file=config_file,
    )


def load_config(path: Path) -> Config:
    """Read and validate the configuration at *path* (YAML file or Markdown note)."""
    path = path.expanduser()
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError("config", f"cannot read {path}: {exc}") from exc

    if path.suffix.lower() == ".md":
        data, _ = parse_frontmatter(text)
        if not data:
            raise ConfigError("config", f"{path} has no YAML front-matter")
    else:
        try:
            data = yaml.safe_load(text) or {}
        except yaml.YAMLError as exc:
            raise ConfigError("config", f"invalid YAML in {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError("config", f"{path} must hold a YAML mapping")
    return config_from_mapping(data, config_file=path.resolve())
