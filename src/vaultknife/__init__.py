"""vaultknife: wikilink back-population and image cleanup for Obsidian vaults."""

from vaultknife.applier import RejectedOverlap, RejectedSpan, apply, apply_to_text
from vaultknife.cache import FingerprintCache
from vaultknife.config import Config, load_config
from vaultknife.images import ImageClassifier, ImageState, find_image_references
from vaultknife.matcher import Matcher, PatternAutomaton, find_occurrences
from vaultknife.matches import MatchKind, ReplaceableMatch
from vaultknife.note import Note
from vaultknife.parser import parse_note, parse_wikilinks
from vaultknife.report import ReportWriter, RunReport
from vaultknife.repository import VaultRun
from vaultknife.resolver import ExclusionRules, resolve
from vaultknife.scan import scan_vault
from vaultknife.targets import TargetIndex, build_index

__all__ = [
    "Note",
    "parse_note",
    "parse_wikilinks",
    "TargetIndex",
    "build_index",
    "PatternAutomaton",
    "Matcher",
    "find_occurrences",
    "ExclusionRules",
    "resolve",
    "MatchKind",
    "ReplaceableMatch",
    "apply",
    "apply_to_text",
    "RejectedOverlap",
    "RejectedSpan",
    "FingerprintCache",
    "ImageClassifier",
    "ImageState",
    "find_image_references",
    "Config",
    "load_config",
    "scan_vault",
    "VaultRun",
    "RunReport",
    "ReportWriter",
]
