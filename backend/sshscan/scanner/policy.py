# sshscan/scanner/policy.py
"""
Compliance policy documents.

A policy is an ordered set of category rules plus an optional grade ranking
table. Documents are YAML (or an already-parsed mapping):

    name: modern
    references:
      - https://infosec.mozilla.org/guidelines/openssh
    categories:
      keyExchange:
        acceptable: [curve25519-sha256, diffie-hellman-group14-sha256]
        required: [curve25519-sha256]
      encryption:                       # shorthand for encryptionC2S + encryptionS2C
        acceptable: [aes256-gcm@openssh.com, chacha20-poly1305@openssh.com]
      auth:
        acceptable: [publickey]
    grading:
      - {max_failures: 0, grade: A}
      - {max_failures: 2, grade: C}

Anything structurally wrong raises PolicyError at load time, before any host
is evaluated.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple, Union

import yaml

from sshscan.scanner.base import CATEGORY_NAMES
from sshscan.scanner.errors import PolicyError
from sshscan.utils.scoring import DEFAULT_RANKING, Grade, normalize_ranking

logger = logging.getLogger(__name__)

# Every accepted spelling of a category key → canonical category name.
CATEGORY_ALIASES: Dict[str, str] = {}
for _name in CATEGORY_NAMES:
    CATEGORY_ALIASES[_name] = _name
CATEGORY_ALIASES.update({
    "key_exchange": "keyExchange",
    "kex": "keyExchange",
    "host_key": "hostKey",
    "encryption_c2s": "encryptionC2S",
    "encryption_s2c": "encryptionS2C",
    "mac_c2s": "macC2S",
    "mac_s2c": "macS2C",
    "compression_c2s": "compressionC2S",
    "compression_s2c": "compressionS2C",
    "auth_methods": "auth",
    "authMethods": "auth",
})

# Keys that stand for both directions of a category.
SHORTHANDS: Dict[str, Tuple[str, str]] = {
    "encryption": ("encryptionC2S", "encryptionS2C"),
    "mac": ("macC2S", "macS2C"),
    "macs": ("macC2S", "macS2C"),
    "compression": ("compressionC2S", "compressionS2C"),
}

TOP_LEVEL_KEYS = {"name", "description", "references", "categories", "grading"}


@dataclass(frozen=True)
class CategoryRule:
    category: str
    acceptable: FrozenSet[str]
    required: Optional[FrozenSet[str]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "acceptable": sorted(self.acceptable),
            "required": sorted(self.required) if self.required is not None else None,
        }


@dataclass
class Policy:
    name: str
    rules: List[CategoryRule]
    ranking: List[Tuple[int, Grade]] = field(default_factory=lambda: list(DEFAULT_RANKING))
    references: List[str] = field(default_factory=list)

    def rule_for(self, category: str) -> Optional[CategoryRule]:
        for rule in self.rules:
            if rule.category == category:
                return rule
        return None

    @classmethod
    def from_document(cls, doc: Any, default_name: str = "custom") -> "Policy":
        if not isinstance(doc, Mapping):
            raise PolicyError("policy document must be a mapping")

        unknown = set(doc) - TOP_LEVEL_KEYS
        if unknown:
            raise PolicyError(f"unknown policy keys: {', '.join(sorted(map(str, unknown)))}")

        categories = doc.get("categories")
        if not isinstance(categories, Mapping) or not categories:
            raise PolicyError("policy needs a non-empty 'categories' mapping")

        rules_by_category: Dict[str, CategoryRule] = {}
        for key, body in categories.items():
            for category in _expand_key(key):
                if category in rules_by_category:
                    raise PolicyError(f"category {category} is defined more than once")
                rules_by_category[category] = _parse_rule(category, body)

        # Canonical category order, independent of document order.
        rules = [rules_by_category[c] for c in CATEGORY_NAMES if c in rules_by_category]

        ranking = list(DEFAULT_RANKING)
        if doc.get("grading") is not None:
            ranking = _parse_ranking(doc["grading"])

        references = doc.get("references") or []
        if not isinstance(references, list):
            raise PolicyError("'references' must be a list")

        name = doc.get("name") or default_name
        return cls(
            name=str(name),
            rules=rules,
            ranking=ranking,
            references=[str(r) for r in references],
        )

    @classmethod
    def from_yaml(cls, text: str, default_name: str = "custom") -> "Policy":
        try:
            doc = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise PolicyError(f"policy is not valid YAML: {e}") from e
        return cls.from_document(doc, default_name=default_name)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "Policy":
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise PolicyError(f"cannot read policy file {path}: {e}") from e
        policy = cls.from_yaml(text, default_name=path.stem)
        logger.info("Loaded policy '%s' from %s (%d rules)", policy.name, path, len(policy.rules))
        return policy

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "references": list(self.references),
            "rules": [r.to_dict() for r in self.rules],
            "grading": [{"max_failures": n, "grade": g.value} for n, g in self.ranking],
        }


def load_policy(source: Union["Policy", Mapping, str, Path, None]) -> Optional[Policy]:
    """Policy object, parsed mapping, or path to a YAML file. None passes through."""
    if source is None or isinstance(source, Policy):
        return source
    if isinstance(source, Mapping):
        return Policy.from_document(source)
    return Policy.from_file(source)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _expand_key(key: Any) -> Tuple[str, ...]:
    if key in SHORTHANDS:
        return SHORTHANDS[key]
    if key in CATEGORY_ALIASES:
        return (CATEGORY_ALIASES[key],)
    raise PolicyError(f"unknown policy category {key!r}")


def _name_set(category: str, field_name: str, value: Any) -> FrozenSet[str]:
    if not isinstance(value, list) or not all(isinstance(v, str) and v for v in value):
        raise PolicyError(f"{category}.{field_name} must be a list of algorithm names")
    return frozenset(value)


def _parse_rule(category: str, body: Any) -> CategoryRule:
    if not isinstance(body, Mapping):
        raise PolicyError(f"{category} must be a mapping with an 'acceptable' list")
    unknown = set(body) - {"acceptable", "required"}
    if unknown:
        raise PolicyError(f"{category}: unknown keys {', '.join(sorted(map(str, unknown)))}")
    if "acceptable" not in body:
        raise PolicyError(f"{category} is missing 'acceptable'")

    acceptable = _name_set(category, "acceptable", body["acceptable"])
    required = None
    if body.get("required") is not None:
        required = _name_set(category, "required", body["required"])
        outside = required - acceptable
        if outside:
            raise PolicyError(
                f"{category}: required algorithms not in acceptable: {', '.join(sorted(outside))}"
            )
    return CategoryRule(category=category, acceptable=acceptable, required=required)


def _parse_ranking(value: Any) -> List[Tuple[int, Grade]]:
    if not isinstance(value, list):
        raise PolicyError("'grading' must be a list of {max_failures, grade} entries")
    entries = []
    for entry in value:
        if not isinstance(entry, Mapping) or set(entry) != {"max_failures", "grade"}:
            raise PolicyError(f"bad grading entry {entry!r}")
        max_failures = entry["max_failures"]
        if not isinstance(max_failures, int) or isinstance(max_failures, bool):
            raise PolicyError(f"max_failures must be an integer in {entry!r}")
        try:
            grade = Grade(str(entry["grade"]).upper())
        except ValueError as e:
            raise PolicyError(f"unknown grade {entry['grade']!r}") from e
        entries.append((max_failures, grade))
    try:
        return normalize_ranking(entries)
    except ValueError as e:
        raise PolicyError(f"invalid grading table: {e}") from e
