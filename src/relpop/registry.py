from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError

from relpop.models import AccessDecision, CollectionConfig, Identity
from relpop_common.errors import UnknownCollection

log = logging.getLogger(__name__)

RuleResult = Union[bool, Dict[str, Any], AccessDecision]
AccessRule = Callable[[Optional[Identity], str], RuleResult]


def _public(identity: Optional[Identity], collection: str) -> RuleResult:
    return True


def _authenticated(identity: Optional[Identity], collection: str) -> RuleResult:
    return identity is not None


def _admin(identity: Optional[Identity], collection: str) -> RuleResult:
    return identity is not None and "admin" in identity.roles


def _deny(identity: Optional[Identity], collection: str) -> RuleResult:
    return False


BUILTIN_RULES: Dict[str, AccessRule] = {
    "public": _public,
    "authenticated": _authenticated,
    "admin": _admin,
    "deny": _deny,
}


class CollectionRegistry:
    """
    Collection configuration provider: id type, declared fields and access rules per slug.

    Configs usually come from config/collections.json::

        {"collections": [{"slug": "posts", "id_type": "text", "fields": [...],
                          "access": {"read": "authenticated"}}]}

    Access rules referenced by name resolve against the built-ins plus
    anything added with register_rule().
    """

    def __init__(self, configs: Iterable[CollectionConfig] = (), *, rules: Optional[Dict[str, AccessRule]] = None) -> None:
        self._configs: Dict[str, CollectionConfig] = {}
        self._rules: Dict[str, AccessRule] = dict(BUILTIN_RULES)
        self._rules.update(rules or {})
        self._path: Optional[Path] = None
        self._sig: Optional[tuple[int, int]] = None  # (st_mtime_ns, st_size)
        self._lock = threading.Lock()
        for cfg in configs:
            self.register(cfg)

    # ---- construction ----------------------------------------------------------
    @classmethod
    def from_dicts(cls, items: Iterable[Dict[str, Any]], *, rules: Optional[Dict[str, AccessRule]] = None) -> "CollectionRegistry":
        return cls([CollectionConfig.model_validate(i) for i in items], rules=rules)

    @classmethod
    def from_file(cls, path: Path, *, rules: Optional[Dict[str, AccessRule]] = None) -> "CollectionRegistry":
        reg = cls(rules=rules)
        reg._path = Path(path)
        reg.refresh()
        return reg

    @staticmethod
    def _read_file(path: Path) -> List[CollectionConfig]:
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict) or not isinstance(data.get("collections"), list):
            raise ValueError(f"Invalid collections file format: {path}")
        return [CollectionConfig.model_validate(c) for c in data["collections"]]

    def refresh(self) -> bool:
        """
        Reload from the backing file when it changed on disk. Returns True on reload.
        A broken file keeps the previous configuration in place.
        """
        if self._path is None:
            return False
        try:
            st = self._path.stat()
        except FileNotFoundError:
            log.warning("Collections file not found: %s", self._path)
            return False

        sig = (st.st_mtime_ns, st.st_size)
        with self._lock:
            if sig == self._sig:
                return False
            try:
                configs = self._read_file(self._path)
            except (ValueError, ValidationError) as e:
                log.error("Invalid collections file %s: %s", self._path, e)
                return False
            self._configs = {c.slug: c for c in configs}
            self._sig = sig
        log.info("Loaded %d collection(s) from %s", len(configs), self._path)
        return True

    # ---- lookups ---------------------------------------------------------------
    def register(self, config: CollectionConfig) -> None:
        self._configs[config.slug] = config

    def register_rule(self, name: str, rule: AccessRule) -> None:
        self._rules[name] = rule

    def get(self, slug: str) -> CollectionConfig:
        cfg = self._configs.get(slug)
        if cfg is None:
            raise UnknownCollection(slug)
        return cfg

    def __contains__(self, slug: object) -> bool:
        return slug in self._configs

    @property
    def slugs(self) -> List[str]:
        return sorted(self._configs)

    def rule(self, name: str) -> AccessRule:
        try:
            return self._rules[name]
        except KeyError:
            raise LookupError(f"Unknown access rule '{name}'") from None

    def check_references(self) -> List[str]:
        """List config problems: relations to unknown collections and unknown rule names."""
        problems: List[str] = []

        def walk(slug: str, fields) -> None:
            for f in fields:
                for target in f.targets:
                    if target not in self._configs:
                        problems.append(f"{slug}.{f.name} relates to unknown collection '{target}'")
                walk(slug, f.fields)

        for slug, cfg in self._configs.items():
            walk(slug, cfg.fields)
            for op, spec in cfg.access.items():
                name = spec if isinstance(spec, str) else spec.get("rule")
                if name and name not in self._rules:
                    problems.append(f"{slug}.access.{op} uses unknown rule '{name}'")
        return problems
