from __future__ import annotations

import logging
from typing import Any, Dict, MutableMapping, Optional, Tuple

from relpop import where as where_mod
from relpop.models import AccessDecision, Identity, RuleSpec
from relpop.registry import CollectionRegistry

log = logging.getLogger(__name__)

DecisionCache = MutableMapping[Tuple[Any, str, str], AccessDecision]

_ANONYMOUS = ("", "")


def _identity_key(identity: Optional[Identity]) -> tuple:
    return identity.key if identity is not None else _ANONYMOUS


def _as_decision(result: Any, rule_name: str) -> AccessDecision:
    if isinstance(result, AccessDecision):
        return result
    if isinstance(result, bool):
        return AccessDecision(allowed=result)
    if isinstance(result, dict):
        # a where result grants access to matching documents only
        return AccessDecision.allow(where_mod.validate(result))
    if result is None:
        return AccessDecision.deny()
    raise TypeError(f"Access rule '{rule_name}' returned unsupported {type(result).__name__}")


class AccessEvaluator:
    """
    Decides whether an identity may see documents of a collection.

    Collections without a rule for the operation are unrestricted. A rule spec
    is a rule name ("public", "authenticated", ...), or an object combining an
    optional rule name with a where filter::

        {"rule": "authenticated", "where": {"status": {"equals": "published"}}}
        {"where": {"archived": {"not_equals": true}}}
    """

    def __init__(self, registry: CollectionRegistry) -> None:
        self.registry = registry

    def _spec(self, collection: str, operation: str) -> Optional[RuleSpec]:
        return self.registry.get(collection).access.get(operation)

    def _apply(self, spec: RuleSpec, identity: Optional[Identity], collection: str) -> AccessDecision:
        if isinstance(spec, str):
            name, extra_where = spec, None
        else:
            name, extra_where = spec.get("rule"), spec.get("where")

        if name is None:
            decision = AccessDecision.allow()
        else:
            try:
                result = self.registry.rule(name)(identity, collection)
                decision = _as_decision(result, name)
            except Exception as e:
                # fail closed: a broken rule never discloses documents
                log.error("Access rule '%s' failed for collection '%s': %s", name, collection, e)
                return AccessDecision.deny()

        if not decision.allowed:
            return decision
        if extra_where:
            return AccessDecision.allow(where_mod.combine(decision.where, extra_where))
        return decision

    def evaluate(self, identity: Optional[Identity], collection: str, operation: str = "read") -> AccessDecision:
        spec = self._spec(collection, operation)
        if spec is None:
            return AccessDecision.allow()
        return self._apply(spec, identity, collection)

    def evaluate_cached(
        self,
        identity: Optional[Identity],
        collection: str,
        operation: str = "read",
        cache: Optional[DecisionCache] = None,
    ) -> AccessDecision:
        """Same as evaluate(), memoized in a cache owned by one request."""
        if cache is None:
            return self.evaluate(identity, collection, operation)
        key = (_identity_key(identity), collection, operation)
        decision = cache.get(key)
        if decision is None:
            decision = self.evaluate(identity, collection, operation)
            cache[key] = decision
        return decision

    def explain(self, identity: Optional[Identity], collection: str, operation: str = "read") -> Dict[str, Any]:
        spec = self._spec(collection, operation)
        decision = self.evaluate(identity, collection, operation)
        return {
            "collection": collection,
            "operation": operation,
            "identity": None if identity is None else {"collection": identity.collection, "id": identity.id},
            "rule": spec,
            "resolved": decision.model_dump(),
        }
