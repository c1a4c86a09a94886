"""
OptionsTransformer — applies per-user option policy to submitted options.

Two kinds of policy are applied:

    * Option constraints (per user): a submitted value outside the
      allowed list is replaced by the default; a missing option is set
      to the default.
    * Derivation rules: for whitelisted users, a missing target field is
      derived from the prefix of an identifying field using an ordered
      prefix → value table.

Every change is recorded in the session log.  Constraints run before and
after the derivations, so derived values obey the same allow-lists.  The
transform is idempotent: running it on its own output changes nothing,
because a derivation only writes a target field that is not yet present
and a constraint only rewrites values outside its allow-list.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from gateway.core.logging import get_logger
from gateway.pipeline.models import AnalysisOptions, User

logger = get_logger(__name__)


class SessionLog(Protocol):
    def add_log(self, entry: str, *args: Any) -> None:
        ...


@dataclass(frozen=True)
class DerivationRule:
    """
    Derive `target_field` from the prefix of `source_field`.

    Args:
        name: Rule identifier used in logs.
        user_ids: Users the rule applies to.  Nobody else is affected.
        source_field: Identifying field, e.g. "article_id".
        target_field: Field to fill in when absent, e.g. "editorial_policy".
        prefixes: Ordered (prefix, value) pairs.  The first pair whose
            prefix matches wins, so declaration order breaks ties.
        case_sensitive: Compare prefixes case-sensitively.
    """

    name: str
    user_ids: frozenset[str]
    source_field: str
    target_field: str
    prefixes: tuple[tuple[str, str], ...]
    case_sensitive: bool = False

    def lookup(self, identifier: str) -> str | None:
        candidate = identifier if self.case_sensitive else identifier.upper()
        for prefix, value in self.prefixes:
            key = prefix if self.case_sensitive else prefix.upper()
            if candidate.startswith(key):
                return value
        return None


def _is_set(value: Any) -> bool:
    return value is not None and value != ""


@dataclass(frozen=True)
class OptionsTransformer:
    """Applies option constraints and derivation rules for one request."""

    rules: tuple[DerivationRule, ...] = field(default_factory=tuple)

    def transform(
        self,
        options: AnalysisOptions,
        user: User,
        session: SessionLog,
    ) -> AnalysisOptions:
        """Return a new AnalysisOptions with the user's policy applied."""
        data = options.model_dump(exclude_none=True)

        self._apply_constraints(data, user, session)
        # A derived field may be another rule's source; each pass adds at
        # least one key, so this stops after len(rules) passes at most.
        while self._apply_derivations(data, user, session):
            self._apply_constraints(data, user, session)

        return AnalysisOptions.model_validate(data)

    def _apply_constraints(
        self,
        data: dict[str, Any],
        user: User,
        session: SessionLog,
    ) -> None:
        for key, constraint in user.option_constraints.items():
            if key in data:
                value = data[key]
                if value not in constraint.available:
                    data[key] = constraint.default
                    session.add_log(
                        f'Option "{key}" with value "{value}" is not available; '
                        f'default value "{constraint.default}" will be used instead'
                    )
            elif constraint.default:
                data[key] = constraint.default
                session.add_log(
                    f'Option "{key}" not provided; '
                    f'default value "{constraint.default}" will be used instead'
                )

    def _apply_derivations(
        self,
        data: dict[str, Any],
        user: User,
        session: SessionLog,
    ) -> bool:
        derived = False
        for rule in self.rules:
            if user.id not in rule.user_ids:
                continue
            if rule.target_field in data:
                continue
            identifier = data.get(rule.source_field)
            if not _is_set(identifier):
                continue

            value = rule.lookup(str(identifier))
            if value is None:
                session.add_log(
                    f'Policy "{rule.name}": no {rule.target_field} mapped for '
                    f'{rule.source_field} "{identifier}"'
                )
                continue

            data[rule.target_field] = value
            derived = True
            session.add_log(
                f'Policy "{rule.name}": {rule.target_field} set to "{value}" '
                f'derived from {rule.source_field} "{identifier}"'
            )
            logger.info(
                "Option derived by policy",
                rule=rule.name,
                user_id=user.id,
                target_field=rule.target_field,
                value=value,
            )
        return derived


def load_rules(path: str | Path) -> tuple[DerivationRule, ...]:
    """
    Load derivation rules from a JSON file.

    Expected format::

        {"rules": [
            {"name": "journal-policy",
             "user_ids": ["publisher-a"],
             "source_field": "article_id",
             "target_field": "editorial_policy",
             "prefixes": [["PONE", "PLOS-1"], ["PCBI", "PLOS-2"]]}
        ]}

    A missing file means no rules.
    """
    path = Path(path)
    if not path.is_file():
        logger.info("No policy rules file, derivations disabled", path=str(path))
        return ()

    raw = json.loads(path.read_text(encoding="utf-8"))
    rules = tuple(
        DerivationRule(
            name=item["name"],
            user_ids=frozenset(item.get("user_ids", [])),
            source_field=item["source_field"],
            target_field=item["target_field"],
            prefixes=tuple((str(p), str(v)) for p, v in item.get("prefixes", [])),
            case_sensitive=bool(item.get("case_sensitive", False)),
        )
        for item in raw.get("rules", [])
    )
    logger.info("Policy rules loaded", path=str(path), rules=len(rules))
    return rules
