"""Declarative rule catalog: schema validation and loading.

The catalog is a JSON document holding a list of rules (or an object with a
``rules`` key). Each rule is validated on its own; a malformed rule is logged
and skipped so that one bad entry never takes the whole engine down. Only a
document that cannot be read or parsed at all raises :class:`CatalogError`.
"""

from __future__ import annotations

import json
import logging
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    ValidationError,
    field_validator,
    model_validator,
)

from .exceptions import CatalogError
from .models import (
    NUMERIC_OPERATORS,
    OPERATORS,
    SCOPES,
    Condition,
    ConfidencePolicy,
    QualityCheck,
    Rule,
    is_known_field,
)

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_RESOURCE = "data/rules.json"

# Operator spellings accepted from older catalog documents.
OPERATOR_ALIASES = {
    "pctLt": "lt",
    "pctGt": "gt",
    "deltaLt": "lt",
    "deltaGt": "gt",
    "<": "lt",
    "<=": "lte",
    ">": "gt",
    ">=": "gte",
    "==": "eq",
    "!=": "ne",
    "exists": "present",
    "missing": "absent",
}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class ConditionSpec(BaseModel):
    model_config = ConfigDict(extra="ignore")

    field: Optional[str] = None
    op: Optional[str] = Field(None, validation_alias=AliasChoices("op", "operator"))
    value: Any = None
    reason: Optional[str] = None
    weak: Optional[bool] = None
    all_of: Optional[List["ConditionSpec"]] = Field(
        None, validation_alias=AliasChoices("all", "allOf", "all_of")
    )

    @field_validator("op")
    @classmethod
    def canonical_operator(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        op = OPERATOR_ALIASES.get(v.strip(), v.strip())
        if op not in OPERATORS or op == "all":
            raise ValueError(f"unknown operator {v!r}")
        return op

    @model_validator(mode="after")
    def check_shape(self) -> "ConditionSpec":
        if self.all_of is not None:
            if not self.all_of:
                raise ValueError("all-of group must not be empty")
            if all(member.all_of is None and member.op == "absent" for member in self.all_of):
                raise ValueError("all-of group needs at least one condition that is not 'absent'")
            return self
        if not self.field or not self.field.strip():
            raise ValueError("condition field is required")
        self.field = self.field.strip()
        if not is_known_field(self.field):
            raise ValueError(f"unknown field path {self.field!r}")
        if self.op is None:
            raise ValueError("condition operator is required")
        if self.op in NUMERIC_OPERATORS and not _is_number(self.value):
            raise ValueError(f"operator {self.op!r} needs a numeric value")
        if self.op == "contains":
            needles = self.value if isinstance(self.value, list) else [self.value]
            if not needles or not all(isinstance(n, str) and n.strip() for n in needles):
                raise ValueError("'contains' needs a non-empty string or list of strings")
        if self.op == "in" and not isinstance(self.value, list):
            raise ValueError("'in' needs a list value")
        return self

    def to_condition(self) -> Condition:
        if self.all_of is not None:
            members = tuple(member.to_condition() for member in self.all_of)
            reason = self.reason or "_and_".join(member.reason for member in members)
            return Condition(
                field="",
                op="all",
                reason=reason,
                weak=bool(self.weak) if self.weak is not None else all(m.weak for m in members),
                members=members,
            )
        if self.field is None or self.op is None:
            raise CatalogError("condition needs a field and an operator")
        reason = self.reason or f"{self.field.replace('.', '_')}_{self.op}"
        weak = self.weak if self.weak is not None else self.op == "contains"
        value = tuple(self.value) if isinstance(self.value, list) else self.value
        return Condition(field=self.field, op=self.op, value=value, reason=reason, weak=weak)


ConditionSpec.model_rebuild()


class QualityCheckSpec(ConditionSpec):
    penalty: float = Field(..., ge=0.0, le=1.0)

    @model_validator(mode="after")
    def check_not_group(self) -> "QualityCheckSpec":
        if self.all_of is not None:
            raise ValueError("quality checks cannot be all-of groups")
        return self

    def to_check(self) -> QualityCheck:
        condition = self.to_condition()
        return QualityCheck(condition=condition, penalty=self.penalty, reason=self.reason)


class ConfidenceSpec(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    base: float = Field(0.8, ge=0.0, le=1.0)
    weak_only_penalty: float = Field(
        0.2, ge=0.0, le=1.0, validation_alias=AliasChoices("weak_only_penalty", "weakOnlyPenalty")
    )
    numeric_missing_penalty: float = Field(
        0.25,
        ge=0.0,
        le=1.0,
        validation_alias=AliasChoices("numeric_missing_penalty", "numericMissingPenalty"),
    )
    sparse_reason: Optional[str] = Field(
        None, validation_alias=AliasChoices("sparse_reason", "sparseReason")
    )
    checks: List[QualityCheckSpec] = Field(default_factory=list)

    def to_policy(self) -> ConfidencePolicy:
        return ConfidencePolicy(
            base=self.base,
            weak_only_penalty=self.weak_only_penalty,
            numeric_missing_penalty=self.numeric_missing_penalty,
            sparse_reason=self.sparse_reason,
            checks=tuple(check.to_check() for check in self.checks),
        )


class RuleSpec(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., min_length=1, max_length=120)
    priority: StrictInt
    conditions: List[ConditionSpec] = Field(..., min_length=1)
    message: str
    scopes: List[str] = Field(default_factory=list)
    title: Optional[str] = None
    action: Optional[str] = None
    why: Optional[str] = None
    source_tag: Optional[str] = Field(None, validation_alias=AliasChoices("sourceTag", "source_tag"))
    confidence: ConfidenceSpec = Field(default_factory=ConfidenceSpec)

    @model_validator(mode="before")
    @classmethod
    def accept_legacy_keys(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "conditions" not in data and "condition" in data:
            data["conditions"] = data.pop("condition")
        if "scopes" not in data and "scope" in data:
            legacy = data.pop("scope")
            data["scopes"] = legacy if isinstance(legacy, list) else [legacy]
        return data

    @field_validator("id", "message")
    @classmethod
    def not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Must not be empty or whitespace only")
        return v.strip()

    @field_validator("conditions")
    @classmethod
    def no_bare_absent(cls, v: List[ConditionSpec]) -> List[ConditionSpec]:
        for condition in v:
            if condition.all_of is None and condition.op == "absent":
                raise ValueError("'absent' can only trigger a rule inside an all-of group")
        return v

    @field_validator("scopes")
    @classmethod
    def known_scopes(cls, v: List[str]) -> List[str]:
        cleaned: List[str] = []
        for scope in v:
            name = str(scope).strip().lower()
            if name not in SCOPES:
                raise ValueError(f"unknown scope {scope!r}")
            if name not in cleaned:
                cleaned.append(name)
        return cleaned

    def to_rule(self) -> Rule:
        return Rule(
            rule_id=self.id,
            conditions=tuple(item.to_condition() for item in self.conditions),
            message=self.message,
            priority=self.priority,
            scopes=tuple(self.scopes),
            title=self.title,
            action=self.action,
            why=self.why,
            source_tag=self.source_tag,
            confidence=self.confidence.to_policy(),
        )


def _format_errors(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        loc = ".".join(str(item) for item in error.get("loc", ()))
        parts.append(f"{loc}: {error.get('msg')}" if loc else str(error.get("msg")))
    return "; ".join(parts)


class RuleCatalog:
    """Validated, read-only collection of rules in catalog order."""

    def __init__(self, rules: Iterable[Rule], *, rejected: Mapping[str, str] | None = None) -> None:
        self._rules: Tuple[Rule, ...] = tuple(rules)
        self._by_id: Dict[str, Rule] = {rule.rule_id: rule for rule in self._rules}
        self.rejected: Dict[str, str] = dict(rejected or {})

    def __iter__(self) -> Iterator[Rule]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, rule_id: object) -> bool:
        return rule_id in self._by_id

    @property
    def rules(self) -> Tuple[Rule, ...]:
        return self._rules

    def get(self, rule_id: str) -> Rule | None:
        return self._by_id.get(rule_id)

    def ids(self) -> List[str]:
        return [rule.rule_id for rule in self._rules]

    @classmethod
    def from_document(cls, document: Any) -> "RuleCatalog":
        """Validate an already-parsed catalog document."""

        if isinstance(document, dict):
            entries = document.get("rules")
        else:
            entries = document
        if not isinstance(entries, list):
            raise CatalogError("catalog document must be a list of rules or an object with a 'rules' list")

        rules: List[Rule] = []
        seen: set[str] = set()
        rejected: Dict[str, str] = {}
        for index, entry in enumerate(entries):
            label = f"#{index}"
            if isinstance(entry, dict) and isinstance(entry.get("id"), str) and entry["id"].strip():
                label = entry["id"].strip()
            try:
                rule = RuleSpec.model_validate(entry).to_rule()
            except ValidationError as exc:
                message = _format_errors(exc)
                logger.warning("Skipping malformed rule %s: %s", label, message)
                rejected[label] = message
                continue
            if rule.rule_id in seen:
                logger.warning("Skipping duplicate rule id %s", rule.rule_id)
                rejected.setdefault(f"{label}@{index}", "duplicate rule id")
                continue
            seen.add(rule.rule_id)
            rules.append(rule)
        logger.debug("Loaded %d rules (%d rejected)", len(rules), len(rejected))
        return cls(rules, rejected=rejected)

    @classmethod
    def from_json(cls, text: str) -> "RuleCatalog":
        try:
            document = json.loads(text)
        except json.JSONDecodeError as exc:
            raise CatalogError(f"catalog is not valid JSON: {exc}") from exc
        return cls.from_document(document)

    @classmethod
    def from_path(cls, path: str | Path) -> "RuleCatalog":
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise CatalogError(f"cannot read catalog {path}: {exc}") from exc
        return cls.from_json(text)


def load_catalog(source: Any = None) -> RuleCatalog:
    """Load a catalog from a path, JSON text, parsed document or the packaged default."""

    if source is None:
        return load_default_catalog()
    if isinstance(source, RuleCatalog):
        return source
    if isinstance(source, Path):
        return RuleCatalog.from_path(source)
    if isinstance(source, str):
        if source.lstrip().startswith(("[", "{")):
            return RuleCatalog.from_json(source)
        return RuleCatalog.from_path(source)
    return RuleCatalog.from_document(source)


@lru_cache(maxsize=1)
def load_default_catalog() -> RuleCatalog:
    """Return the catalog shipped with the package, loaded once per process."""

    resource = resources.files("insight_engine").joinpath(DEFAULT_CATALOG_RESOURCE)
    try:
        text = resource.read_text(encoding="utf-8")
    except OSError as exc:
        raise CatalogError(f"packaged catalog is missing: {exc}") from exc
    return RuleCatalog.from_json(text)
