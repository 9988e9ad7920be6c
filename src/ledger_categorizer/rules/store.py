"""User-defined keyword rules and learned corrections, persisted as JSON."""

import json
import os
import tempfile
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from ledger_categorizer.domain.text import correction_pattern, normalize_text
from ledger_categorizer.errors import RuleImportError, RuleNotFound
from ledger_categorizer.logger import get_logger
from ledger_categorizer.models import (
    ImportReport,
    KeywordRule,
    LearnedCorrection,
    MultiKeywordRule,
    RuleSnapshot,
    utcnow,
)

logger = get_logger(__name__)

SNAPSHOT_VERSION = 1
DEFAULT_CORRECTION_CONFIDENCE = 90


@dataclass(frozen=True)
class RuleMatch:
    rule: KeywordRule | MultiKeywordRule
    matched: tuple[str, ...]

    @property
    def account_code(self) -> str:
        return self.rule.account_code

    @property
    def confidence(self) -> int:
        return self.rule.confidence

    @property
    def specificity(self) -> int:
        return sum(len(keyword) for keyword in self.matched)


class RuleStore:
    def __init__(self, data_path: str | None = "rules.json") -> None:
        self.data_path = data_path
        self._keywords: dict[str, KeywordRule] = {}
        self._rules: dict[str, MultiKeywordRule] = {}
        self._corrections: dict[str, LearnedCorrection] = {}
        self._sequence = 0
        self._lock = threading.RLock()
        self._listeners: list[Callable[[], None]] = []
        self.load()

    # -- persistence -------------------------------------------------------

    def load(self) -> None:
        if not self.data_path or not os.path.exists(self.data_path):
            return
        try:
            with open(self.data_path, encoding="utf-8") as handle:
                snapshot = RuleSnapshot.model_validate(json.load(handle))
        except (json.JSONDecodeError, ValidationError) as exc:
            logger.error("[RULES] Could not read %s, starting empty: %s", self.data_path, exc)
            return
        with self._lock:
            self._keywords = {rule.id: rule for rule in snapshot.keywords}
            self._rules = {rule.id: rule for rule in snapshot.rules}
            self._corrections = {item.id: item for item in snapshot.corrections}
            self._sequence = max(
                (item.sequence for item in self._iter_all()),
                default=0,
            )
        logger.info(
            "[RULES] Loaded %d keyword(s), %d rule(s), %d correction(s) from %s.",
            len(self._keywords),
            len(self._rules),
            len(self._corrections),
            self.data_path,
        )

    def save(self) -> None:
        if not self.data_path:
            return
        payload = self.export_snapshot()
        directory = os.path.dirname(os.path.abspath(self.data_path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=".rules-", suffix=".json", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2)
            os.replace(tmp_path, self.data_path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def subscribe(self, listener: Callable[[], None]) -> None:
        """Call ``listener`` after every successful mutation."""
        self._listeners.append(listener)

    def _commit(self) -> None:
        self.save()
        for listener in self._listeners:
            listener()

    def _iter_all(self) -> Iterable[KeywordRule | MultiKeywordRule | LearnedCorrection]:
        yield from self._keywords.values()
        yield from self._rules.values()
        yield from self._corrections.values()

    def _next_sequence(self) -> int:
        self._sequence += 1
        return self._sequence

    # -- keyword rules -----------------------------------------------------

    def add_keyword(
        self,
        keyword: str,
        account_code: str,
        confidence: int = 90,
        note: str | None = None,
    ) -> KeywordRule:
        candidate = KeywordRule(
            keyword=keyword,
            account_code=account_code,
            confidence=max(0, min(100, confidence)),
            note=note,
        )
        with self._lock:
            existing = next(
                (
                    rule
                    for rule in self._keywords.values()
                    if rule.keyword == candidate.keyword and rule.account_code == candidate.account_code
                ),
                None,
            )
            if existing is not None:
                rule = existing.model_copy(
                    update={"confidence": candidate.confidence, "note": note, "updated_at": utcnow()}
                )
            else:
                rule = candidate.model_copy(update={"sequence": self._next_sequence()})
            self._keywords[rule.id] = rule
            self._commit()
        logger.info("[RULES] Keyword '%s' -> %s saved.", rule.keyword, rule.account_code)
        return rule

    def add_rule(
        self,
        keywords: Iterable[str],
        account_code: str,
        confidence: int = 90,
        note: str | None = None,
    ) -> MultiKeywordRule:
        candidate = MultiKeywordRule(
            keywords=list(keywords),
            account_code=account_code,
            confidence=max(0, min(100, confidence)),
            note=note,
        )
        with self._lock:
            existing = next(
                (
                    rule
                    for rule in self._rules.values()
                    if rule.keywords == candidate.keywords and rule.account_code == candidate.account_code
                ),
                None,
            )
            if existing is not None:
                rule = existing.model_copy(
                    update={"confidence": candidate.confidence, "note": note, "updated_at": utcnow()}
                )
            else:
                rule = candidate.model_copy(update={"sequence": self._next_sequence()})
            self._rules[rule.id] = rule
            self._commit()
        logger.info("[RULES] Rule %s -> %s saved.", sorted(rule.keywords), rule.account_code)
        return rule

    def update_keyword(self, rule_id: str, **changes: Any) -> KeywordRule:
        with self._lock:
            current = self._keywords.get(rule_id)
            if current is None:
                raise RuleNotFound(rule_id)
            updated = _apply_changes(current, changes, {"keyword", "account_code", "confidence", "note"})
            self._keywords[rule_id] = updated
            self._commit()
            return updated

    def update_rule(self, rule_id: str, **changes: Any) -> MultiKeywordRule:
        with self._lock:
            current = self._rules.get(rule_id)
            if current is None:
                raise RuleNotFound(rule_id)
            updated = _apply_changes(current, changes, {"keywords", "account_code", "confidence", "note"})
            self._rules[rule_id] = updated
            self._commit()
            return updated

    def remove(self, rule_id: str) -> KeywordRule | MultiKeywordRule | LearnedCorrection:
        with self._lock:
            for collection in (self._keywords, self._rules, self._corrections):
                if rule_id in collection:
                    removed = collection.pop(rule_id)
                    self._commit()
                    return removed
        raise RuleNotFound(rule_id)

    def remove_correction(self, correction_id: str) -> LearnedCorrection:
        with self._lock:
            removed = self._corrections.pop(correction_id, None)
            if removed is None:
                raise RuleNotFound(correction_id)
            self._commit()
            return removed

    def keywords(self) -> list[KeywordRule]:
        with self._lock:
            return sorted(self._keywords.values(), key=lambda rule: rule.sequence)

    def rules(self) -> list[MultiKeywordRule]:
        with self._lock:
            return sorted(self._rules.values(), key=lambda rule: rule.sequence)

    def corrections(self) -> list[LearnedCorrection]:
        with self._lock:
            return sorted(self._corrections.values(), key=lambda item: item.sequence)

    def find_match(self, text: str) -> RuleMatch | None:
        """Most specific keyword or multi-keyword rule contained in ``text``.

        Specificity is the number of keyword characters matched; equal
        specificity goes to the most recently added rule.
        """
        normalized = normalize_text(text)
        if not normalized:
            return None

        best: RuleMatch | None = None
        best_rank: tuple[int, int] = (-1, -1)
        with self._lock:
            for rule in self._keywords.values():
                if rule.keyword in normalized:
                    rank = (len(rule.keyword), rule.sequence)
                    if rank > best_rank:
                        best, best_rank = RuleMatch(rule, (rule.keyword,)), rank
            for multi in self._rules.values():
                if all(keyword in normalized for keyword in multi.keywords):
                    rank = (multi.specificity, multi.sequence)
                    if rank > best_rank:
                        best, best_rank = RuleMatch(multi, tuple(sorted(multi.keywords))), rank
        return best

    # -- learned corrections -----------------------------------------------

    def learn(
        self,
        description: str,
        account_code: str,
        confidence: int = DEFAULT_CORRECTION_CONFIDENCE,
    ) -> LearnedCorrection:
        pattern = correction_pattern(description) or normalize_text(description)
        confidence = max(0, min(100, confidence))
        with self._lock:
            existing = next((item for item in self._corrections.values() if item.pattern == pattern), None)
            if existing is not None:
                correction = existing.model_copy(update={"account_code": account_code, "confidence": confidence})
            else:
                correction = LearnedCorrection(
                    pattern=pattern,
                    account_code=account_code,
                    confidence=confidence,
                    sequence=self._next_sequence(),
                )
            self._corrections[correction.id] = correction
            self._commit()
        logger.info("[RULES] Learned '%s' -> %s.", pattern, account_code)
        return correction

    def find_correction(self, text: str) -> tuple[LearnedCorrection, bool] | None:
        """Return the matching correction and whether the match was exact."""
        pattern = correction_pattern(text)
        if not pattern:
            return None
        with self._lock:
            match: LearnedCorrection | None = None
            exact = False
            for item in self._corrections.values():
                if item.pattern == pattern:
                    match, exact = item, True
                    break
            if match is None:
                contained = [item for item in self._corrections.values() if item.pattern in pattern]
                if contained:
                    match = max(contained, key=lambda item: (len(item.pattern), item.sequence))
            if match is None:
                return None
            match.usage_count += 1
            match.last_used = utcnow()
            return match, exact

    # -- snapshots ---------------------------------------------------------

    def export_snapshot(self) -> dict[str, Any]:
        with self._lock:
            snapshot = RuleSnapshot(
                version=SNAPSHOT_VERSION,
                exported_at=utcnow(),
                keywords=self.keywords(),
                rules=self.rules(),
                corrections=self.corrections(),
            )
        return snapshot.model_dump(mode="json")

    def import_snapshot(self, data: dict[str, Any] | str) -> ImportReport:
        if isinstance(data, str):
            try:
                data = json.loads(data)
            except json.JSONDecodeError as exc:
                raise RuleImportError(f"Snapshot is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise RuleImportError("Snapshot must be a JSON object.")
        if data.get("version") != SNAPSHOT_VERSION:
            raise RuleImportError(f"Unsupported snapshot version {data.get('version')!r}.")
        for section in ("keywords", "rules", "corrections"):
            if not isinstance(data.get(section, []), list):
                raise RuleImportError(f"'{section}' must be a list.")

        report = ImportReport()
        staged_keywords = _validate_records(KeywordRule, data.get("keywords", []), "keywords", report)
        staged_rules = _validate_records(MultiKeywordRule, data.get("rules", []), "rules", report)
        staged_corrections = _validate_records(LearnedCorrection, data.get("corrections", []), "corrections", report)

        with self._lock:
            previous = (dict(self._keywords), dict(self._rules), dict(self._corrections), self._sequence)
            for record in staged_keywords:
                _merge(self._keywords, record, report, lambda a, b: a.keyword == b.keyword and a.account_code == b.account_code)
            for record in staged_rules:
                _merge(self._rules, record, report, lambda a, b: a.keywords == b.keywords and a.account_code == b.account_code)
            for record in staged_corrections:
                _merge(self._corrections, record, report, lambda a, b: a.pattern == b.pattern)
            self._sequence = max((item.sequence for item in self._iter_all()), default=0)
            try:
                self._commit()
            except OSError:
                self._keywords, self._rules, self._corrections, self._sequence = previous
                raise

        logger.info(
            "[RULES] Import finished: %d added, %d updated, %d rejected.",
            report.added,
            report.updated,
            report.rejected,
        )
        return report

    def stats(self) -> dict[str, Any]:
        with self._lock:
            codes = {item.account_code for item in self._iter_all()}
            return {
                "keywords": len(self._keywords),
                "rules": len(self._rules),
                "corrections": len(self._corrections),
                "account_codes": sorted(codes),
            }


def _apply_changes(current: Any, changes: dict[str, Any], allowed: set[str]) -> Any:
    unknown = set(changes) - allowed
    if unknown:
        raise ValueError(f"Cannot update field(s): {', '.join(sorted(unknown))}")
    data = current.model_dump()
    data.update({key: value for key, value in changes.items() if value is not None})
    data["updated_at"] = utcnow()
    return type(current).model_validate(data)


def _validate_records(model: Any, records: list[Any], section: str, report: ImportReport) -> list[Any]:
    valid = []
    for index, record in enumerate(records):
        try:
            valid.append(model.model_validate(record))
        except ValidationError as exc:
            report.rejected += 1
            report.errors.append(f"{section}[{index}]: {exc.error_count()} validation error(s)")
    return valid


def _merge(collection: dict[str, Any], record: Any, report: ImportReport, same: Callable[[Any, Any], bool]) -> None:
    if record.id in collection:
        collection[record.id] = record
        report.updated += 1
        return
    duplicate = next((item for item in collection.values() if same(item, record)), None)
    if duplicate is not None:
        collection[duplicate.id] = record.model_copy(update={"id": duplicate.id})
        report.updated += 1
        return
    collection[record.id] = record
    report.added += 1
