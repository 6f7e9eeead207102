# conditions.py
# Run conditions as a small typed expression tree.
#
#   success()                                 all needed jobs succeeded
#   failure()                                 at least one needed job failed
#   always()                                  run once needs are terminal, whatever happened
#   needs.<job>.outputs.<key> == 'literal'    output comparison (also !=)
#   needs.<job>.result == 'skipped'           status check
#   a && b, a || b, !a, ( ... )
#
# An expression without any status function is implicitly `success() && expr`.
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Mapping, Set, Tuple

from .exceptions import ConditionError
from .model import JobResult, JobStatus


class Condition:
    def evaluate(self, needs: Mapping[str, JobResult]) -> bool:
        raise NotImplementedError

    def jobs(self) -> Set[str]:
        """Job names this condition reads."""
        return set()

    def has_status_check(self) -> bool:
        return False

    def __and__(self, other: "Condition") -> "Condition":
        return And((self, other))

    def __or__(self, other: "Condition") -> "Condition":
        return Or((self, other))

    def __invert__(self) -> "Condition":
        return Not(self)


@dataclass(frozen=True)
class Success(Condition):
    def evaluate(self, needs: Mapping[str, JobResult]) -> bool:
        return all(r.status is JobStatus.SUCCEEDED for r in needs.values())

    def has_status_check(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure(Condition):
    def evaluate(self, needs: Mapping[str, JobResult]) -> bool:
        return any(r.status is JobStatus.FAILED for r in needs.values())

    def has_status_check(self) -> bool:
        return True


@dataclass(frozen=True)
class Always(Condition):
    def evaluate(self, needs: Mapping[str, JobResult]) -> bool:
        return True

    def has_status_check(self) -> bool:
        return True


@dataclass(frozen=True)
class OutputEquals(Condition):
    job: str
    key: str
    value: str
    negate: bool = False

    def evaluate(self, needs: Mapping[str, JobResult]) -> bool:
        result = needs.get(self.job)
        actual = result.visible_outputs.get(self.key) if result else None
        return (actual == self.value) != self.negate

    def jobs(self) -> Set[str]:
        return {self.job}


@dataclass(frozen=True)
class StatusIs(Condition):
    job: str
    status: JobStatus
    negate: bool = False

    def evaluate(self, needs: Mapping[str, JobResult]) -> bool:
        result = needs.get(self.job)
        actual = result.status if result else None
        return (actual is self.status) != self.negate

    def jobs(self) -> Set[str]:
        return {self.job}

    def has_status_check(self) -> bool:
        return True


@dataclass(frozen=True)
class And(Condition):
    items: Tuple[Condition, ...]

    def evaluate(self, needs: Mapping[str, JobResult]) -> bool:
        return all(c.evaluate(needs) for c in self.items)

    def jobs(self) -> Set[str]:
        return set().union(*(c.jobs() for c in self.items))

    def has_status_check(self) -> bool:
        return any(c.has_status_check() for c in self.items)


@dataclass(frozen=True)
class Or(Condition):
    items: Tuple[Condition, ...]

    def evaluate(self, needs: Mapping[str, JobResult]) -> bool:
        return any(c.evaluate(needs) for c in self.items)

    def jobs(self) -> Set[str]:
        return set().union(*(c.jobs() for c in self.items))

    def has_status_check(self) -> bool:
        return any(c.has_status_check() for c in self.items)


@dataclass(frozen=True)
class Not(Condition):
    item: Condition

    def evaluate(self, needs: Mapping[str, JobResult]) -> bool:
        return not self.item.evaluate(needs)

    def jobs(self) -> Set[str]:
        return self.item.jobs()

    def has_status_check(self) -> bool:
        return self.item.has_status_check()


def effective(condition: Condition | None) -> Condition:
    """The condition the scheduler actually evaluates."""
    if condition is None:
        return Success()
    if condition.has_status_check():
        return condition
    return And((Success(), condition))


def should_run(condition: Condition | None, needs: Mapping[str, JobResult]) -> bool:
    return effective(condition).evaluate(needs)


# ---------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------

RESULT_ALIASES = {
    "success": JobStatus.SUCCEEDED,
    "succeeded": JobStatus.SUCCEEDED,
    "failure": JobStatus.FAILED,
    "failed": JobStatus.FAILED,
    "skipped": JobStatus.SKIPPED,
    "cancelled": JobStatus.CANCELLED,
}

_TOKEN_RE = re.compile(
    r"\s*(?:"
    r"(?P<op>&&|\|\||==|!=|!|\(|\))"
    r"|'(?P<sq>[^']*)'"
    r"|\"(?P<dq>[^\"]*)\""
    r"|(?P<ident>[A-Za-z_][A-Za-z0-9_\-]*(?:\.[A-Za-z_][A-Za-z0-9_\-]*)*)"
    r")"
)


def _tokenize(text: str) -> List[Tuple[str, str]]:
    tokens: List[Tuple[str, str]] = []
    pos = 0
    text = text.rstrip()
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if not m or m.end() == pos:
            raise ConditionError(f"Unexpected character at {pos} in condition: {text!r}")
        pos = m.end()
        if m.group("op"):
            tokens.append(("op", m.group("op")))
        elif m.group("sq") is not None:
            tokens.append(("str", m.group("sq")))
        elif m.group("dq") is not None:
            tokens.append(("str", m.group("dq")))
        else:
            tokens.append(("ident", m.group("ident")))
    return tokens


class _Parser:
    def __init__(self, text: str):
        self.text = text
        self.tokens = _tokenize(text)
        self.pos = 0

    def _peek(self) -> Tuple[str, str] | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _take(self) -> Tuple[str, str]:
        tok = self._peek()
        if tok is None:
            raise ConditionError(f"Unexpected end of condition: {self.text!r}")
        self.pos += 1
        return tok

    def _expect(self, value: str) -> None:
        kind, tok = self._take()
        if kind != "op" or tok != value:
            raise ConditionError(f"Expected {value!r}, got {tok!r} in condition: {self.text!r}")

    def parse(self) -> Condition:
        cond = self._or()
        if self._peek() is not None:
            raise ConditionError(f"Unexpected {self._peek()[1]!r} in condition: {self.text!r}")
        return cond

    def _or(self) -> Condition:
        items = [self._and()]
        while self._peek() == ("op", "||"):
            self._take()
            items.append(self._and())
        return items[0] if len(items) == 1 else Or(tuple(items))

    def _and(self) -> Condition:
        items = [self._unary()]
        while self._peek() == ("op", "&&"):
            self._take()
            items.append(self._unary())
        return items[0] if len(items) == 1 else And(tuple(items))

    def _unary(self) -> Condition:
        if self._peek() == ("op", "!"):
            self._take()
            return Not(self._unary())
        return self._primary()

    def _primary(self) -> Condition:
        kind, tok = self._take()
        if kind == "op" and tok == "(":
            cond = self._or()
            self._expect(")")
            return cond
        if kind != "ident":
            raise ConditionError(f"Unexpected {tok!r} in condition: {self.text!r}")

        if tok in ("success", "failure", "always"):
            self._expect("(")
            self._expect(")")
            return {"success": Success(), "failure": Failure(), "always": Always()}[tok]

        parts = tok.split(".")
        kind2, op = self._take()
        if kind2 != "op" or op not in ("==", "!="):
            raise ConditionError(f"Expected == or != after {tok!r} in condition: {self.text!r}")
        lit_kind, literal = self._take()
        if lit_kind == "ident" and literal in ("true", "false"):
            lit_kind = "str"
        if lit_kind != "str":
            raise ConditionError(f"Expected a string literal after {op} in condition: {self.text!r}")
        negate = op == "!="

        if len(parts) == 4 and parts[0] == "needs" and parts[2] == "outputs":
            return OutputEquals(job=parts[1], key=parts[3], value=literal, negate=negate)
        if len(parts) == 3 and parts[0] == "needs" and parts[2] == "result":
            status = RESULT_ALIASES.get(literal)
            if status is None:
                raise ConditionError(f"Unknown job result {literal!r} in condition: {self.text!r}")
            return StatusIs(job=parts[1], status=status, negate=negate)
        raise ConditionError(
            f"Unknown reference {tok!r}; use needs.<job>.outputs.<key> or needs.<job>.result"
        )


def parse_condition(text: str) -> Condition:
    """Parse an `if:`-style expression into a Condition tree."""
    stripped = text.strip()
    if stripped.startswith("${{") and stripped.endswith("}}"):
        stripped = stripped[3:-2].strip()
    if not stripped:
        raise ConditionError("Empty condition")
    return _Parser(stripped).parse()

