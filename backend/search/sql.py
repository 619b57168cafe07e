"""
Positional parameter binding for compiled clauses.

A ``Clause`` is a SQL fragment whose placeholders are local, ``{0}``, ``{1}``
and so on, paired with the values they stand for. ``SqlBinder`` is the single
step that turns a sequence of clauses into driver-ready SQL: it hands out
``$n`` indices in order and collects the argument list, so a clause can never
refer to a parameter it did not bring with it.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable


@dataclass(frozen=True)
class Clause:
    template: str
    values: tuple[Any, ...] = ()

    def __post_init__(self) -> None:
        if "$" in self.template:
            raise ValueError("clause templates use local {n} placeholders, not $n")


@dataclass
class SqlBinder:
    start: int = 1
    args: list[Any] = field(default_factory=list)

    def param(self, value: Any) -> str:
        self.args.append(value)
        return f"${self.start + len(self.args) - 1}"

    def bind(self, clause: Clause) -> str:
        placeholders = [self.param(v) for v in clause.values]
        return clause.template.format(*placeholders)

    def bind_all(self, clauses: Iterable[Clause], separator: str = " AND ") -> str:
        return separator.join(self.bind(c) for c in clauses)

    def where(self, clauses: Iterable[Clause]) -> str:
        """Render a ``WHERE`` clause joining *clauses* with AND, or ``""``."""
        rendered = [f"({self.bind(c)})" for c in clauses]
        return f"WHERE {' AND '.join(rendered)}" if rendered else ""
