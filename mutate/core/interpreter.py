"""Rule Interpreter — applies an ordered rule list to worksheet matrices.

The run is a left-to-right fold over an immutable InterpreterState. Each
handler receives the current state and returns a RuleOutcome carrying the new
state, a human-readable description and any warnings. Handlers never mutate
the rows they were given; they build new ones.

Data-shape problems (unresolved columns, ragged rows, missing worksheets)
become warnings. The only early exit is VALIDATE_COLUMNS with
onFailure=stop, which empties the result.
"""

import copy
import logging
import re
from dataclasses import dataclass, field, replace
from typing import Callable, Mapping, Optional, Sequence, get_args

from mutate.core.identifiers import (
    build_header_cache,
    cell_text,
    get_cell,
    header_width,
    is_blank,
    matrix_width,
    resolve_columns,
    row_numbers_to_indices,
)
from mutate.core.models import CellMatrix, ExecutionResult
from mutate.core.rules import (
    CombineWorksheetsRule,
    DeleteColumnsRule,
    DeleteRowsRule,
    EvaluateFormulasRule,
    ReplaceCharactersRule,
    Rule,
    RowCondition,
    SelectWorksheetRule,
    UnmergeAndFillRule,
    ValidateColumnsRule,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InterpreterState:
    active_sheet: str
    matrices: Mapping[str, CellMatrix]
    headers: Mapping[str, int]
    selected_history: tuple[str, ...] = ()

    @classmethod
    def initial(cls, matrices: Mapping[str, CellMatrix]) -> "InterpreterState":
        copied = {name: copy.deepcopy(list(m)) for name, m in matrices.items()}
        active = next(iter(copied))
        return cls(
            active_sheet=active,
            matrices=copied,
            headers=build_header_cache(copied[active]),
        )

    @property
    def matrix(self) -> CellMatrix:
        return self.matrices[self.active_sheet]

    def with_matrix(self, matrix: CellMatrix) -> "InterpreterState":
        """New state with the active sheet replaced and headers re-derived."""
        matrices = dict(self.matrices)
        matrices[self.active_sheet] = matrix
        return replace(self, matrices=matrices, headers=build_header_cache(matrix))

    def select(self, sheet: str) -> "InterpreterState":
        return replace(
            self,
            active_sheet=sheet,
            headers=build_header_cache(self.matrices[sheet]),
            selected_history=self.selected_history + (sheet,),
        )


@dataclass
class RuleOutcome:
    state: InterpreterState
    description: str
    warnings: list[str] = field(default_factory=list)
    abort: bool = False


def _normalize_header(value) -> str:
    return cell_text(value).strip().lower()


# ---------------------------------------------------------------------------
# Rule handlers
# ---------------------------------------------------------------------------


def _apply_select_worksheet(state: InterpreterState, rule: SelectWorksheetRule) -> RuleOutcome:
    params = rule.params
    names = list(state.matrices)
    target: Optional[str] = None
    warnings: list[str] = []

    if params.identifier_type == "name":
        if params.value in state.matrices:
            target = params.value
    elif params.identifier_type == "index":
        try:
            index = int(params.value.strip())
        except ValueError:
            index = -1
        if 0 <= index < len(names):
            target = names[index]
    elif params.identifier_type == "pattern":
        try:
            regex = re.compile(params.value, re.IGNORECASE)
        except re.error as e:
            warnings.append(f'Invalid worksheet pattern "{params.value}": {e}')
            regex = None
        if regex is not None:
            target = next((name for name in names if regex.search(name)), None)

    if target is None:
        warnings.append(
            f'No worksheet matches {params.identifier_type} "{params.value}"; '
            f'keeping "{state.active_sheet}" (available: {", ".join(names)})'
        )
        return RuleOutcome(
            state, f'Worksheet selection skipped, still on "{state.active_sheet}"', warnings
        )

    return RuleOutcome(state.select(target), f'Selected worksheet "{target}"', warnings)


def _apply_validate_columns(state: InterpreterState, rule: ValidateColumnsRule) -> RuleOutcome:
    params = rule.params
    actual = header_width(state.matrix)
    if actual == params.expected_count:
        return RuleOutcome(state, f"Validated column count: {actual} column(s)")

    message = f"Column count mismatch: expected {params.expected_count}, found {actual}"
    if params.on_failure == "stop":
        return RuleOutcome(state, message, [message], abort=True)
    if params.on_failure == "notify":
        logger.warning(f"{message} in worksheet '{state.active_sheet}' (rule {rule.id})")
    return RuleOutcome(
        state, f"Validated column count ({params.on_failure} on mismatch): {message}", [message]
    )


def _apply_unmerge_and_fill(state: InterpreterState, rule: UnmergeAndFillRule) -> RuleOutcome:
    params = rule.params
    columns, warnings = resolve_columns(params.columns, state.headers, matrix_width(state.matrix))
    rows = [list(r) for r in state.matrix]
    order = range(len(rows)) if params.direction == "down" else range(len(rows) - 1, -1, -1)

    filled = 0
    for col in columns:
        carry = None
        for i in order:
            row = rows[i]
            value = get_cell(row, col)
            if not is_blank(value):
                carry = value
            elif carry is not None and i > 0:
                if len(row) <= col:
                    row.extend([None] * (col + 1 - len(row)))
                row[col] = carry
                filled += 1

    description = (
        f"Filled {filled} empty cell(s) {params.direction} in {len(columns)} column(s)"
    )
    return RuleOutcome(state.with_matrix(rows), description, warnings)


def _row_matcher(
    condition: RowCondition, state: InterpreterState
) -> tuple[Optional[Callable[[list], bool]], list[str]]:
    """Build a predicate for a DELETE_ROWS condition, or None if nothing can match."""
    warnings: list[str] = []
    column: Optional[int] = None
    if condition.column:
        indices, warnings = resolve_columns([condition.column], state.headers, matrix_width(state.matrix))
        if not indices:
            return None, warnings
        column = indices[0]

    def cells(row: list) -> list:
        return [get_cell(row, column)] if column is not None else list(row)

    if condition.type == "empty":
        if column is not None:
            return (lambda row: is_blank(get_cell(row, column))), warnings
        return (lambda row: all(is_blank(v) for v in row)), warnings

    if condition.type == "contains":
        needle = condition.value
        return (lambda row: any(needle in cell_text(v) for v in cells(row))), warnings

    try:
        regex = re.compile(condition.value, re.IGNORECASE)
    except re.error as e:
        warnings.append(f'Invalid row pattern "{condition.value}": {e}')
        return None, warnings
    return (lambda row: any(regex.search(cell_text(v)) for v in cells(row))), warnings


def _apply_delete_rows(state: InterpreterState, rule: DeleteRowsRule) -> RuleOutcome:
    params = rule.params
    matrix = state.matrix

    if params.method == "rows":
        doomed = row_numbers_to_indices(params.rows, len(matrix))
        kept = [list(r) for i, r in enumerate(matrix) if i not in doomed]
        description = f"Deleted {len(doomed)} row(s) by row number"
        return RuleOutcome(state.with_matrix(kept), description)

    condition = params.condition
    matcher, warnings = _row_matcher(condition, state)
    if matcher is None or not matrix:
        return RuleOutcome(state, f"Deleted 0 row(s) matching {condition.type} condition", warnings)

    kept = [list(matrix[0])]
    removed = 0
    for row in matrix[1:]:
        if matcher(row):
            removed += 1
        else:
            kept.append(list(row))

    target = f' in column "{condition.column}"' if condition.column else ""
    description = f"Deleted {removed} row(s) matching {condition.type} condition{target}"
    return RuleOutcome(state.with_matrix(kept), description, warnings)


def _apply_delete_columns(state: InterpreterState, rule: DeleteColumnsRule) -> RuleOutcome:
    indices, warnings = resolve_columns(rule.params.columns, state.headers, matrix_width(state.matrix))
    if not indices:
        return RuleOutcome(state, "Deleted 0 column(s)", warnings)

    descending = sorted(indices, reverse=True)
    rows = []
    for row in state.matrix:
        row = list(row)
        for idx in descending:
            if idx < len(row):
                del row[idx]
        rows.append(row)

    return RuleOutcome(state.with_matrix(rows), f"Deleted {len(indices)} column(s)", warnings)


def _append_rows(base: CellMatrix, sources: list[CellMatrix]) -> CellMatrix:
    rows = [list(r) for r in base]
    base_header = [_normalize_header(v) for v in base[0]] if base else None
    for src in sources:
        body = src
        if src and base_header is not None and [_normalize_header(v) for v in src[0]] == base_header:
            body = src[1:]
        rows.extend(list(r) for r in body)
    return rows


def _merge_rows(base: CellMatrix, sources: list[CellMatrix]) -> CellMatrix:
    header = list(base[0]) if base else []
    # stray cells in ragged base rows keep their own columns
    header += [None] * (matrix_width(base) - len(header))
    positions: dict[str, int] = {}
    for i, h in enumerate(header):
        key = _normalize_header(h)
        if key:
            positions.setdefault(key, i)
    rows = [list(r) for r in base[1:]]

    for src in sources:
        if not src:
            continue
        width = matrix_width(src)
        src_header = list(src[0]) + [None] * (width - len(src[0]))
        mapping: list[int] = []
        taken: set[int] = set()
        for h in src_header:
            key = _normalize_header(h)
            target = positions.get(key) if key else None
            if target is None or target in taken:
                header.append(h)
                target = len(header) - 1
                if key:
                    positions.setdefault(key, target)
            taken.add(target)
            mapping.append(target)

        for src_row in src[1:]:
            new_row = [None] * len(header)
            for j, value in enumerate(src_row):
                new_row[mapping[j]] = value
            rows.append(new_row)

    width = len(header)
    padded = [r + [None] * (width - len(r)) if len(r) < width else r for r in rows]
    return [header] + padded


def _apply_combine_worksheets(state: InterpreterState, rule: CombineWorksheetsRule) -> RuleOutcome:
    params = rule.params
    requested = list(params.source_sheets) or list(state.selected_history)
    warnings: list[str] = []
    if not requested:
        warnings.append("No source worksheets given and none previously selected")
        return RuleOutcome(state, "Combined 0 worksheet(s)", warnings)

    names: list[str] = []
    for name in requested:
        if name not in state.matrices:
            warnings.append(f'Worksheet "{name}" not found')
        elif name != state.active_sheet and name not in names:
            names.append(name)

    sources = [state.matrices[n] for n in names]
    if params.operation == "append":
        combined = _append_rows(state.matrix, sources)
    else:
        combined = _merge_rows(state.matrix, sources)

    description = (
        f'Combined {len(names)} worksheet(s) into "{state.active_sheet}" '
        f"using {params.operation}"
    )
    if names:
        description += f": {', '.join(names)}"
    return RuleOutcome(state.with_matrix(combined), description, warnings)


def _apply_evaluate_formulas(state: InterpreterState, rule: EvaluateFormulasRule) -> RuleOutcome:
    if rule.params.enabled:
        return RuleOutcome(state, "Formula evaluation enabled (computed values used)")
    return RuleOutcome(state, "Formula evaluation disabled (formula text kept)")


def _apply_replace_characters(state: InterpreterState, rule: ReplaceCharactersRule) -> RuleOutcome:
    rows = [list(r) for r in state.matrix]
    warnings: list[str] = []
    changed = 0

    for entry in rule.params.replacements:
        columns: Optional[set[int]] = None
        row_filter: Optional[set[int]] = None
        if entry.scope == "specific_columns":
            indices, col_warnings = resolve_columns(entry.columns or [], build_header_cache(rows), matrix_width(rows))
            warnings.extend(col_warnings)
            columns = set(indices)
        elif entry.scope == "specific_rows":
            row_filter = row_numbers_to_indices(entry.rows, len(rows))

        for i, row in enumerate(rows):
            if row_filter is not None and i not in row_filter:
                continue
            for j, value in enumerate(row):
                if value is None or (columns is not None and j not in columns):
                    continue
                text = cell_text(value)
                if entry.find not in text:
                    continue
                new_text = text.replace(entry.find, entry.replace)
                if new_text != text:
                    row[j] = new_text
                    changed += 1

    count = len(rule.params.replacements)
    description = f"Replaced characters in {changed} cell(s) using {count} replacement(s)"
    return RuleOutcome(state.with_matrix(rows), description, warnings)


_HANDLERS: dict[type, Callable[[InterpreterState, Rule], RuleOutcome]] = {
    SelectWorksheetRule: _apply_select_worksheet,
    ValidateColumnsRule: _apply_validate_columns,
    UnmergeAndFillRule: _apply_unmerge_and_fill,
    DeleteRowsRule: _apply_delete_rows,
    DeleteColumnsRule: _apply_delete_columns,
    CombineWorksheetsRule: _apply_combine_worksheets,
    EvaluateFormulasRule: _apply_evaluate_formulas,
    ReplaceCharactersRule: _apply_replace_characters,
}

_missing = [cls.__name__ for cls in get_args(get_args(Rule)[0]) if cls not in _HANDLERS]
if _missing:
    raise RuntimeError(f"No interpreter handler registered for: {', '.join(_missing)}")


def run(matrices: Mapping[str, CellMatrix], rules: Sequence[Rule]) -> ExecutionResult:
    """Apply rules in order to the given worksheets.

    The first worksheet key is active initially. Inputs are never mutated.
    """
    if not matrices:
        raise ValueError("At least one worksheet is required")

    state = InterpreterState.initial(matrices)
    applied: list[str] = []
    warnings: list[str] = []

    for position, rule in enumerate(rules, start=1):
        handler = _HANDLERS[type(rule)]
        outcome = handler(state, rule)
        warnings.extend(f"{rule.type} ({rule.id}): {w}" for w in outcome.warnings)

        if outcome.abort:
            skipped = len(rules) - position
            warnings.append(
                f"{rule.type} ({rule.id}): run aborted on column validation failure; "
                f"{skipped} remaining rule(s) skipped and output emptied"
            )
            logger.info(f"Rule {position}/{len(rules)} {rule.type} aborted the run")
            return ExecutionResult(
                matrix=[],
                applied_rule_descriptions=tuple(applied),
                warnings=tuple(warnings),
                row_count=0,
                col_count=0,
                aborted=True,
                active_sheet=state.active_sheet,
            )

        state = outcome.state
        applied.append(outcome.description)
        logger.debug(f"Rule {position}/{len(rules)} {rule.type}: {outcome.description}")

    matrix = state.matrix
    return ExecutionResult(
        matrix=matrix,
        applied_rule_descriptions=tuple(applied),
        warnings=tuple(warnings),
        row_count=len(matrix),
        col_count=matrix_width(matrix),
        active_sheet=state.active_sheet,
    )

