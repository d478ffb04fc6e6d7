"""Transformation rule definitions.

Each rule tag is its own pydantic model with a literal ``type`` field, and
``Rule`` is the discriminated union of all of them. Rules are parsed and
validated once, when a configuration is imported or created; the interpreter
only ever sees fully typed rules.

Wire format is camelCase (``expectedCount``, ``onFailure``, ...). A few
legacy parameter names written by older configurations are also accepted
(``numOfColumns``, ``fillDirection`` and ``type`` for the worksheet
identifier kind).
"""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, model_validator


class _Params(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class SelectWorksheetParams(_Params):
    identifier_type: Literal["name", "pattern", "index"] = Field(
        validation_alias=AliasChoices("identifierType", "type", "identifier_type"),
        serialization_alias="identifierType",
    )
    value: str


class ValidateColumnsParams(_Params):
    expected_count: int = Field(
        ge=0,
        validation_alias=AliasChoices("expectedCount", "numOfColumns", "expected_count"),
        serialization_alias="expectedCount",
    )
    on_failure: Literal["stop", "notify", "continue"] = Field(
        validation_alias=AliasChoices("onFailure", "on_failure"),
        serialization_alias="onFailure",
    )


class UnmergeAndFillParams(_Params):
    columns: list[str]
    direction: Literal["up", "down"] = Field(
        default="down",
        validation_alias=AliasChoices("direction", "fillDirection"),
    )


class RowCondition(_Params):
    type: Literal["empty", "contains", "pattern"]
    column: Optional[str] = None
    value: Optional[str] = None

    @model_validator(mode="after")
    def _value_required(self):
        if self.type in ("contains", "pattern") and not self.value:
            raise ValueError(f"condition type '{self.type}' requires a non-empty value")
        return self


class DeleteRowsParams(_Params):
    method: Literal["rows", "condition"] = "condition"
    rows: Optional[list[Annotated[int, Field(ge=1)]]] = None
    condition: Optional[RowCondition] = None

    @model_validator(mode="after")
    def _method_matches_payload(self):
        if self.method == "rows" and self.rows is None:
            raise ValueError("method 'rows' requires a 'rows' list")
        if self.method == "condition" and self.condition is None:
            raise ValueError("method 'condition' requires a 'condition'")
        return self


class DeleteColumnsParams(_Params):
    columns: list[str]


class CombineWorksheetsParams(_Params):
    source_sheets: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("sourceSheets", "source_sheets"),
        serialization_alias="sourceSheets",
    )
    operation: Literal["append", "merge"]


class EvaluateFormulasParams(_Params):
    enabled: bool


class Replacement(_Params):
    find: str = Field(min_length=1)
    replace: str = ""
    scope: Literal["all", "specific_columns", "specific_rows"] = "all"
    columns: Optional[list[str]] = None
    rows: Optional[list[Annotated[int, Field(ge=1)]]] = None

    @model_validator(mode="after")
    def _scope_targets(self):
        if self.scope == "specific_columns" and not self.columns:
            raise ValueError("scope 'specific_columns' requires a 'columns' list")
        if self.scope == "specific_rows" and not self.rows:
            raise ValueError("scope 'specific_rows' requires a 'rows' list")
        return self


class ReplaceCharactersParams(_Params):
    replacements: list[Replacement]


class _Rule(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)


class SelectWorksheetRule(_Rule):
    type: Literal["SELECT_WORKSHEET"] = "SELECT_WORKSHEET"
    params: SelectWorksheetParams


class ValidateColumnsRule(_Rule):
    type: Literal["VALIDATE_COLUMNS"] = "VALIDATE_COLUMNS"
    params: ValidateColumnsParams


class UnmergeAndFillRule(_Rule):
    type: Literal["UNMERGE_AND_FILL"] = "UNMERGE_AND_FILL"
    params: UnmergeAndFillParams


class DeleteRowsRule(_Rule):
    type: Literal["DELETE_ROWS"] = "DELETE_ROWS"
    params: DeleteRowsParams


class DeleteColumnsRule(_Rule):
    type: Literal["DELETE_COLUMNS"] = "DELETE_COLUMNS"
    params: DeleteColumnsParams


class CombineWorksheetsRule(_Rule):
    type: Literal["COMBINE_WORKSHEETS"] = "COMBINE_WORKSHEETS"
    params: CombineWorksheetsParams


class EvaluateFormulasRule(_Rule):
    type: Literal["EVALUATE_FORMULAS"] = "EVALUATE_FORMULAS"
    params: EvaluateFormulasParams


class ReplaceCharactersRule(_Rule):
    type: Literal["REPLACE_CHARACTERS"] = "REPLACE_CHARACTERS"
    params: ReplaceCharactersParams


RULE_TYPES: tuple[type[_Rule], ...] = (
    SelectWorksheetRule,
    ValidateColumnsRule,
    UnmergeAndFillRule,
    DeleteRowsRule,
    DeleteColumnsRule,
    CombineWorksheetsRule,
    EvaluateFormulasRule,
    ReplaceCharactersRule,
)

Rule = Annotated[
    Union[
        SelectWorksheetRule,
        ValidateColumnsRule,
        UnmergeAndFillRule,
        DeleteRowsRule,
        DeleteColumnsRule,
        CombineWorksheetsRule,
        EvaluateFormulasRule,
        ReplaceCharactersRule,
    ],
    Field(discriminator="type"),
]

RULE_TAGS: tuple[str, ...] = tuple(cls.model_fields["type"].default for cls in RULE_TYPES)

_rule_list_adapter = TypeAdapter(list[Rule])


def parse_rules(raw_rules: list[Any]) -> list[Rule]:
    """Validate raw rule dicts into typed rules.

    Raises pydantic.ValidationError on the first malformed configuration.
    """
    return _rule_list_adapter.validate_python(raw_rules)


def dump_rules(rules: list[Rule]) -> list[dict[str, Any]]:
    """Serialize typed rules back to their camelCase wire form."""
    return _rule_list_adapter.dump_python(rules, by_alias=True, exclude_none=True)


def formula_evaluation_requested(rules: list[Rule]) -> bool:
    """Whether the reader should return cached formula results.

    Defaults to True; the last EVALUATE_FORMULAS rule in the list wins.
    """
    enabled = True
    for rule in rules:
        if isinstance(rule, EvaluateFormulasRule):
            enabled = rule.params.enabled
    return enabled
