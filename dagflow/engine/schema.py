"""
State Schema for the Workflow Engine.

The schema declares which fields the shared state may hold, their primitive
types and whether they must be present before a run starts. Validation is
delegated to pydantic models built once from the declaration: one model for
the initial state (required fields enforced) and one for node outputs
(every field optional).
"""

from typing import Any, Dict, Iterator, Mapping, Optional, Tuple, Type, Union
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType

from pydantic import (
    BaseModel,
    ConfigDict,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    ValidationError,
    create_model,
)

from dagflow.engine.errors import SchemaError


class FieldType(str, Enum):
    """Primitive types a state field can hold."""
    NUMBER = "number"
    STRING = "string"
    BOOLEAN = "boolean"


# StrictInt rejects bool, so True is never accepted as a number
_PYDANTIC_TYPES: Dict[FieldType, Any] = {
    FieldType.NUMBER: Union[StrictInt, StrictFloat],
    FieldType.STRING: StrictStr,
    FieldType.BOOLEAN: StrictBool,
}


@dataclass(frozen=True)
class FieldSpec:
    """Declaration of a single state field."""
    type: FieldType
    required: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "required": self.required}


def number(required: bool = False) -> FieldSpec:
    return FieldSpec(FieldType.NUMBER, required)


def string(required: bool = False) -> FieldSpec:
    return FieldSpec(FieldType.STRING, required)


def boolean(required: bool = False) -> FieldSpec:
    return FieldSpec(FieldType.BOOLEAN, required)


class StateSchema:
    """
    Immutable, ordered declaration of the shared state's shape.

    Usage:
        schema = StateSchema({
            "amount_usd": number(required=True),
            "rate": number(),
        })
        state = schema.validate({"amount_usd": 100})

    Absent optional fields stay absent in the validated state; they are
    never filled with a default, so "unset" and "zero" remain distinct.
    """

    def __init__(self, fields: Mapping[str, Union[FieldSpec, FieldType, str]], name: str = "State"):
        normalized: Dict[str, FieldSpec] = {}
        for field_name, spec in fields.items():
            if not field_name:
                raise ValueError("State field name cannot be empty")
            if not isinstance(spec, FieldSpec):
                spec = FieldSpec(FieldType(spec))
            normalized[field_name] = spec

        self.name = name
        self._fields = MappingProxyType(normalized)
        self._state_model = self._build_model(name, partial=False)
        self._partial_model = self._build_model(f"{name}Update", partial=True)

    def _build_model(self, model_name: str, partial: bool) -> Type[BaseModel]:
        definitions: Dict[str, Tuple[Any, Any]] = {}
        for field_name, spec in self._fields.items():
            annotation = _PYDANTIC_TYPES[spec.type]
            # Defaults are not validated, so an explicit None still fails
            default = ... if spec.required and not partial else None
            definitions[field_name] = (annotation, default)
        return create_model(
            model_name,
            __config__=ConfigDict(extra="forbid"),
            **definitions,
        )

    @property
    def fields(self) -> Mapping[str, FieldSpec]:
        return self._fields

    @property
    def required_fields(self) -> Tuple[str, ...]:
        return tuple(n for n, spec in self._fields.items() if spec.required)

    def __contains__(self, field_name: object) -> bool:
        return field_name in self._fields

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def validate(self, raw: Any) -> Dict[str, Any]:
        """
        Validate an initial state.

        Args:
            raw: Untyped key/value input

        Returns:
            A new dict holding only the fields present in the input

        Raises:
            SchemaError: naming the first missing, mistyped or undeclared field
        """
        return self._run_model(self._state_model, raw)

    def validate_partial(self, partial: Any) -> Dict[str, Any]:
        """Type-check a node's partial output; no field is required."""
        return self._run_model(self._partial_model, partial)

    def _run_model(self, model: Type[BaseModel], raw: Any) -> Dict[str, Any]:
        if not isinstance(raw, Mapping):
            raise SchemaError("<root>", f"expected a mapping, got {type(raw).__name__}")
        try:
            instance = model.model_validate(dict(raw))
        except ValidationError as e:
            raise _schema_error_from(e) from e
        return instance.model_dump(exclude_unset=True)

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        return {n: spec.to_dict() for n, spec in self._fields.items()}

    def __repr__(self) -> str:
        return f"StateSchema(name='{self.name}', fields={list(self._fields)})"


def _schema_error_from(error: ValidationError) -> SchemaError:
    first: Optional[Dict[str, Any]] = error.errors()[0] if error.errors() else None
    if first is None:
        return SchemaError("<root>", str(error))
    loc = first.get("loc") or ("<root>",)
    field_name = str(loc[0])
    if first.get("type") == "missing":
        reason = "required field is missing"
    elif first.get("type") == "extra_forbidden":
        reason = "field is not declared in the schema"
    else:
        reason = first.get("msg", "invalid value")
    return SchemaError(field_name, reason)
