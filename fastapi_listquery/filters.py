"""Filter strategies for generic ``field=value`` / ``field[op]=value`` filters."""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from dateutil.parser import parse
from sqlalchemy import ColumnElement, Text, cast

from fastapi_listquery.models import FilterOperator

RawValue = Union[str, List[str]]

# Type alias for filter strategy functions
FilterStrategyFn = Callable[[ColumnElement[Any], RawValue, Optional[type]], Optional[Any]]


def column_python_type(column: ColumnElement[Any]) -> Optional[type]:
    """
    Get the Python type of a column, or None when the type does not declare one.

    Args:
        column: SQLAlchemy column element

    Returns:
        Optional[type]: Python type of the column or None
    """
    try:
        return getattr(column.type, "python_type", None)
    except (AttributeError, NotImplementedError):
        return None


def _coerce_value(column: ColumnElement[Any], raw: Any, pytype: Optional[type] = None) -> Any:
    """
    Coerce raw string value to column's Python type.

    Args:
        column: SQLAlchemy column element
        raw: Raw string value
        pytype: Optional pre-fetched python type (for performance)

    Returns:
        Any: Coerced value, or the raw value when it cannot be converted
    """
    if pytype is None:
        pytype = column_python_type(column)
    if pytype is None or not isinstance(raw, str) or isinstance(raw, pytype):
        return raw
    if pytype is bool:
        val = raw.strip().lower()
        if val in {"true", "1", "t", "yes", "y"}:
            return True
        if val in {"false", "0", "f", "no", "n"}:
            return False
        return raw
    if pytype is int:
        try:
            return int(raw)
        except ValueError:
            try:
                return int(float(raw))
            except ValueError:
                return raw
    if pytype is datetime:
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            try:
                return parse(raw)
            except (ValueError, OverflowError):
                return raw
    try:
        return pytype(raw)
    except (TypeError, ValueError):
        return raw


def _split_values(raw: RawValue) -> List[str]:
    """
    Split comma-separated values; lists are taken as already split.

    Args:
        raw: Raw string of comma-separated values, or a list of values

    Returns:
        List[str]: List of stripped values
    """
    if isinstance(raw, (list, tuple)):
        return [str(item).strip() for item in raw]
    return [item.strip() for item in str(raw).split(",")]


def contains_condition(column: ColumnElement[Any], term: str, cast_to_text: bool = False) -> Any:
    """
    Case-insensitive substring match, ``column ILIKE '%term%'``.

    Numeric columns must be cast to text first; pattern operators only
    apply to text. The term is always a bound parameter.

    Args:
        column: Column to match
        term: Substring to look for
        cast_to_text: Wrap the column in ``CAST(... AS TEXT)``

    Returns:
        Any: SQLAlchemy condition
    """
    if cast_to_text:
        column = cast(column, Text)
    pattern = f"%{term}%"
    return column.ilike(pattern)


# --- Strategy functions for each filter operator ---


def _strategy_eq(column: ColumnElement[Any], raw: RawValue, pytype: Optional[type]) -> Any:
    if isinstance(raw, list):
        return _strategy_in(column, raw, pytype)
    return column == _coerce_value(column, raw, pytype)


def _strategy_ne(column: ColumnElement[Any], raw: RawValue, pytype: Optional[type]) -> Any:
    return column != _coerce_value(column, raw, pytype)


def _strategy_gt(column: ColumnElement[Any], raw: RawValue, pytype: Optional[type]) -> Any:
    return column > _coerce_value(column, raw, pytype)


def _strategy_gte(column: ColumnElement[Any], raw: RawValue, pytype: Optional[type]) -> Any:
    return column >= _coerce_value(column, raw, pytype)


def _strategy_lt(column: ColumnElement[Any], raw: RawValue, pytype: Optional[type]) -> Any:
    return column < _coerce_value(column, raw, pytype)


def _strategy_lte(column: ColumnElement[Any], raw: RawValue, pytype: Optional[type]) -> Any:
    return column <= _coerce_value(column, raw, pytype)


def _strategy_like(column: ColumnElement[Any], raw: RawValue, pytype: Optional[type]) -> Any:
    return column.like(f"%{raw}%")


def _strategy_in(column: ColumnElement[Any], raw: RawValue, pytype: Optional[type]) -> Any:
    vals = [_coerce_value(column, v, pytype) for v in _split_values(raw)]
    return column.in_(vals)


# Strategy registry: maps FilterOperator -> handler function
FILTER_STRATEGIES: Dict[FilterOperator, FilterStrategyFn] = {
    FilterOperator.EQ: _strategy_eq,
    FilterOperator.NE: _strategy_ne,
    FilterOperator.GT: _strategy_gt,
    FilterOperator.GTE: _strategy_gte,
    FilterOperator.LT: _strategy_lt,
    FilterOperator.LTE: _strategy_lte,
    FilterOperator.LIKE: _strategy_like,
    FilterOperator.IN: _strategy_in,
}


def build_filter_condition(
    column: ColumnElement[Any],
    operator: Union[FilterOperator, str],
    raw: RawValue,
    pytype: Optional[type] = None,
) -> Optional[Any]:
    """
    Build a filter condition using strategy pattern dispatch.

    Args:
        column: Column to apply filter to
        operator: Filter operator
        raw: Raw value(s) from the query string
        pytype: Optional pre-fetched python type (for performance)

    Returns:
        Optional[Any]: SQLAlchemy condition or None for an unknown operator
    """
    try:
        operator = FilterOperator(operator)
    except ValueError:
        return None
    strategy = FILTER_STRATEGIES.get(operator)
    if strategy is None:
        return None
    if pytype is None:
        pytype = column_python_type(column)
    return strategy(column, raw, pytype)


def register_strategy(operator: FilterOperator, strategy: FilterStrategyFn) -> None:
    """
    Register a custom filter strategy for an operator.

    Args:
        operator: The FilterOperator to register for
        strategy: A callable with signature (column, raw_value, pytype) -> condition

    Example:
        def exact_eq(column, raw, pytype):
            return column == raw  # Skip type coercion

        register_strategy(FilterOperator.EQ, exact_eq)
    """
    FILTER_STRATEGIES[operator] = strategy
