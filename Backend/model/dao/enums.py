from enum import StrEnum


class ColumnType(StrEnum):
    TEXT = "text"
    LONG_TEXT = "long_text"
    NUMBER = "number"
    DATE = "date"
    DATETIME = "datetime"
    BOOLEAN = "boolean"
    SWITCH = "switch"
    EMAIL = "email"
    PHONE = "phone"
    URL = "url"
    SELECT = "select"
    MULTI_SELECT = "multi_select"
    CURRENCY = "currency"
    PERCENT = "percent"
    RATING = "rating"
    COLOR = "color"
    GEOLOCATION = "geolocation"
    RELATION = "relation"
    LOOKUP = "lookup"
    ROLLUP = "rollup"
    FORMULA = "formula"


class FilterOperator(StrEnum):
    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    CONTAINS = "contains"
    NOT_CONTAINS = "notContains"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    IS_EMPTY = "isEmpty"
    IS_NOT_EMPTY = "isNotEmpty"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    BETWEEN = "between"
    IN = "in"
    NOT_IN = "notIn"


class GroupOperator(StrEnum):
    AND = "AND"
    OR = "OR"


class SortDirection(StrEnum):
    ASC = "asc"
    DESC = "desc"


class Aggregation(StrEnum):
    COUNT = "COUNT"
    SUM = "SUM"
    AVG = "AVG"
    MIN = "MIN"
    MAX = "MAX"


class ViewType(StrEnum):
    TABLE = "table"
    KANBAN = "kanban"
    CALENDAR = "calendar"
    GALLERY = "gallery"


class FormulaResultType(StrEnum):
    NUMBER = "number"
    CURRENCY = "currency"
    TEXT = "text"
    DATE = "date"
    BOOLEAN = "boolean"
