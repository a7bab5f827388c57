from __future__ import annotations


class FacetdbPyError(Exception):
    pass


class FacetDefinitionError(ValueError):
    pass


class ConditionFailedError(FacetdbPyError):
    pass


class NotFoundError(FacetdbPyError):
    pass


class ValidationError(FacetdbPyError):
    pass


class UnsupportedOperatorError(ValidationError):
    def __init__(self, operator: object) -> None:
        super().__init__(f"Operator {operator} is not defined")
        self.operator = operator


class NoSuchIndexError(ValidationError):
    def __init__(self, index: str) -> None:
        super().__init__(f"index is not configured on this facet: {index}")
        self.index = index


class ItemNotProcessedError(FacetdbPyError):
    def __init__(self, *, operation: str) -> None:
        super().__init__(f"{operation}: item was not processed")
        self.operation = operation


class AwsError(FacetdbPyError):
    def __init__(self, *, code: str, message: str) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message
