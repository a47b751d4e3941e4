"""Validation outcome models returned by the generated form schema."""

from pydantic import BaseModel, Field


class FieldValidationError(BaseModel):
    """A single rule failure on one field."""

    link_id: str = Field(..., description="linkId of the failing field")
    label: str = Field(default="", description="Field label at validation time")
    rule: str = Field(..., description="Rule that failed, e.g. required, pattern, email")
    message: str = Field(..., description="Human-readable error message")


class ValidationResult(BaseModel):
    is_valid: bool = True
    errors: list[FieldValidationError] = Field(default_factory=list)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def invalid_fields(self) -> list[str]:
        seen: list[str] = []
        for error in self.errors:
            if error.link_id not in seen:
                seen.append(error.link_id)
        return seen

    def get_field_errors(self, link_id: str) -> list[FieldValidationError]:
        return [e for e in self.errors if e.link_id == link_id]

    def to_error_dict(self) -> dict[str, list[str]]:
        """Map each failing linkId to its messages, in rule order."""
        result: dict[str, list[str]] = {}
        for error in self.errors:
            result.setdefault(error.link_id, []).append(error.message)
        return result
