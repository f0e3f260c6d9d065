"""
Validation Result Models

The validator reports what it found as a list of issues instead of
stopping at the first one, so a caller gets every bad field at once.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from ledger.models.records import utc_now


class ValidationIssue(BaseModel):
    """A single validation issue found."""
    
    field: str = Field(
        ...,
        description="Wire (camelCase) name of the field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'out_of_range', 'unknown_reference')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        default="error",
        pattern="^(error|warning)$",
        description="Issue severity"
    )


class ValidationResult(BaseModel):
    """
    Result of the two-stage validation.
    
    Stage 1: Field validation (ranges, formats, shape rules)
    Stage 2: Reference validation (ids inside the payload resolve)
    """
    
    validated_at: datetime = Field(default_factory=utc_now)
    
    fields_valid: bool = Field(
        ...,
        description="Did field validation pass?"
    )
    references_valid: bool = Field(
        ...,
        description="Did reference validation pass? False when it was skipped"
    )
    
    issues: list[ValidationIssue] = Field(default_factory=list)
    
    @property
    def is_valid(self) -> bool:
        return self.fields_valid and self.references_valid
    
    @property
    def errors(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity == "error"]
    
    @property
    def warnings(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity == "warning"]
    
    def field_errors(self) -> list[dict[str, str]]:
        """Error issues in the ``{field, message}`` shape of error bodies."""
        return [{"field": i.field, "message": i.message} for i in self.errors]
    
    def first_error(self) -> Optional[ValidationIssue]:
        errors = self.errors
        return errors[0] if errors else None
