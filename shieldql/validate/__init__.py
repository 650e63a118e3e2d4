"""shieldQL identifier validation and name mapping."""
from shieldql.validate.identifiers import IdentifierValidator, is_valid_field_name

__all__ = ["IdentifierValidator", "is_valid_field_name"]
