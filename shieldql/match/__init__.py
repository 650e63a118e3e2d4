"""shieldQL field-pattern matching."""
from shieldql.match.patterns import (
    CompiledPattern,
    PatternKind,
    PatternMatcher,
    PatternValidation,
    compile_pattern,
    enumerate_field_paths,
    extract_fields,
    match_first,
    matches,
    validate_pattern_syntax,
)

__all__ = [
    "CompiledPattern",
    "PatternKind",
    "PatternMatcher",
    "PatternValidation",
    "compile_pattern",
    "enumerate_field_paths",
    "extract_fields",
    "match_first",
    "matches",
    "validate_pattern_syntax",
]
