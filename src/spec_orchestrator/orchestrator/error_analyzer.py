"""Deterministic failure classification for the self-correction loop."""

from __future__ import annotations

import re
from dataclasses import dataclass

from spec_orchestrator.orchestrator.models import (
    AnalysisContext,
    ErrorAnalysis,
    ErrorContext,
    ErrorType,
    SpecArtifact,
)

ROOT_CAUSE_MAX_CHARS = 200
TEST_VOCABULARY_BOOST = 50


@dataclass(frozen=True, slots=True)
class ErrorPattern:
    """One weighted classification rule."""

    pattern: re.Pattern[str]
    error_type: ErrorType
    weight: int


def _rule(pattern: str, error_type: ErrorType, weight: int) -> ErrorPattern:
    return ErrorPattern(re.compile(pattern, re.IGNORECASE), error_type, weight)


ERROR_PATTERNS: tuple[ErrorPattern, ...] = (
    _rule(r"property.*failed|counterexample", ErrorType.TEST_FAILURE, 50),
    _rule(r"test.*failed|assertion.*failed|expect.*to.*but", ErrorType.TEST_FAILURE, 45),
    _rule(r"assertionerror|falsifying example", ErrorType.TEST_FAILURE, 45),
    _rule(r"timeout|timed out|exceeded.*time", ErrorType.TIMEOUT_ERROR, 45),
    _rule(r"cannot find module|module not found", ErrorType.MISSING_DEPENDENCY, 50),
    _rule(r"modulenotfounderror|no module named|importerror", ErrorType.MISSING_DEPENDENCY, 50),
    _rule(r"enoent|no such file or directory", ErrorType.MISSING_DEPENDENCY, 45),
    _rule(r"invalid spec|malformed markdown|parse.*spec.*failed", ErrorType.INVALID_SPEC, 50),
    _rule(r"cannot read propert(y|ies).*of (undefined|null)", ErrorType.RUNTIME_ERROR, 50),
    _rule(r"typeerror:|referenceerror:|rangeerror:", ErrorType.RUNTIME_ERROR, 45),
    _rule(
        r"(attributeerror|keyerror|indexerror|valueerror|zerodivisionerror|nameerror):",
        ErrorType.RUNTIME_ERROR,
        45,
    ),
    _rule(r"typescript error|ts\d+:|error ts\d+", ErrorType.COMPILATION_ERROR, 50),
    _rule(r"syntaxerror|unexpected token|indentationerror", ErrorType.COMPILATION_ERROR, 45),
    _rule(r"cannot find name", ErrorType.COMPILATION_ERROR, 40),
)

# Equal scores resolve to the earliest category here. A compiler diagnostic
# code is the most specific signal, so it ranks first.
TIE_BREAK_PRECEDENCE: tuple[ErrorType, ...] = (
    ErrorType.COMPILATION_ERROR,
    ErrorType.TEST_FAILURE,
    ErrorType.TIMEOUT_ERROR,
    ErrorType.MISSING_DEPENDENCY,
    ErrorType.INVALID_SPEC,
    ErrorType.RUNTIME_ERROR,
)

TARGET_FILES: dict[ErrorType, SpecArtifact] = {
    ErrorType.TEST_FAILURE: SpecArtifact.DESIGN,
    ErrorType.COMPILATION_ERROR: SpecArtifact.DESIGN,
    ErrorType.RUNTIME_ERROR: SpecArtifact.TASKS,
    ErrorType.MISSING_DEPENDENCY: SpecArtifact.REQUIREMENTS,
    ErrorType.TIMEOUT_ERROR: SpecArtifact.TASKS,
    ErrorType.UNKNOWN_ERROR: SpecArtifact.TASKS,
}

SUGGESTIONS: dict[ErrorType, str] = {
    ErrorType.TEST_FAILURE: (
        "Review the property definition in design.md. The property may be too strict "
        "or the implementation may need adjustment."
    ),
    ErrorType.COMPILATION_ERROR: (
        "Add missing type definitions or interfaces to design.md. "
        "Ensure all referenced types are defined."
    ),
    ErrorType.RUNTIME_ERROR: (
        "Add implementation guidance to tasks.md. "
        "Include null checks, error handling, or validation steps."
    ),
    ErrorType.MISSING_DEPENDENCY: (
        "Add a requirement for the missing dependency in requirements.md. "
        "Specify the dependency and its purpose."
    ),
    ErrorType.INVALID_SPEC: (
        "Review and fix the specification file. "
        "Ensure all markdown syntax is correct and all references are valid."
    ),
    ErrorType.TIMEOUT_ERROR: (
        "Add performance optimization guidance to tasks.md. "
        "Consider adding caching, pagination, or async processing."
    ),
    ErrorType.UNKNOWN_ERROR: (
        "Add clarification or additional context to tasks.md to help resolve this issue."
    ),
}

_TEST_VOCABULARY = re.compile(r"test|assert|expect|property.*failed", re.IGNORECASE)
_PROPERTY_TEST = re.compile(
    r"counterexample|failed after \d+ tests|property.*failed|falsifying example",
    re.IGNORECASE,
)
_COUNTEREXAMPLE = re.compile(r"(?:counterexample|falsifying example):\s*(.+?)(?:\n|$)", re.IGNORECASE)
_FAILED_AFTER = re.compile(r"failed after (\d+) tests", re.IGNORECASE)
_ASSERTION = re.compile(
    r"expected.*to.*but|received.*expected|assertion failed:(.+)|assertionerror:\s*(.+)",
    re.IGNORECASE,
)
_TS_DIAGNOSTIC = re.compile(r"TS\d+:(.+?)(?:\n|$)", re.IGNORECASE)
_COMPILER_DIAGNOSTIC = re.compile(r"typescript error|\berror TS\d+|\bTS\d+:", re.IGNORECASE)
_SYNTAX_ERROR = re.compile(r"(?:syntaxerror|indentationerror):\s*(.+?)(?:\n|$)", re.IGNORECASE)
_UNDEFINED_NAME = re.compile(r"cannot find name ['\"](.+?)['\"]", re.IGNORECASE)
_RUNTIME_EXCEPTION = re.compile(
    r"(TypeError|ReferenceError|RangeError|AttributeError|KeyError|IndexError|ValueError|"
    r"ZeroDivisionError|NameError):\s*(.+?)(?:\n|$)",
)
_UNDEFINED_PROPERTY = re.compile(
    r"cannot read propert(?:y|ies) ['\"](.+?)['\"] of (undefined|null)",
    re.IGNORECASE,
)
_MISSING_MODULE = re.compile(r"(?:cannot find module|no module named) ['\"](.+?)['\"]", re.IGNORECASE)
_MISSING_FILE = re.compile(r"no such file or directory.*['\"](.+)['\"]", re.IGNORECASE)
_TIMEOUT_DURATION = re.compile(r"(?:timeout|timed out).*?(\d+)\s*(ms|seconds?|s\b)", re.IGNORECASE)
_JS_LOCATION = re.compile(r"at\s+(.+?)\s+\((.+?):(\d+):(\d+)\)")
_PY_LOCATION = re.compile(r'File "(.+?)", line (\d+)')
_PROPERTY_REF = re.compile(r"Property\s+(\d+)", re.IGNORECASE)
_REQUIREMENT_REF = re.compile(r"Requirements?\s+(\d+(?:\.\d+)*)", re.IGNORECASE)


def analyze_error(error: ErrorContext) -> ErrorAnalysis:
    """Classify a failure and point at the spec artifact most likely to fix it.

    Never raises: text that matches nothing is ``unknown_error``.
    """

    error_type = classify_error(error)
    return ErrorAnalysis(
        error_type=error_type,
        root_cause=extract_root_cause(error, error_type),
        target_file=target_file_for(error_type, error.error_message),
        confidence=calculate_confidence(error, error_type),
        context=extract_context(error, error_type),
    )


def score_error(error: ErrorContext) -> dict[ErrorType, int]:
    """Accumulated pattern weight per category; categories without a match are absent."""

    haystack = f"{error.error_message}\n{error.stack_trace}"
    scores: dict[ErrorType, int] = {}
    for rule in ERROR_PATTERNS:
        if rule.pattern.search(haystack):
            scores[rule.error_type] = scores.get(rule.error_type, 0) + rule.weight
    if error.failed_test and _TEST_VOCABULARY.search(error.error_message):
        scores[ErrorType.TEST_FAILURE] = (
            scores.get(ErrorType.TEST_FAILURE, 0) + TEST_VOCABULARY_BOOST
        )
    return scores


def classify_error(error: ErrorContext) -> ErrorType:
    # A compiler diagnostic code in the message wins over any stacked pattern weights.
    if _COMPILER_DIAGNOSTIC.search(error.error_message):
        return ErrorType.COMPILATION_ERROR
    scores = score_error(error)
    if not scores:
        return ErrorType.UNKNOWN_ERROR
    best = max(scores.values())
    for error_type in TIE_BREAK_PRECEDENCE:
        if scores.get(error_type) == best:
            return error_type
    return ErrorType.UNKNOWN_ERROR


def extract_root_cause(error: ErrorContext, error_type: ErrorType) -> str:  # noqa: PLR0911
    message = error.error_message
    if error_type is ErrorType.TEST_FAILURE:
        return _truncate(_test_failure_cause(error))
    if error_type is ErrorType.COMPILATION_ERROR:
        return _truncate(_compilation_cause(message))
    if error_type is ErrorType.RUNTIME_ERROR:
        return _truncate(_runtime_cause(message))
    if error_type is ErrorType.MISSING_DEPENDENCY:
        return _truncate(_missing_dependency_cause(message))
    if error_type is ErrorType.INVALID_SPEC:
        return _truncate(f"Invalid specification: {_first_line(message)}")
    if error_type is ErrorType.TIMEOUT_ERROR:
        match = _TIMEOUT_DURATION.search(message)
        if match:
            return _truncate(f"Operation timed out after {match.group(1)}{match.group(2)}")
        return _truncate(f"Operation timed out: {_first_line(message)}")
    return _truncate(_first_line(message) or "Unknown error")


def target_file_for(error_type: ErrorType, message: str) -> SpecArtifact:
    if error_type is ErrorType.INVALID_SPEC:
        if "requirement" in message.lower():
            return SpecArtifact.REQUIREMENTS
        return SpecArtifact.DESIGN
    return TARGET_FILES[error_type]


def calculate_confidence(error: ErrorContext, error_type: ErrorType) -> int:
    """Advisory confidence score in ``[0, 100]``."""

    confidence = 30
    if error.failed_test:
        confidence += 20
    if len(error.error_message) > 20:
        confidence += 10
    if error.stack_trace:
        confidence += 10
    if error_type is not ErrorType.UNKNOWN_ERROR:
        confidence += 20
    return min(confidence, 100)


def extract_context(error: ErrorContext, error_type: ErrorType) -> AnalysisContext:
    context = AnalysisContext(suggestion=SUGGESTIONS[error_type])
    js_location = _JS_LOCATION.search(error.stack_trace)
    if js_location:
        context.error_location = f"{js_location.group(2)}:{js_location.group(3)}"
    else:
        py_locations = _PY_LOCATION.findall(error.stack_trace)
        if py_locations:
            path, line = py_locations[-1]
            context.error_location = f"{path}:{line}"
    property_match = _PROPERTY_REF.search(error.error_message)
    if property_match:
        context.property_ref = f"Property {property_match.group(1)}"
    requirement_match = _REQUIREMENT_REF.search(error.error_message)
    if requirement_match:
        context.requirement_ref = requirement_match.group(1)
    return context


class ErrorAnalyzer:
    """Stateless analyzer handle for injection into the correction loop."""

    def analyze(self, error: ErrorContext) -> ErrorAnalysis:
        return analyze_error(error)


def _test_failure_cause(error: ErrorContext) -> str:
    message = error.error_message
    test_name = error.failed_test or "Unknown test"
    if _PROPERTY_TEST.search(message):
        counterexample = _COUNTEREXAMPLE.search(message)
        if counterexample:
            return f'Property test "{test_name}" found counterexample: {counterexample.group(1)}'
        failed_after = _FAILED_AFTER.search(message)
        if failed_after:
            return f'Property test "{test_name}" failed after {failed_after.group(1)} tests'
        return f'Property test "{test_name}" failed: {_first_line(message)}'
    assertion = _ASSERTION.search(message)
    if assertion:
        return f'Test "{test_name}" failed: {assertion.group(0)}'
    return f'Test "{test_name}" failed: {_first_line(message)}'


def _compilation_cause(message: str) -> str:
    diagnostic = _TS_DIAGNOSTIC.search(message)
    if diagnostic:
        return f"TypeScript compilation error: {diagnostic.group(1).strip()}"
    syntax = _SYNTAX_ERROR.search(message)
    if syntax:
        return f"Syntax error: {syntax.group(1).strip()}"
    undefined = _UNDEFINED_NAME.search(message)
    if undefined:
        return f'Undefined reference: "{undefined.group(1)}" is not defined'
    return f"Compilation error: {_first_line(message)}"


def _runtime_cause(message: str) -> str:
    exception = _RUNTIME_EXCEPTION.search(message)
    if exception:
        return f"Runtime {exception.group(1)}: {exception.group(2).strip()}"
    undefined = _UNDEFINED_PROPERTY.search(message)
    if undefined:
        return f"Attempted to access property '{undefined.group(1)}' of {undefined.group(2)}"
    return f"Runtime error: {_first_line(message)}"


def _missing_dependency_cause(message: str) -> str:
    module = _MISSING_MODULE.search(message)
    if module:
        return f'Missing module: "{module.group(1)}" is not installed or cannot be found'
    missing_file = _MISSING_FILE.search(message)
    if missing_file:
        return f'Missing file: "{missing_file.group(1)}" does not exist'
    return f"Missing dependency: {_first_line(message)}"


def _first_line(text: str) -> str:
    return text.split("\n", 1)[0].strip()


def _truncate(text: str) -> str:
    return text[:ROOT_CAUSE_MAX_CHARS]
