"""
toolmount.core.tools.validator - Handler Validator

Static scan of handler source text before it is persisted or executed.

Two passes:
- validate_handler(): fixed blacklist of unsafe constructs plus a syntax
  check. Any hit raises ValidationError naming the matched pattern.
  All-or-nothing: there is no warnings-only mode at creation time.
- scan_security_warnings(): risky-but-allowed constructs, reported next to
  execution results as advisory signal. Never fails a call.

This is a best-effort defense layer, not a security boundary. The sandbox
(worker process killed at the deadline, restricted builtins, module
facades, data access served by the parent) is what contains a handler at
run time.
"""

import ast
import logging
import re
from typing import NamedTuple

from toolmount.exceptions import ValidationError

logger = logging.getLogger(__name__)

# Name of the function a handler body is compiled into
HANDLER_FUNCTION_NAME = "__toolmount_handler__"


class SourcePattern(NamedTuple):
    """A named regex applied to handler source text."""

    name: str
    regex: re.Pattern[str]


def _p(name: str, pattern: str) -> SourcePattern:
    return SourcePattern(name, re.compile(pattern, re.MULTILINE))


# Ordered: the first match is the one reported
BLOCKED_PATTERNS: tuple[SourcePattern, ...] = (
    # Dynamic code evaluation
    _p("eval()", r"\beval\s*\("),
    _p("exec()", r"\bexec\s*\("),
    _p("compile()", r"(?<![\w.])compile\s*\("),
    # Dynamic function construction
    _p("FunctionType", r"\bFunctionType\b"),
    _p("CodeType", r"\bCodeType\b"),
    _p("__code__", r"\b__code__\b"),
    # Dynamic module loading
    _p("__import__", r"\b__import__\b"),
    _p("importlib", r"\bimportlib\b"),
    _p("import statement", r"^\s*(?:from\s+[\w.]+\s+)?import\s+[\w.]"),
    # Process termination
    _p("sys.exit", r"\bsys\s*\.\s*exit\b"),
    _p("os._exit", r"\bos\s*\.\s*_exit\b"),
    _p("os.kill", r"\bos\s*\.\s*(?:kill|killpg|abort)\b"),
    _p("exit()", r"(?<![\w.])(?:exit|quit)\s*\("),
    # Subprocess spawning
    _p("subprocess", r"\bsubprocess\b"),
    _p("os.system", r"\bos\s*\.\s*(?:system|popen)\b"),
    _p("os.spawn", r"\bos\s*\.\s*(?:spawn\w*|exec\w*|fork\w*|posix_spawn\w*)\b"),
    _p("pty", r"\bpty\s*\.\s*\w+"),
    # Destructive filesystem calls
    _p("os.remove", r"\bos\s*\.\s*(?:remove|unlink|rmdir|removedirs|truncate)\b"),
    _p("shutil.rmtree", r"\bshutil\s*\.\s*(?:rmtree|move)\b"),
    _p("Path.unlink", r"\.\s*(?:unlink|rmdir)\s*\("),
    _p("Path.write", r"\.\s*(?:write_text|write_bytes)\s*\("),
    # Execution environment identity / file-path metadata
    _p("__file__", r"\b__file__\b"),
    _p("__builtins__", r"\b__builtins__\b"),
    _p("__globals__", r"\b__globals__\b"),
    _p("__spec__", r"\b__(?:spec|loader)__\b"),
    _p("os.environ", r"\bos\s*\.\s*(?:environ|getenv|getcwd|getpid)\b"),
    # Object-graph and frame introspection
    _p("__subclasses__", r"\b__subclasses__\b"),
    _p("__mro__", r"\b__(?:mro|bases?)__\b"),
    _p("__getattribute__", r"\b__getattr(?:ibute)?__\b"),
    _p("__dict__", r"\b__dict__\b"),
    _p("function internals", r"\b__(?:closure|self|func|wrapped|traceback)__\b"),
    _p(
        "frame access",
        r"\b(?:f_back|f_globals|f_locals|f_builtins|tb_frame|tb_next"
        r"|gi_frame|gi_code|gi_yieldfrom|cr_frame|cr_code|cr_await|ag_frame|ag_code|ag_await)\b",
    ),
)

# Reported, never blocking
WARNING_PATTERNS: tuple[SourcePattern, ...] = (
    _p("Potential infinite loop (while True)", r"\bwhile\s+(?:True|1)\s*:"),
    _p("Reflection via getattr/setattr/hasattr", r"\b(?:getattr|setattr|delattr|hasattr)\s*\("),
    _p("Namespace access via globals/locals/vars", r"\b(?:globals|locals|vars)\s*\(\s*\)"),
    _p("Dunder attribute access", r"\.\s*__\w+__"),
    _p("Blocking sleep", r"\btime\s*\.\s*sleep\s*\("),
    _p("File access via open()", r"(?<![\w.])open\s*\("),
)


def wrap_handler_source(source: str) -> str:
    """Wrap a handler body into the async function it is compiled as.

    The body keeps its own indentation; line N of the body is line N + 1
    of the wrapped source.
    """
    body = source.strip("\n") or "pass"
    indented = "\n".join(f"    {line}" if line.strip() else "" for line in body.splitlines())
    return f"async def {HANDLER_FUNCTION_NAME}(input, context):\n{indented}\n"


def find_blocked_pattern(source: str) -> str | None:
    """Return the name of the first blacklisted pattern in source, if any."""
    for pattern in BLOCKED_PATTERNS:
        if pattern.regex.search(source):
            return pattern.name
    return None


def validate_handler(source: str) -> None:
    """
    Validate handler source text.

    Args:
        source: Python source of the handler body

    Raises:
        ValidationError: naming the matched pattern, or "syntax error"

    Example:
        >>> validate_handler("return {'ok': True}")
        >>> validate_handler("return eval(input['expr'])")
        Traceback (most recent call last):
        ...
        toolmount.exceptions.ValidationError: Handler contains blocked pattern: eval()
    """
    if not isinstance(source, str) or not source.strip():
        raise ValidationError("Handler cannot be empty", pattern="empty handler")

    blocked = find_blocked_pattern(source)
    if blocked is not None:
        logger.warning(
            f"Handler rejected: blocked pattern {blocked}",
            extra={"pattern": blocked},
        )
        raise ValidationError(
            f"Handler contains blocked pattern: {blocked}",
            pattern=blocked,
        )

    try:
        ast.parse(wrap_handler_source(source))
    except SyntaxError as e:
        # Report body-relative line numbers
        line = (e.lineno or 1) - 1
        raise ValidationError(
            f"Handler has a syntax error at line {max(line, 1)}: {e.msg}",
            pattern="syntax error",
        ) from e


def scan_security_warnings(source: str) -> list[str]:
    """Return advisory warnings for risky-but-allowed constructs."""
    return [pattern.name for pattern in WARNING_PATTERNS if pattern.regex.search(source)]


__all__ = [
    "BLOCKED_PATTERNS",
    "HANDLER_FUNCTION_NAME",
    "WARNING_PATTERNS",
    "SourcePattern",
    "find_blocked_pattern",
    "scan_security_warnings",
    "validate_handler",
    "wrap_handler_source",
]
