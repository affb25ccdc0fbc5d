"""
toolmount.core.tools.sandbox - Handler Sandbox

Runs one handler invocation against a deliberately small capability surface
with a hard deadline.

Approach: one short-lived worker process per call (see worker.py). The
parent side lives here:
- Spawns ``python -m toolmount.core.tools.worker`` with a minimal
  environment (no inherited secrets such as DATABASE_URL)
- Sends the job as one JSON line; the worker compiles the handler and
  reports ready, which starts the deadline
- Serves ``context.db`` requests from the worker against the real, scoped
  data access on this loop; the worker never sees a session factory
- Kills the process when the deadline passes, whatever the handler is
  doing (a C call holding the GIL, a regex backtracking, a swallowed
  exception)

Capability surface when sandboxed (worker side):
- input: the validated argument dict
- context.db: get/put/delete/find/count forwarded to the parent
- context.utils: read-only utility library
- Whitelisted builtins plus read-only facades over json, math, re,
  datetime and decimal that hold only selected members, never the modules
"""

import asyncio
import builtins
import collections
import datetime
import decimal
import hashlib
import json
import logging
import math
import os
import re
import secrets
import sys
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from types import CodeType, MappingProxyType
from typing import Any, Protocol
from uuid import UUID

from toolmount.exceptions import ExecutionError, ExecutionTimeoutError, HandlerError

from .validator import HANDLER_FUNCTION_NAME, wrap_handler_source

logger = logging.getLogger(__name__)

# Captured handler output (print / context.log) goes here
handler_logger = logging.getLogger("toolmount.handlers")

HandlerFunction = Callable[[dict[str, Any], "ExecutionContext"], Awaitable[Any]]

WORKER_MODULE = "toolmount.core.tools.worker"

# Operations a worker may request on context.db
DATA_OPERATIONS = frozenset({"get", "put", "delete", "find", "count"})

# Builtins a sandboxed handler may use
SAFE_BUILTIN_NAMES: tuple[str, ...] = (
    # Constants and types
    "None",
    "True",
    "False",
    "bool",
    "int",
    "float",
    "complex",
    "str",
    "bytes",
    "list",
    "tuple",
    "dict",
    "set",
    "frozenset",
    "range",
    "slice",
    "object",
    # Functions
    "abs",
    "all",
    "any",
    "ascii",
    "bin",
    "callable",
    "chr",
    "divmod",
    "enumerate",
    "filter",
    "format",
    "hash",
    "hex",
    "id",
    "isinstance",
    "issubclass",
    "iter",
    "len",
    "map",
    "max",
    "min",
    "next",
    "oct",
    "ord",
    "pow",
    "repr",
    "reversed",
    "round",
    "sorted",
    "sum",
    "zip",
    "aiter",
    "anext",
    # Exceptions handlers may raise or catch
    "Exception",
    "ArithmeticError",
    "AssertionError",
    "AttributeError",
    "IndexError",
    "KeyError",
    "LookupError",
    "NotImplementedError",
    "OverflowError",
    "RuntimeError",
    "StopIteration",
    "StopAsyncIteration",
    "TypeError",
    "ValueError",
    "ZeroDivisionError",
)


# ============================================================================
# Module facades
# ============================================================================


class ModuleFacade:
    """
    Read-only stand-in for a module that exposes only selected members.

    Handlers get these instead of module objects, so nothing reachable from
    ``json`` or ``re`` leads back to ``sys``, ``os`` or ``open``.
    """

    __slots__ = ("_facade_name", "_members")

    def __init__(self, name: str, members: dict[str, Any]) -> None:
        object.__setattr__(self, "_facade_name", name)
        object.__setattr__(self, "_members", MappingProxyType(dict(members)))

    def __getattr__(self, name: str) -> Any:
        try:
            return self._members[name]
        except KeyError:
            raise AttributeError(f"'{self._facade_name}' has no attribute '{name}'") from None

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError(f"'{self._facade_name}' is read-only")

    def __delattr__(self, name: str) -> None:
        raise AttributeError(f"'{self._facade_name}' is read-only")

    def __dir__(self) -> list[str]:
        return sorted(self._members)

    def __repr__(self) -> str:
        return f"<module facade '{self._facade_name}'>"


def _members(module: Any, names: Iterable[str]) -> dict[str, Any]:
    return {name: getattr(module, name) for name in names if hasattr(module, name)}


SAFE_MODULES: MappingProxyType[str, ModuleFacade] = MappingProxyType(
    {
        "json": ModuleFacade("json", _members(json, ("dumps", "loads", "JSONDecodeError"))),
        "math": ModuleFacade(
            "math", _members(math, (n for n in dir(math) if not n.startswith("_")))
        ),
        "re": ModuleFacade(
            "re",
            _members(
                re,
                (
                    "compile",
                    "escape",
                    "findall",
                    "finditer",
                    "fullmatch",
                    "match",
                    "search",
                    "split",
                    "sub",
                    "subn",
                    "error",
                    "A",
                    "ASCII",
                    "I",
                    "IGNORECASE",
                    "M",
                    "MULTILINE",
                    "S",
                    "DOTALL",
                    "X",
                    "VERBOSE",
                ),
            ),
        ),
        "datetime": ModuleFacade(
            "datetime",
            _members(
                datetime,
                ("date", "datetime", "time", "timedelta", "timezone", "UTC", "MINYEAR", "MAXYEAR"),
            ),
        ),
        "decimal": ModuleFacade(
            "decimal",
            _members(
                decimal,
                (
                    "Decimal",
                    "InvalidOperation",
                    "DivisionByZero",
                    "localcontext",
                    "ROUND_CEILING",
                    "ROUND_DOWN",
                    "ROUND_FLOOR",
                    "ROUND_HALF_DOWN",
                    "ROUND_HALF_EVEN",
                    "ROUND_HALF_UP",
                    "ROUND_UP",
                ),
            ),
        ),
    }
)


# ============================================================================
# Context
# ============================================================================


class DataAccess(Protocol):
    """Scoped data handle exposed to handlers as ``context.db``."""

    async def get(self, collection: str, key: str) -> Any: ...

    async def put(self, collection: str, key: str, value: Any) -> Any: ...

    async def delete(self, collection: str, key: str) -> bool: ...

    async def find(self, collection: str, limit: int = 100) -> list[dict[str, Any]]: ...

    async def count(self, collection: str) -> int: ...


_CURRENCY_SYMBOLS = {"USD": "$", "EUR": "€", "GBP": "£", "JPY": "¥", "CAD": "CA$", "AUD": "A$"}
_ID_ALPHABET = "useandom-26T198340PX75pxJACKVERYMINDBUSHWOLF_GQZbfghjklqvwyzrict"


class ToolUtils:
    """Read-only utility library exposed to handlers as ``context.utils``."""

    __slots__ = ()

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("context.utils is read-only")

    def __delattr__(self, name: str) -> None:
        raise AttributeError("context.utils is read-only")

    @staticmethod
    def format_currency(cents: int | float, currency: str = "USD") -> str:
        """Format an amount in minor units, e.g. 123456 -> '$1,234.56'."""
        amount = decimal.Decimal(str(cents)) / 100
        sign = "-" if amount < 0 else ""
        formatted = f"{abs(amount):,.2f}"
        symbol = _CURRENCY_SYMBOLS.get(currency.upper())
        if symbol is None:
            return f"{sign}{formatted} {currency.upper()}"
        return f"{sign}{symbol}{formatted}"

    @staticmethod
    def format_date(value: datetime.datetime | datetime.date | str) -> str:
        """Medium date with short time, e.g. 'Jan 5, 2026, 3:04 PM'."""
        if isinstance(value, str):
            value = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
        if not isinstance(value, datetime.datetime):
            return f"{value:%b} {value.day}, {value.year}"
        hour = value.hour % 12 or 12
        meridiem = "AM" if value.hour < 12 else "PM"
        return f"{value:%b} {value.day}, {value.year}, {hour}:{value.minute:02d} {meridiem}"

    @staticmethod
    def generate_id(size: int = 21) -> str:
        """URL-safe random id."""
        return "".join(secrets.choice(_ID_ALPHABET) for _ in range(max(1, size)))

    @staticmethod
    def slugify(text: str) -> str:
        slug = re.sub(r"[^a-z0-9]+", "-", str(text).lower())
        return slug.strip("-")

    @staticmethod
    def now_iso() -> str:
        return datetime.datetime.now(datetime.UTC).isoformat()

    @staticmethod
    def to_json(value: Any) -> str:
        return json.dumps(value, default=str, sort_keys=True)

    @staticmethod
    def truncate(text: str, length: int) -> str:
        text = str(text)
        if length < 1 or len(text) <= length:
            return text
        return text[: max(0, length - 3)] + "..."


TOOL_UTILS = ToolUtils()


@dataclass(frozen=True)
class ExecutionContext:
    """Everything a handler can reach besides its input.

    In the parent ``logs`` collects the handler's output; in the worker
    ``on_log`` forwards each line to the parent instead.
    """

    tool_name: str
    tool_id: UUID | None = None
    db: DataAccess | None = None
    utils: ToolUtils = TOOL_UTILS
    agent_id: str | None = None
    user_id: str | None = None
    logs: list[str] = field(default_factory=list, repr=False)
    on_log: Callable[[str], None] | None = field(default=None, repr=False, compare=False)

    def log(self, *args: Any) -> None:
        """Capture console-style output from the handler."""
        message = " ".join(str(a) for a in args)
        if self.on_log is not None:
            self.on_log(message)
            return
        self.logs.append(message)
        handler_logger.info(f"[{self.tool_name}] {message}")


# ============================================================================
# Compilation
# ============================================================================


def handler_filename(name: str) -> str:
    """Code filename handler frames are compiled under."""
    return f"<primitive:{name}>"


def source_digest(source: str) -> str:
    """Short SHA-256 digest for PII-safe logging of handler text."""
    return hashlib.sha256(source.encode()).hexdigest()[:12]


@lru_cache(maxsize=256)
def _compile_cached(name: str, digest: str, source: str) -> CodeType:
    return compile(wrap_handler_source(source), handler_filename(name), "exec")


def compile_handler(
    name: str,
    source: str,
    *,
    sandboxed: bool = True,
    log: Callable[[str], None] | None = None,
) -> HandlerFunction:
    """
    Compile handler source into an async function.

    Compiled code objects are cached per (name, source digest); each call
    gets fresh globals so handlers can't share module-level state.

    Args:
        name: Primitive name (used for the code filename and log prefix)
        source: Handler body
        sandboxed: Restricted builtins and module facades if True
        log: Where print() output goes (defaults to the handlers logger)

    Raises:
        ExecutionError: If the source does not compile
    """
    try:
        code = _compile_cached(name, hashlib.sha256(source.encode()).hexdigest(), source)
    except SyntaxError as e:
        raise ExecutionError(f"Handler failed to compile: {e.msg}") from e

    namespace: dict[str, Any] = {"__name__": f"toolmount.primitives.{name}"}
    if sandboxed:
        safe = {n: getattr(builtins, n) for n in SAFE_BUILTIN_NAMES if hasattr(builtins, n)}
        safe["print"] = _handler_print(name, log)
        namespace["__builtins__"] = safe
        namespace.update(SAFE_MODULES)
    else:
        namespace["__builtins__"] = builtins.__dict__
    exec(code, namespace)
    return namespace[HANDLER_FUNCTION_NAME]


def _handler_print(name: str, log: Callable[[str], None] | None) -> Callable[..., None]:
    def _print(*args: Any, sep: str | None = " ", **kwargs: Any) -> None:
        message = (" " if sep is None else str(sep)).join(str(a) for a in args)
        if log is not None:
            log(message)
        else:
            handler_logger.info(f"[{name}] {message}")

    return _print


# ============================================================================
# Worker process (parent side)
# ============================================================================


def worker_environment() -> dict[str, str]:
    """Environment for worker processes: the import path and nothing else."""
    package_root = Path(__file__).resolve().parents[3]
    paths = [str(package_root)] + [p for p in sys.path if p and os.path.isdir(p)]
    env = {
        "PYTHONPATH": os.pathsep.join(dict.fromkeys(paths)),
        "PYTHONDONTWRITEBYTECODE": "1",
        "PYTHONIOENCODING": "utf-8",
    }
    if "SYSTEMROOT" in os.environ:
        env["SYSTEMROOT"] = os.environ["SYSTEMROOT"]
    return env


class SandboxWorker:
    """
    One handler invocation in a child process.

    The conversation is JSON lines: the job goes to the worker's stdin, the
    worker's stdout carries ready/log/db/result/error messages, and replies
    to db requests go back on stdin.
    """

    def __init__(self, context: ExecutionContext, *, max_message_bytes: int) -> None:
        self.context = context
        self.max_message_bytes = max_message_bytes
        self.process: asyncio.subprocess.Process | None = None
        self.running = False
        self._tasks: set[asyncio.Task[None]] = set()
        self._stderr_tail: collections.deque[str] = collections.deque(maxlen=20)

    async def start(self, job: dict[str, Any]) -> None:
        """Spawn the worker and hand it the job."""
        try:
            self.process = await asyncio.create_subprocess_exec(
                sys.executable,
                "-m",
                WORKER_MODULE,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=worker_environment(),
                limit=self.max_message_bytes,
            )
        except OSError as e:
            raise ExecutionError(f"Failed to start sandbox worker: {e}") from e

        self._spawn(self._drain_stderr())
        await self._send(job)

    async def wait_ready(self) -> None:
        """Wait for the worker to compile the handler."""
        message = await self._receive()
        if message.get("type") != "ready":
            raise self._failure(message)
        self.running = True

    async def communicate(self) -> Any:
        """Serve the worker until it reports a result (returned) or an error (raised)."""
        while True:
            message = await self._receive()
            kind = message.get("type")
            if kind == "log":
                self.context.log(message.get("message", ""))
            elif kind == "db":
                self._spawn(self._serve_data_request(message))
            elif kind == "result":
                return message.get("value")
            else:
                raise self._failure(message)

    async def close(self) -> None:
        """Kill the worker if it is still alive and reap it."""
        process = self.process
        if process is not None and process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass  # Already exited
            except OSError as e:
                logger.error(
                    f"Failed to kill sandbox worker: {e}",
                    extra={"tool_name": self.context.tool_name, "pid": process.pid},
                )
            try:
                await asyncio.wait_for(process.wait(), timeout=5.0)
            except TimeoutError:
                logger.error(
                    "Sandbox worker did not exit after SIGKILL",
                    extra={"tool_name": self.context.tool_name, "pid": process.pid},
                )

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _send(self, message: dict[str, Any]) -> None:
        assert self.process is not None and self.process.stdin is not None
        line = json.dumps(message, default=str, ensure_ascii=False) + "\n"
        self.process.stdin.write(line.encode("utf-8"))
        await self.process.stdin.drain()

    async def _receive(self) -> dict[str, Any]:
        assert self.process is not None and self.process.stdout is not None
        try:
            line = await self.process.stdout.readline()
            if not line:
                returncode = await self.process.wait()
                tail = " | ".join(self._stderr_tail)
                raise ExecutionError(
                    f"Sandbox worker exited unexpectedly (code {returncode})"
                    + (f": {tail}" if tail else "")
                )
            message = json.loads(line)
        except ValueError as e:
            # Over-long line or broken JSON
            raise ExecutionError(f"Malformed message from sandbox worker: {e}") from e
        if not isinstance(message, dict):
            raise ExecutionError("Malformed message from sandbox worker")
        return message

    def _failure(self, message: dict[str, Any]) -> ExecutionError:
        kind = message.get("type")
        if kind == "error":
            return HandlerError(
                str(message.get("error_type") or "Exception"), str(message.get("message") or "")
            )
        if kind == "failed":
            return ExecutionError(str(message.get("message") or "Handler failed"))
        return ExecutionError(f"Unexpected message from sandbox worker: {kind!r}")

    async def _serve_data_request(self, message: dict[str, Any]) -> None:
        request_id = message.get("id")
        op = message.get("op")
        args = message.get("args")
        db = self.context.db
        try:
            if db is None:
                raise ExecutionError("No data access is configured for this primitive")
            if op not in DATA_OPERATIONS or not isinstance(args, list):
                raise ExecutionError(f"context.db has no operation '{op}'")
            result = await getattr(db, op)(*args)
            reply: dict[str, Any] = {"id": request_id, "result": result}
        except Exception as e:
            # Raised again inside the handler by the worker
            reply = {"id": request_id, "error": {"type": type(e).__name__, "message": str(e)}}

        try:
            await self._send(reply)
        except (BrokenPipeError, ConnectionResetError):
            logger.debug(
                f"Sandbox worker for {self.context.tool_name} exited before reply {request_id}"
            )

    async def _drain_stderr(self) -> None:
        assert self.process is not None and self.process.stderr is not None
        while line := await self.process.stderr.readline():
            text = line.decode("utf-8", errors="replace").rstrip()
            self._stderr_tail.append(text)
            logger.debug(f"[worker:{self.context.tool_name}] {text}")


async def run_handler(
    source: str,
    input: dict[str, Any],
    context: ExecutionContext,
    *,
    timeout_ms: int,
    sandboxed: bool = True,
    startup_timeout_ms: int = 10_000,
    max_output_bytes: int = 1_048_576,
) -> Any:
    """
    Run handler source in a worker process under a hard deadline.

    The deadline starts once the worker has compiled the handler; when it
    passes the process is killed.

    Args:
        source: Handler body
        input: Validated input
        context: Execution context; ``context.db`` is served from this loop
        timeout_ms: Deadline in milliseconds
        sandboxed: Restricted builtins and module facades if True
        startup_timeout_ms: Time allowed for spawning and compiling
        max_output_bytes: Largest encoded result the worker may send back

    Returns:
        Whatever the handler returned, as plain JSON data

    Raises:
        ExecutionTimeoutError: Deadline exceeded (the worker was killed)
        HandlerError: Handler raised
        ExecutionError: Compile failure, oversized output, worker crash
    """
    job = {
        "name": context.tool_name,
        "source": source,
        "sandboxed": sandboxed,
        "input": input,
        "tool_id": str(context.tool_id) if context.tool_id else None,
        "agent_id": context.agent_id,
        "user_id": context.user_id,
        "has_db": context.db is not None,
        "max_output_bytes": max_output_bytes,
    }
    worker = SandboxWorker(context, max_message_bytes=2 * max_output_bytes + 65_536)

    try:
        async with asyncio.timeout(startup_timeout_ms / 1000) as deadline:
            await worker.start(job)
            await worker.wait_ready()
            deadline.reschedule(asyncio.get_running_loop().time() + timeout_ms / 1000)
            return await worker.communicate()
    except TimeoutError:
        if not worker.running:
            raise ExecutionError(
                f"Sandbox worker did not start within {startup_timeout_ms}ms"
            ) from None
        logger.warning(
            f"Primitive {context.tool_name} exceeded {timeout_ms}ms, killing worker",
            extra={"tool_name": context.tool_name, "timeout_ms": timeout_ms},
        )
        raise ExecutionTimeoutError(timeout_ms) from None
    finally:
        await worker.close()


def normalize_output(value: Any, max_bytes: int) -> Any:
    """
    Coerce handler output into plain JSON data and enforce the size cap.

    Raises:
        ExecutionError: If the output can't be encoded or is too large
    """
    try:
        encoded = json.dumps(value, default=str)
    except (TypeError, ValueError) as e:
        raise ExecutionError(f"Handler returned a non-serializable value: {e}") from e

    size = len(encoded.encode("utf-8"))
    if size > max_bytes:
        raise ExecutionError(f"Output exceeds maximum size of {max_bytes} bytes ({size} bytes)")
    return json.loads(encoded)


__all__ = [
    "DATA_OPERATIONS",
    "SAFE_BUILTIN_NAMES",
    "SAFE_MODULES",
    "TOOL_UTILS",
    "DataAccess",
    "ExecutionContext",
    "HandlerFunction",
    "ModuleFacade",
    "SandboxWorker",
    "ToolUtils",
    "compile_handler",
    "handler_filename",
    "normalize_output",
    "run_handler",
    "source_digest",
    "worker_environment",
]
