"""
Unit tests for toolmount.core.tools.sandbox - Handler Sandbox.

Execution tests spawn real worker processes.
"""

import asyncio
import datetime
import logging
import time
import types
from unittest.mock import AsyncMock

import pytest

from toolmount.core.tools.sandbox import (
    SAFE_MODULES,
    TOOL_UTILS,
    ExecutionContext,
    ModuleFacade,
    SandboxWorker,
    compile_handler,
    handler_filename,
    normalize_output,
    run_handler,
    source_digest,
    worker_environment,
)
from toolmount.exceptions import (
    ExecutionError,
    ExecutionTimeoutError,
    HandlerError,
    ValidationError,
)


async def run(
    source: str,
    input: dict | None = None,
    *,
    timeout_ms: int = 5000,
    sandboxed: bool = True,
    max_output_bytes: int = 1_048_576,
    **context_kwargs,
):
    context = ExecutionContext(tool_name="sample", **context_kwargs)
    return await run_handler(
        source,
        input or {},
        context,
        timeout_ms=timeout_ms,
        sandboxed=sandboxed,
        max_output_bytes=max_output_bytes,
    )


# ============================================================================
# Compilation
# ============================================================================


class TestCompileHandler:
    def test_filename(self):
        assert handler_filename("echo") == "<primitive:echo>"

    def test_source_digest_is_stable(self):
        assert source_digest("return 1") == source_digest("return 1")
        assert source_digest("return 1") != source_digest("return 2")
        assert len(source_digest("return 1")) == 12

    def test_compiles_to_coroutine_function(self):
        handler = compile_handler("sample", "return input")
        assert handler.__code__.co_filename == "<primitive:sample>"

    def test_syntax_error_raises_execution_error(self):
        with pytest.raises(ExecutionError):
            compile_handler("broken", "return (")

    def test_fresh_globals_per_compile(self):
        first = compile_handler("sample", "return 1")
        second = compile_handler("sample", "return 1")
        assert first.__globals__ is not second.__globals__

    def test_no_module_objects_in_sandboxed_globals(self):
        handler = compile_handler("sample", "return 1")
        namespace = handler.__globals__

        assert "open" not in namespace["__builtins__"]
        assert not any(isinstance(v, types.ModuleType) for v in namespace.values())
        assert not any(isinstance(v, types.ModuleType) for v in namespace["__builtins__"].values())

    async def test_print_goes_to_log_callback(self):
        lines: list[str] = []
        handler = compile_handler("sample", "print('a', 1, sep='-')\nreturn 2", log=lines.append)

        assert await handler({}, ExecutionContext(tool_name="sample")) == 2
        assert lines == ["a-1"]


# ============================================================================
# Module facades
# ============================================================================


class TestModuleFacades:
    @pytest.mark.parametrize(
        ("module", "attribute"),
        [
            ("json", "codecs"),
            ("json", "decoder"),
            ("json", "scanner"),
            ("re", "enum"),
            ("re", "_compiler"),
            ("re", "functools"),
            ("datetime", "sys"),
            ("decimal", "sys"),
            ("math", "__loader__"),
        ],
    )
    def test_module_internals_are_not_reachable(self, module, attribute):
        with pytest.raises(AttributeError):
            getattr(SAFE_MODULES[module], attribute)

    def test_members_are_never_modules(self):
        for facade in SAFE_MODULES.values():
            for name in dir(facade):
                assert not isinstance(getattr(facade, name), types.ModuleType)

    def test_selected_members_work(self):
        json_ = SAFE_MODULES["json"]
        assert json_.loads(json_.dumps({"a": [1]})) == {"a": [1]}
        assert SAFE_MODULES["math"].isclose(SAFE_MODULES["math"].sqrt(2) ** 2, 2)
        assert SAFE_MODULES["re"].findall(r"\d", "a1b2") == ["1", "2"]
        decimal_ = SAFE_MODULES["decimal"]
        assert decimal_.Decimal("1.10") + 1 == decimal_.Decimal("2.10")

    def test_read_only(self):
        facade = ModuleFacade("demo", {"x": 1})
        with pytest.raises(AttributeError):
            facade.x = 2
        with pytest.raises(AttributeError):
            del facade.x
        assert facade.x == 1
        assert repr(facade) == "<module facade 'demo'>"


# ============================================================================
# Execution in a worker process
# ============================================================================


class TestRunHandler:
    async def test_returns_value(self):
        assert await run("return {'doubled': input['n'] * 2}", {"n": 21}) == {"doubled": 42}

    async def test_safe_modules_available(self):
        source = (
            "return {'sqrt': math.sqrt(16), 'json': json.dumps([1]), "
            "'year': datetime.date(2026, 1, 5).year, "
            "'digits': re.findall(r'\\d', 'a1b2'), "
            "'total': str(decimal.Decimal('1.10') + decimal.Decimal('2.20'))}"
        )
        assert await run(source) == {
            "sqrt": 4.0,
            "json": "[1]",
            "year": 2026,
            "digits": ["1", "2"],
            "total": "3.30",
        }

    async def test_restricted_builtins(self):
        with pytest.raises(HandlerError) as exc_info:
            await run("return open('/etc/passwd').read()")
        assert exc_info.value.error_type == "NameError"

    @pytest.mark.parametrize(
        "source",
        [
            "return json.codecs.sys.modules['os'].popen('id').read()",
            "return json.codecs.open('/etc/hostname').read()",
            "return re._compiler",
            "return datetime.sys.modules",
        ],
    )
    async def test_module_reach_through_fails(self, source):
        with pytest.raises(HandlerError) as exc_info:
            await run(source)
        assert exc_info.value.error_type == "AttributeError"

    async def test_unsandboxed_has_full_builtins(self):
        assert await run("return callable(open)", sandboxed=False) is True

    async def test_handler_exception_is_reported(self):
        with pytest.raises(HandlerError, match="ValueError: bad amount") as exc_info:
            await run("raise ValueError('bad amount')")
        assert exc_info.value.error_type == "ValueError"

    async def test_compile_error(self):
        with pytest.raises(ExecutionError, match="failed to compile"):
            await run("return (")

    async def test_system_exit_is_an_abort(self):
        with pytest.raises(ExecutionError, match="Handler aborted: SystemExit"):
            await run("raise SystemExit(3)", sandboxed=False)

    async def test_non_serializable_output(self):
        with pytest.raises(ExecutionError, match="non-serializable"):
            await run("loop = []\nloop.append(loop)\nreturn loop")

    async def test_output_size_cap(self):
        with pytest.raises(ExecutionError, match="maximum size"):
            await run("return 'x' * 200", max_output_bytes=100)

    async def test_stray_stdout_does_not_corrupt_channel(self):
        source = "__import__('sys').stdout.write('noise\\n')\nreturn 1"
        assert await run(source, sandboxed=False) == 1

    async def test_worker_does_not_inherit_environment(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://user:secret@db/prod")
        source = "return __import__('os').environ.get('DATABASE_URL')"
        assert await run(source, sandboxed=False) is None

    async def test_startup_timeout(self):
        context = ExecutionContext(tool_name="sample")
        with pytest.raises(ExecutionError, match="did not start"):
            await run_handler("return 1", {}, context, timeout_ms=1000, startup_timeout_ms=1)


class TestDeadline:
    async def test_busy_loop_times_out(self):
        started = time.monotonic()
        with pytest.raises(ExecutionTimeoutError) as exc_info:
            await run("while True:\n    pass", timeout_ms=100)
        assert exc_info.value.timeout_ms == 100
        assert time.monotonic() - started < 10

    async def test_timeout_not_swallowed_by_except_exception(self):
        source = "while True:\n    try:\n        pass\n    except Exception:\n        pass"
        with pytest.raises(ExecutionTimeoutError):
            await run(source, timeout_ms=100)

    async def test_backtracking_regex_is_killed_and_loop_stays_responsive(self):
        ticks = 0

        async def ticker():
            nonlocal ticks
            while True:
                await asyncio.sleep(0.05)
                ticks += 1

        task = asyncio.create_task(ticker())
        started = time.monotonic()
        try:
            with pytest.raises(ExecutionTimeoutError):
                await run("return bool(re.match(r'(a+)+$', 'a' * 40 + 'b'))", timeout_ms=500)
        finally:
            task.cancel()

        assert time.monotonic() - started < 10
        assert ticks >= 5

    async def test_close_kills_running_worker(self):
        worker = SandboxWorker(ExecutionContext(tool_name="spin"), max_message_bytes=65_536)
        await worker.start(
            {"name": "spin", "source": "while True:\n    pass", "sandboxed": True, "input": {}}
        )
        await worker.wait_ready()

        await worker.close()

        assert worker.process.returncode is not None
        assert worker.process.returncode != 0


class TestContextInWorker:
    async def test_print_goes_to_handler_logger(self, caplog):
        with caplog.at_level(logging.INFO, logger="toolmount.handlers"):
            await run("print('hello', input['who'])\nreturn None", {"who": "world"})
        assert "[sample] hello world" in caplog.text

    async def test_context_log_is_captured(self):
        context = ExecutionContext(tool_name="sample")
        source = "context.log('step', 1)\nreturn context.tool_name"

        assert await run_handler(source, {}, context, timeout_ms=5000) == "sample"
        assert context.logs == ["step 1"]

    async def test_context_utils(self):
        result = await run("return context.utils.format_currency(input['cents'])", {"cents": 1999})
        assert result == "$19.99"

    async def test_context_identity(self):
        source = "return [context.agent_id, context.user_id]"
        assert await run(source, agent_id="a-1", user_id="u-1") == ["a-1", "u-1"]

    async def test_context_db_is_served_by_parent(self):
        db = AsyncMock()
        db.get.return_value = {"status": "shipped"}

        source = "return await context.db.get('orders', input['id'])"
        result = await run(source, {"id": "o-1"}, db=db)

        assert result == {"status": "shipped"}
        db.get.assert_awaited_once_with("orders", "o-1")

    async def test_concurrent_db_requests(self):
        db = AsyncMock()
        db.count.return_value = 2
        db.find.return_value = [{"key": "a", "value": 1}]
        source = (
            "count = await context.db.count('orders')\n"
            "rows = await context.db.find('orders', 5)\n"
            "return {'count': count, 'rows': rows}"
        )

        result = await run(source, db=db)

        assert result == {"count": 2, "rows": [{"key": "a", "value": 1}]}
        db.find.assert_awaited_once_with("orders", 5)

    async def test_data_access_errors_are_raised_in_handler(self):
        db = AsyncMock()
        db.put.side_effect = ValidationError("key must be a non-empty string")
        source = (
            "try:\n"
            "    await context.db.put('orders', '', 1)\n"
            "except Exception as e:\n"
            "    return str(e)"
        )

        assert await run(source, db=db) == "key must be a non-empty string"

    async def test_context_db_rejects_unknown_operations(self):
        with pytest.raises(HandlerError) as exc_info:
            await run("return await context.db.drop('orders')", db=AsyncMock())
        assert exc_info.value.error_type == "AttributeError"

    @pytest.mark.parametrize(
        "source",
        [
            "return context.db._target",
            "return context.db._sessionmaker",
            "return context.db.namespace",
            "context.db.namespace = 'victim'\nreturn await context.db.get('secrets', 'k')",
        ],
    )
    async def test_context_db_internals_are_not_reachable(self, source):
        db = AsyncMock()

        with pytest.raises(HandlerError) as exc_info:
            await run(source, db=db)

        assert exc_info.value.error_type == "AttributeError"
        db.get.assert_not_awaited()

    async def test_without_db(self):
        assert await run("return context.db is None") is True


def test_worker_environment_has_no_inherited_variables(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql://user:secret@db/prod")
    env = worker_environment()

    assert "DATABASE_URL" not in env
    assert set(env) <= {"PYTHONPATH", "PYTHONDONTWRITEBYTECODE", "PYTHONIOENCODING", "SYSTEMROOT"}


# ============================================================================
# Output normalization
# ============================================================================


class TestNormalizeOutput:
    def test_plain_data(self):
        assert normalize_output({"a": [1, 2.5, None, True]}, 1024) == {"a": [1, 2.5, None, True]}

    def test_tuples_become_lists(self):
        assert normalize_output((1, 2), 1024) == [1, 2]

    def test_non_json_values_are_stringified(self):
        when = datetime.date(2026, 1, 5)
        assert normalize_output({"when": when}, 1024) == {"when": "2026-01-05"}

    def test_circular_value_rejected(self):
        loop: list = []
        loop.append(loop)
        with pytest.raises(ExecutionError):
            normalize_output(loop, 1024)

    def test_size_cap(self):
        with pytest.raises(ExecutionError, match="maximum size"):
            normalize_output("x" * 200, 100)


# ============================================================================
# ToolUtils
# ============================================================================


class TestToolUtils:
    def test_format_currency(self):
        assert TOOL_UTILS.format_currency(123456) == "$1,234.56"
        assert TOOL_UTILS.format_currency(-500) == "-$5.00"
        assert TOOL_UTILS.format_currency(1000, "eur") == "€10.00"
        assert TOOL_UTILS.format_currency(1000, "CHF") == "10.00 CHF"

    def test_format_date(self):
        when = datetime.datetime(2026, 1, 5, 15, 4)
        assert TOOL_UTILS.format_date(when) == "Jan 5, 2026, 3:04 PM"
        assert TOOL_UTILS.format_date(datetime.date(2026, 1, 5)) == "Jan 5, 2026"
        assert TOOL_UTILS.format_date("2026-01-05T00:30:00Z") == "Jan 5, 2026, 12:30 AM"

    def test_generate_id(self):
        first, second = TOOL_UTILS.generate_id(), TOOL_UTILS.generate_id()
        assert len(first) == 21
        assert first != second
        assert len(TOOL_UTILS.generate_id(8)) == 8

    def test_text_helpers(self):
        assert TOOL_UTILS.slugify("Hello, World!") == "hello-world"
        assert TOOL_UTILS.truncate("abcdefghij", 5) == "ab..."
        assert TOOL_UTILS.truncate("short", 10) == "short"
        assert TOOL_UTILS.to_json({"b": 1, "a": 2}) == '{"a": 2, "b": 1}'

    def test_read_only(self):
        with pytest.raises(AttributeError):
            TOOL_UTILS.slugify = None
