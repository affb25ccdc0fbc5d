"""
toolmount.core.tools.worker - Sandbox Worker Process

Entry point of the short-lived process a single handler invocation runs in:

    python -m toolmount.core.tools.worker

Protocol (JSON lines):
- stdin, first line: the job (name, source, input, ids, flags)
- stdin, afterwards: replies to db requests, ``{"id": n, "result": ...}``
  or ``{"id": n, "error": {"type": ..., "message": ...}}``
- stdout: ``ready`` once compiled, ``log`` lines, ``db`` requests, and
  exactly one final ``result``, ``error`` (handler raised) or ``failed``
  (compile error, oversized or non-JSON output, handler aborted)

The protocol streams are moved off fds 0 and 1 before handler code runs,
so anything written to stdout lands on stderr instead of the channel.
"""

import asyncio
import itertools
import json
import os
import threading
from typing import Any, TextIO
from uuid import UUID

from toolmount.exceptions import ExecutionError, NotFoundError, ValidationError

from .sandbox import ExecutionContext, compile_handler

# Exceptions from the parent's data access, raised again inside the handler
_REMOTE_ERRORS: dict[str, type[Exception]] = {
    "ValidationError": ValidationError,
    "NotFoundError": NotFoundError,
}


class Channel:
    """JSON-lines link to the parent process."""

    def __init__(self, reader: TextIO, writer: TextIO) -> None:
        self._reader = reader
        self._writer = writer
        self._write_lock = threading.Lock()
        self._ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future[Any]] = {}
        self._loop: asyncio.AbstractEventLoop | None = None

    def send(self, message: dict[str, Any]) -> None:
        line = json.dumps(message, default=str, ensure_ascii=False)
        with self._write_lock:
            self._writer.write(line + "\n")
            self._writer.flush()

    def read_job(self) -> dict[str, Any]:
        line = self._reader.readline()
        if not line:
            raise EOFError("Parent closed the channel before sending a job")
        return json.loads(line)

    def listen(self, loop: asyncio.AbstractEventLoop) -> None:
        """Route replies to pending requests from a reader thread."""
        self._loop = loop
        threading.Thread(target=self._read_replies, name="toolmount-channel", daemon=True).start()

    async def request(self, op: str, args: list[Any]) -> Any:
        request_id = next(self._ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            self.send({"type": "db", "id": request_id, "op": op, "args": args})
        except (TypeError, ValueError) as e:
            self._pending.pop(request_id, None)
            raise ValidationError(f"context.db.{op} arguments are not JSON-serializable") from e
        return await future

    def _read_replies(self) -> None:
        assert self._loop is not None
        for line in self._reader:
            try:
                self._loop.call_soon_threadsafe(self._resolve, json.loads(line))
            except RuntimeError:
                # Loop closed: the handler has finished
                return

    def _resolve(self, reply: dict[str, Any]) -> None:
        future = self._pending.pop(reply.get("id"), None)
        if future is None or future.done():
            return
        error = reply.get("error")
        if error is not None:
            exc_type = _REMOTE_ERRORS.get(error.get("type"), ExecutionError)
            future.set_exception(exc_type(error.get("message") or "Data access failed"))
        else:
            future.set_result(reply.get("result"))


def remote_data_access(channel: Channel) -> Any:
    """
    Build ``context.db`` for the worker.

    Every call becomes a request to the parent, which owns the scoped data
    access; the namespace is bound there, out of the handler's reach.
    """
    request = channel.request

    class RemoteDataAccess:
        __slots__ = ()

        async def get(self, collection: str, key: str) -> Any:
            return await request("get", [collection, key])

        async def put(self, collection: str, key: str, value: Any) -> Any:
            return await request("put", [collection, key, value])

        async def delete(self, collection: str, key: str) -> bool:
            return await request("delete", [collection, key])

        async def find(self, collection: str, limit: int = 100) -> list[dict[str, Any]]:
            return await request("find", [collection, limit])

        async def count(self, collection: str) -> int:
            return await request("count", [collection])

        def __repr__(self) -> str:
            return "<context.db>"

    return RemoteDataAccess()


def _detach_protocol_streams() -> tuple[TextIO, TextIO]:
    """Duplicate stdin/stdout for the protocol; point fds 0/1 elsewhere."""
    reader = os.fdopen(os.dup(0), "r", encoding="utf-8")
    writer = os.fdopen(os.dup(1), "w", encoding="utf-8")
    devnull = os.open(os.devnull, os.O_RDONLY)
    os.dup2(devnull, 0)
    os.close(devnull)
    os.dup2(2, 1)
    return reader, writer


def run(job: dict[str, Any], channel: Channel) -> None:
    """Compile and run one job, reporting everything over the channel."""
    name = str(job["name"])

    def emit(message: str) -> None:
        channel.send({"type": "log", "message": message})

    try:
        handler = compile_handler(
            name, job["source"], sandboxed=bool(job.get("sandboxed", True)), log=emit
        )
    except ExecutionError as e:
        channel.send({"type": "failed", "message": str(e)})
        return

    loop = asyncio.new_event_loop()
    channel.listen(loop)
    tool_id = job.get("tool_id")
    context = ExecutionContext(
        tool_name=name,
        tool_id=UUID(tool_id) if tool_id else None,
        db=remote_data_access(channel) if job.get("has_db") else None,
        agent_id=job.get("agent_id"),
        user_id=job.get("user_id"),
        on_log=emit,
    )

    channel.send({"type": "ready"})
    try:
        value = loop.run_until_complete(handler(job.get("input") or {}, context))
    except Exception as e:
        channel.send({"type": "error", "error_type": type(e).__name__, "message": str(e)})
        return
    except BaseException as e:  # SystemExit, KeyboardInterrupt from handler code
        channel.send({"type": "failed", "message": f"Handler aborted: {type(e).__name__}"})
        return
    finally:
        loop.close()

    try:
        encoded = json.dumps(value, default=str, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        message = f"Handler returned a non-serializable value: {e}"
        channel.send({"type": "failed", "message": message})
        return

    max_bytes = int(job.get("max_output_bytes") or 0)
    size = len(encoded.encode("utf-8"))
    if max_bytes and size > max_bytes:
        channel.send(
            {
                "type": "failed",
                "message": f"Output exceeds maximum size of {max_bytes} bytes ({size} bytes)",
            }
        )
        return

    channel.send({"type": "result", "value": json.loads(encoded)})


def main() -> None:
    reader, writer = _detach_protocol_streams()
    channel = Channel(reader, writer)
    run(channel.read_job(), channel)
    writer.flush()


if __name__ == "__main__":
    main()
