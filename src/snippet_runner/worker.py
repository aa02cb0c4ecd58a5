from __future__ import annotations

import builtins
import contextlib
import io
import json
import signal
import sys
import traceback
from typing import Any, Callable

_resource: Any
try:
    import resource as _resource_module  # POSIX only
    _resource = _resource_module
except ImportError:  # pragma: no cover - platform specific
    _resource = None

_MIB = 1024 * 1024
# Same code Node reports for a vm timeout, so both sandboxes read alike.
_TIMEOUT_CODE = "ERR_SCRIPT_EXECUTION_TIMEOUT"


class _Deadline(BaseException):
    """Raised inside user code when its time is up."""


def _on_alarm(signum: int, frame: Any) -> None:
    raise _Deadline()


def _arm_deadline(timeout_ms: int) -> None:
    if timeout_ms <= 0 or not hasattr(signal, "setitimer"):
        return
    signal.signal(signal.SIGALRM, _on_alarm)
    signal.setitimer(signal.ITIMER_REAL, timeout_ms / 1000)


def _disarm_deadline() -> None:
    if hasattr(signal, "setitimer"):
        signal.setitimer(signal.ITIMER_REAL, 0)


def _permitted(name: str, mode: str, allowed: set[str], blocked: set[str]) -> bool:
    # allow mode is an allowlist, restrict mode a denylist
    if mode == "allow":
        return name in allowed
    return name not in blocked


def _cap_address_space(memory_limit_mb: int) -> str | None:
    """Lower RLIMIT_AS to the snippet's memory cap, never raising the hard limit."""
    if _resource is None:
        return "RLIMIT_AS unavailable on this platform"
    cap = int(memory_limit_mb) * _MIB
    try:
        _, hard = _resource.getrlimit(_resource.RLIMIT_AS)
        unlimited = hard in (-1, _resource.RLIM_INFINITY)
        if not unlimited:
            cap = min(cap, hard)
        _resource.setrlimit(_resource.RLIMIT_AS, (cap, cap if unlimited else hard))
    except (ValueError, OSError) as exc:
        return f"RLIMIT_AS not applied: {exc}"
    return None


def _guarded_import(mode: str, allowed: set[str], blocked: set[str]) -> Callable[..., Any]:
    def _import(
        name: str,
        globals: dict[str, Any] | None = None,
        locals: dict[str, Any] | None = None,
        fromlist: Any = (),
        level: int = 0,
    ) -> Any:
        top_level = name.partition(".")[0]
        if top_level == "importlib":
            raise ImportError("Import 'importlib' is blocked by policy")
        if not _permitted(top_level, mode, allowed, blocked):
            verb = "not allowed" if mode == "allow" else "blocked"
            raise ImportError(f"Import '{name}' is {verb} by policy")
        return builtins.__import__(name, globals, locals, fromlist, level)

    return _import


def _snippet_builtins(
    mode: str,
    allowed: set[str],
    blocked: set[str],
    importer: Callable[..., Any],
) -> dict[str, Any]:
    visible = {
        name: value
        for name, value in vars(builtins).items()
        if _permitted(name, mode, allowed, blocked)
    }
    visible["__import__"] = importer
    return visible


def _user_traceback(exc: BaseException, filename: str) -> str:
    """Format a traceback starting at the first frame of the user program."""
    tb = exc.__traceback__
    while tb is not None and tb.tb_frame.f_code.co_filename != filename:
        tb = tb.tb_next
    return "".join(traceback.format_exception(type(exc), exc, tb))


def _failure(name: str, message: str, stack: str, stdout: str = "", **extra: Any) -> dict[str, Any]:
    return {
        "ok": False,
        "result": None,
        "stdout": stdout,
        "error": {"name": name, "message": message, "stack": stack, **extra},
    }


def main() -> int:
    req = json.loads(sys.stdin.read() or "{}")
    source: str = req.get("source", "")
    filename: str = req.get("filename", "user-function.py")
    entrypoint: str = req.get("entrypoint", "__sim_main__")
    bindings = req.get("bindings") or {}
    timeout_ms = int(req.get("timeout_ms") or 0)
    policy = req.get("policy", {})

    max_output_bytes = int(policy.get("max_output_kb", 128)) * 1024
    mode = str(policy.get("mode", "restrict"))

    def names(key: str) -> set[str]:
        return set(policy.get(key) or [])

    try:
        _cap_address_space(int(policy.get("memory_limit_mb", 256)))

        importer = _guarded_import(mode, names("allowed_imports"), names("blocked_imports"))
        safe_builtins = _snippet_builtins(
            mode, names("allowed_builtins"), names("blocked_builtins"), importer
        )

        try:
            byte_code = compile(source, filename, "exec")
        except SyntaxError as exc:
            stack = "".join(traceback.format_exception_only(type(exc), exc))
            sys.stdout.write(json.dumps(_failure(type(exc).__name__, str(exc.msg), stack)))
            return 1

        exec_globals: dict[str, Any] = {"__builtins__": safe_builtins, "__name__": "__sim__"}
        exec_globals.update(bindings)

        output = io.StringIO()
        result: Any = None
        try:
            with contextlib.redirect_stdout(output), contextlib.redirect_stderr(output):
                _arm_deadline(timeout_ms)
                try:
                    exec(byte_code, exec_globals, exec_globals)
                    result = exec_globals[entrypoint]()
                finally:
                    _disarm_deadline()
        except _Deadline:
            sys.stdout.write(
                json.dumps(
                    _failure(
                        "TimeoutError",
                        f"Execution timed out after {timeout_ms}ms",
                        "",
                        output.getvalue()[:max_output_bytes],
                        code=_TIMEOUT_CODE,
                    )
                )
            )
            return 1
        except SystemExit as exc:
            if exc.code not in (None, 0):
                sys.stdout.write(
                    json.dumps(
                        _failure(
                            "SystemExit",
                            f"SystemExit: {exc.code}",
                            _user_traceback(exc, filename),
                            output.getvalue()[:max_output_bytes],
                        )
                    )
                )
                return 1
        except Exception as exc:
            sys.stdout.write(
                json.dumps(
                    _failure(
                        type(exc).__name__,
                        str(exc),
                        _user_traceback(exc, filename),
                        output.getvalue()[:max_output_bytes],
                    ),
                    default=str,
                )
            )
            return 1

        sys.stdout.write(
            json.dumps(
                {
                    "ok": True,
                    "result": result,
                    "stdout": output.getvalue()[:max_output_bytes],
                    "error": None,
                },
                default=str,
            )
        )
        return 0

    except MemoryError:
        sys.stdout.write(
            json.dumps(_failure("MemoryError", "Memory limit exceeded", ""))
        )
        return 2
    except Exception as exc:
        # Failures of the worker itself, before user code ran.
        sys.stdout.write(json.dumps(_failure("Error", str(exc), traceback.format_exc())))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
