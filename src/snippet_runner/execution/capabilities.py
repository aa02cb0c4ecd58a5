from __future__ import annotations

from dataclasses import dataclass

from ..languages import Backend, CodeLanguage


@dataclass(frozen=True, slots=True)
class BackendCapabilities:
    """Capability flags advertised by a backend.

    Example:
        ```python
        caps = BackendCapabilities(frozenset({CodeLanguage.PYTHON}), True, True, False)
        ```
    """

    languages: frozenset[CodeLanguage]
    supports_timeout: bool
    aborts_in_process: bool
    supports_teardown: bool


def capabilities_for_backend(backend: Backend | str) -> BackendCapabilities:
    """Return capability flags for a backend name.

    Example:
        ```python
        caps = capabilities_for_backend("remote")
        ```
    """
    name = backend.value if isinstance(backend, Backend) else str(backend).lower()
    if name in {"local", "localengine"}:
        return BackendCapabilities(
            languages=frozenset(CodeLanguage),
            supports_timeout=True,
            aborts_in_process=True,
            supports_teardown=False,
        )
    if name in {"remote", "e2bengine"}:
        # Timeouts are enforced by the sandbox service, not in this process.
        return BackendCapabilities(
            languages=frozenset(CodeLanguage),
            supports_timeout=True,
            aborts_in_process=False,
            supports_teardown=True,
        )
    return BackendCapabilities(frozenset(), False, False, False)


def preflight_validate_backend_capabilities(
    backend: Backend | str, language: CodeLanguage
) -> None:
    """Reject a language the backend cannot execute.

    Example:
        ```python
        preflight_validate_backend_capabilities(Backend.LOCAL, CodeLanguage.JAVASCRIPT)
        ```
    """
    caps = capabilities_for_backend(backend)
    if language not in caps.languages:
        name = getattr(backend, "value", backend)
        raise ValueError(f"Backend '{name}' cannot execute {language.value} code")
