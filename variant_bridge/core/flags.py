"""
Flag-evaluation provider seam.

The assignment tracker only talks to a FlagProvider: three typed assignment
calls plus an event sink the provider invokes whenever it computes an
assignment. connect_eppo() builds the production provider on top of the Eppo
server SDK; tests pass their own connect callable.
"""
from typing import Any, Callable, Dict, Optional, Protocol, runtime_checkable

from .errors import ConfigurationError
from .logging import get_logger

log = get_logger(__name__)

AssignmentSink = Callable[[Dict[str, Any]], None]


@runtime_checkable
class FlagProvider(Protocol):
    def get_string_assignment(
        self,
        flag_key: str,
        subject_key: str,
        subject_attributes: Dict[str, Any],
        default: Optional[str],
    ) -> Optional[str]: ...

    def get_boolean_assignment(
        self,
        flag_key: str,
        subject_key: str,
        subject_attributes: Dict[str, Any],
        default: bool,
    ) -> bool: ...

    def get_numeric_assignment(
        self,
        flag_key: str,
        subject_key: str,
        subject_attributes: Dict[str, Any],
        default: float,
    ) -> float: ...


ProviderConnector = Callable[[str, AssignmentSink], FlagProvider]


def disable_result_cache(client: Any) -> bool:
    """
    Turns off any assignment caching the provider client exposes, so every
    call re-evaluates and re-emits its event. Returns True if something was
    switched off.
    """
    disabled = False

    disable = getattr(client, "disable_assignment_cache", None)
    if callable(disable):
        disable()
        disabled = True

    set_size = getattr(client, "set_cache_size", None)
    if callable(set_size):
        set_size(0)
        disabled = True

    for attr in ("assignment_cache", "_assignment_cache"):
        if getattr(client, attr, None) is not None:
            setattr(client, attr, None)
            disabled = True

    return disabled


def connect_eppo(api_key: str, on_assignment: AssignmentSink) -> FlagProvider:
    """Initializes the Eppo SDK with an assignment logger that feeds on_assignment."""
    if not api_key:
        raise ConfigurationError(user_message="EPPO_SDK_KEY environment variable is required")

    import eppo_client
    from eppo_client.config import AssignmentLogger, Config

    class _SinkLogger(AssignmentLogger):
        def log_assignment(self, assignment_event: Dict[str, Any]) -> None:
            on_assignment(dict(assignment_event))

    client = eppo_client.init(Config(api_key=api_key, assignment_logger=_SinkLogger()))
    if disable_result_cache(client):
        log.info("flags.cache_disabled", provider="eppo")
    return client
