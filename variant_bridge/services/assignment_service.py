# services/assignment_service.py
import asyncio
import inspect
from typing import Any, Dict, Optional

from variant_bridge.core.errors import ConfigurationError
from variant_bridge.core.flags import FlagProvider, ProviderConnector, connect_eppo
from variant_bridge.core.logging import get_logger
from variant_bridge.models.schemas.assignment import (
    AssignmentRecord,
    AssignmentResult,
    LookupDiagnostics,
    PendingRequestContext,
    utc_now_iso,
)
from variant_bridge.repositories.assignment_repo import (
    AssignmentRepository,
    assignment_key,
)

log = get_logger(__name__)


def _optional_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


async def _settle(value: Any) -> Any:
    # Providers may answer synchronously (Eppo) or with an awaitable.
    if inspect.isawaitable(value):
        return await value
    return value


class AssignmentTracker:
    """
    Wraps the flag provider and remembers every assignment event it emits.

    The provider reports assignments through an event sink rather than in the
    return value, and its events do not always say which flag or subject they
    belong to. Before each provider call the tracker stores the request's
    context in a single pending slot so the sink can fill the gaps; resolutions
    are serialized with a lock so that slot is never shared by two requests.
    """

    def __init__(
        self,
        sdk_key: Optional[str],
        repository: Optional[AssignmentRepository] = None,
        connect: ProviderConnector = connect_eppo,
    ):
        self._sdk_key = sdk_key
        self.repository = repository if repository is not None else AssignmentRepository()
        self._connect = connect
        self._provider: Optional[FlagProvider] = None
        self._initialized = False

        self._pending: Optional[PendingRequestContext] = None
        self._event_fired = False
        self._lock = asyncio.Lock()

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> None:
        """
        Connects to the flag provider and registers the event sink.

        Raises ConfigurationError without a provider key; provider errors are
        logged and re-raised. Either way the tracker stays uninitialized and
        resolve() answers with empty assignments.
        """
        if not self._sdk_key:
            log.critical("assignment.init_failed", reason="EPPO_SDK_KEY missing")
            raise ConfigurationError(user_message="EPPO_SDK_KEY environment variable is required")

        log.info("assignment.initializing")
        try:
            self._provider = self._connect(self._sdk_key, self.record_event)
        except Exception:
            log.exception("assignment.init_failed")
            self._provider = None
            self._initialized = False
            raise

        self._initialized = True
        log.info("assignment.initialized")

    # --- Event sink ---

    def record_event(self, event: Dict[str, Any]) -> None:
        """
        Called by the provider for every assignment it computes. Missing flag
        key and subject are taken from the pending request, if any.
        """
        self._event_fired = True
        pending = self._pending

        flag_key = event.get("flagKey") or event.get("featureFlag")
        if not flag_key and pending is not None:
            flag_key = pending.flag_key

        subject = event.get("subject")
        if not subject:
            subject = pending.user_id if pending is not None else "unknown"

        timestamp = event.get("timestamp")
        record = AssignmentRecord(
            subject=str(subject),
            flag_key=flag_key or None,
            variation=_optional_str(event.get("variation")),
            allocation=_optional_str(event.get("allocation")),
            experiment=_optional_str(event.get("experiment")),
            timestamp=str(timestamp) if timestamp else utc_now_iso(),
            raw=dict(event),
        )
        self.repository.put(assignment_key(record.subject, record.flag_key), record)

    # --- Lookups ---

    def get_record(self, user_id: str, flag_key: str) -> Optional[AssignmentRecord]:
        return self.repository.get_assignment(user_id, flag_key)

    def _find_record(self, flag_key: str, user_id: str) -> Optional[AssignmentRecord]:
        record = self.repository.get(assignment_key(user_id, flag_key))
        if record is not None:
            return record

        # The event arrived without a flag key: claim it for this flag.
        stale_key = assignment_key(user_id, None)
        stale = self.repository.get(stale_key)
        if stale is None:
            return None

        record = stale.model_copy(update={"flag_key": flag_key})
        # Delete before re-inserting so the re-key cannot evict a live entry.
        self.repository.delete(stale_key)
        self.repository.put(assignment_key(user_id, flag_key), record)
        log.debug("assignment.rekeyed", user_id=user_id, flag_key=flag_key)
        return record

    def _fallback_details(
        self, flag_key: str, user_id: str, assignment: Optional[str]
    ) -> AssignmentRecord:
        if self._event_fired:
            note = "Logger fired but assignment not found in storage"
        else:
            note = "Assignment logger did not fire - may be cached or default assignment"

        return AssignmentRecord(
            subject=user_id,
            flag_key=flag_key,
            variation=assignment,
            debug=LookupDiagnostics(
                assignment_logger_fired=self._event_fired,
                stored_assignments_count=len(self.repository),
                lookup_key=assignment_key(user_id, flag_key),
                note=note,
            ),
        )

    # --- Resolution ---

    async def resolve(
        self,
        flag_key: str,
        user_id: str,
        user_attributes: Optional[Dict[str, Any]] = None,
    ) -> AssignmentResult:
        """
        Returns the user's variant for flag_key together with the recorded
        assignment event (or a diagnostic stand-in). Never raises.
        """
        user_attributes = dict(user_attributes or {})

        if not self._initialized or self._provider is None:
            log.warning("assignment.not_initialized", flag_key=flag_key, user_id=user_id)
            return AssignmentResult(
                assignment=None,
                flag_key=flag_key,
                user_id=user_id,
                user_attributes=user_attributes,
                initialized=False,
            )

        async with self._lock:
            self._event_fired = False
            self._pending = PendingRequestContext(
                flag_key=flag_key, user_id=user_id, user_attributes=user_attributes
            )
            try:
                assignment = await _settle(
                    self._provider.get_string_assignment(flag_key, user_id, user_attributes, None)
                )
                details = self._find_record(flag_key, user_id)
                if details is None:
                    details = self._fallback_details(flag_key, user_id, assignment)
                event_fired = self._event_fired
            except Exception as e:
                log.exception("assignment.resolve_failed", flag_key=flag_key, user_id=user_id)
                return AssignmentResult(
                    assignment=None,
                    flag_key=flag_key,
                    user_id=user_id,
                    user_attributes=user_attributes,
                    error=str(e),
                )
            finally:
                self._pending = None

        log.info(
            "assignment.resolved",
            flag_key=flag_key,
            user_id=user_id,
            assignment=assignment,
            event_fired=event_fired,
        )
        return AssignmentResult(
            assignment=assignment,
            flag_key=flag_key,
            user_id=user_id,
            user_attributes=user_attributes,
            assignment_details=details,
            client_info=self.client_info(),
        )

    async def resolve_boolean(
        self,
        flag_key: str,
        user_id: str,
        user_attributes: Optional[Dict[str, Any]] = None,
        default: bool = False,
    ) -> bool:
        if not self._initialized or self._provider is None:
            log.warning("assignment.not_initialized", flag_key=flag_key, user_id=user_id)
            return default

        async with self._lock:
            try:
                return await _settle(
                    self._provider.get_boolean_assignment(
                        flag_key, user_id, dict(user_attributes or {}), default
                    )
                )
            except Exception:
                log.exception("assignment.boolean_failed", flag_key=flag_key, user_id=user_id)
                return default

    async def resolve_numeric(
        self,
        flag_key: str,
        user_id: str,
        user_attributes: Optional[Dict[str, Any]] = None,
        default: float = 0,
    ) -> float:
        if not self._initialized or self._provider is None:
            log.warning("assignment.not_initialized", flag_key=flag_key, user_id=user_id)
            return default

        async with self._lock:
            try:
                return await _settle(
                    self._provider.get_numeric_assignment(
                        flag_key, user_id, dict(user_attributes or {}), default
                    )
                )
            except Exception:
                log.exception("assignment.numeric_failed", flag_key=flag_key, user_id=user_id)
                return default

    def client_info(self) -> Dict[str, Any]:
        return {
            "initialized": self._initialized,
            "has_client": self._provider is not None,
            "client_type": type(self._provider).__name__ if self._provider is not None else None,
            "recent_assignments_count": len(self.repository),
            "has_assignment_logger": self._provider is not None,
        }
