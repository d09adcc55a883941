"""MetadataContainer lifecycle and ContainerAsyncRequest polling."""
import contextlib
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from app.services.errors import DeployFailedError, PollTimeoutError

logger = logging.getLogger(__name__)

# MetadataContainer.Name is limited to 32 characters.
CONTAINER_NAME_MAX = 32

SIMPLE_DEPLOY_TIMEOUT = 30
BUNDLE_DEPLOY_TIMEOUT = 60


class DeployState(str, Enum):
    QUEUED = "Queued"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    FAILED = "Failed"
    ERROR = "Error"
    ABORTED = "Aborted"
    INVALIDATED = "Invalidated"

    @property
    def is_terminal(self) -> bool:
        return self not in (DeployState.QUEUED, DeployState.IN_PROGRESS)

    @property
    def is_success(self) -> bool:
        return self is DeployState.COMPLETED


@dataclass
class DeployResult:
    deploy_id: str
    state: str
    error_message: Optional[str] = None
    component_failures: List[Dict[str, Any]] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.state == DeployState.COMPLETED.value

    @classmethod
    def from_record(cls, deploy_id: str, record: Dict[str, Any]) -> "DeployResult":
        details = record.get("DeployDetails") or {}
        failures = details.get("componentFailures") or []
        if isinstance(failures, dict):
            failures = [failures]
        return cls(
            deploy_id=deploy_id,
            state=record.get("State") or "",
            error_message=record.get("ErrorMsg"),
            component_failures=failures,
            raw=record,
        )


def _parse_state(value: str) -> Optional[DeployState]:
    try:
        return DeployState(value)
    except ValueError:
        return None


class MetadataContainerManager:
    """Opens, populates, deploys and deletes MetadataContainer records."""

    def __init__(self, client, clock=time.time):
        self.client = client
        self._clock = clock

    def container_name(self, name_prefix: str) -> str:
        suffix = f"_{int(self._clock() * 1000)}"
        return name_prefix[: CONTAINER_NAME_MAX - len(suffix)] + suffix

    def open(self, name_prefix: str) -> str:
        name = self.container_name(name_prefix)
        container_id = self.client.create("MetadataContainer", {"Name": name})
        logger.info("📦 Opened MetadataContainer %s (%s)", name, container_id)
        return container_id

    def add_member(self, container_id: str, member_type: str,
                   content_entity_id: Optional[str] = None,
                   content: Optional[str] = None, **fields) -> str:
        payload: Dict[str, Any] = {"MetadataContainerId": container_id}
        if content_entity_id:
            payload["ContentEntityId"] = content_entity_id
        if content is not None:
            payload["Body"] = content
        payload.update(fields)
        member_id = self.client.create(member_type, payload)
        logger.debug("Added %s %s to container %s", member_type, member_id, container_id)
        return member_id

    def trigger_deploy(self, container_id: str, check_only: bool = False) -> str:
        deploy_id = self.client.create(
            "ContainerAsyncRequest",
            {"MetadataContainerId": container_id, "IsCheckOnly": check_only},
        )
        logger.info("🚀 Triggered deploy %s for container %s", deploy_id, container_id)
        return deploy_id

    def close(self, container_id: str) -> None:
        self.client.delete("MetadataContainer", container_id)
        logger.info("🧹 Deleted MetadataContainer %s", container_id)

    @contextlib.contextmanager
    def scoped(self, name_prefix: str) -> Iterator[str]:
        """Open a container and delete it on every exit path.

        A failing delete is logged and never replaces the error that is
        already propagating. If the process dies inside the block the
        container is left behind on the org.
        """
        container_id = self.open(name_prefix)
        try:
            yield container_id
        finally:
            try:
                self.close(container_id)
            except Exception:
                logger.error("Failed to delete MetadataContainer %s", container_id, exc_info=True)


class DeploymentPoller:
    """Polls a ContainerAsyncRequest at a fixed interval until it settles."""

    def __init__(self, client, interval_seconds: float = 1.0, sleep=time.sleep):
        self.client = client
        self.interval_seconds = interval_seconds
        self._sleep = sleep

    def status(self, deploy_id: str) -> DeployResult:
        record = self.client.retrieve("ContainerAsyncRequest", deploy_id)
        return DeployResult.from_record(deploy_id, record)

    def poll(self, deploy_id: str, timeout_seconds: int = SIMPLE_DEPLOY_TIMEOUT) -> DeployResult:
        last_state: Optional[str] = None
        for attempt in range(1, timeout_seconds + 1):
            result = self.status(deploy_id)
            last_state = result.state
            state = _parse_state(result.state)
            if state is None:
                logger.warning("Deploy %s reported unknown state %r", deploy_id, result.state)
            elif state.is_terminal:
                logger.info("Deploy %s finished with state %s after %d checks",
                            deploy_id, state.value, attempt)
                return result
            else:
                logger.info("Deploy %s status: %s (%d/%d)", deploy_id, result.state, attempt, timeout_seconds)

            if attempt < timeout_seconds:
                self._sleep(self.interval_seconds)

        raise PollTimeoutError(deploy_id, last_state, timeout_seconds)


def raise_for_result(result: DeployResult, artifact: str = "") -> None:
    """Raise DeployFailedError unless the deploy reached Completed."""
    if result.success:
        return

    if result.component_failures:
        problems = []
        for f in result.component_failures:
            location = f.get("fileName") or f.get("fullName") or "component"
            if f.get("lineNumber"):
                location += f" line {f['lineNumber']}"
                if f.get("columnNumber"):
                    location += f":{f['columnNumber']}"
            problems.append(f"{location}: {f.get('problem', 'unknown problem')}")
        reason = "; ".join(problems)
    else:
        reason = result.error_message or f"deploy ended in state {result.state}"

    prefix = f"Deploy of {artifact} failed" if artifact else "Deploy failed"
    raise DeployFailedError(
        f"{prefix} ({result.state}): {reason}",
        deploy_id=result.deploy_id,
        state=result.state,
        component_failures=result.component_failures,
    )
