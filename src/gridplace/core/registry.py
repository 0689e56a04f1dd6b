"""Agent registration: the only place credentials are issued."""

import secrets
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from gridplace.core.validation import (
    DEFAULT_PALETTE,
    generate_agent_id,
    generate_credential,
    sanitize_name,
    validate_color,
)
from gridplace.schemas.types import AgentRecord
from gridplace.storage.agents import AgentDirectory
from gridplace.utils.errors import DuplicateCredentialError
from gridplace.utils.telemetry import get_logger, now_ms


@dataclass
class Registration:
    """Result of a registration.

    ``agent.credential`` is the only copy the caller will ever see.
    """

    agent: AgentRecord
    name_was_modified: bool
    original_name: str | None = None


class AgentRegistry:
    """Creates agents in the directory."""

    def __init__(
        self,
        directory: AgentDirectory,
        palette: tuple[str, ...] = DEFAULT_PALETTE,
        clock: Callable[[], int] = now_ms,
        max_attempts: int = 3,
    ):
        """Initialize the registry.

        Args:
            directory: Agent directory to write to
            palette: Colors an agent may default to
            clock: Millisecond clock
            max_attempts: Credential generation attempts before giving up
        """
        self.directory = directory
        self.palette = palette
        self.max_attempts = max_attempts
        self._clock = clock
        self._logger = get_logger("gridplace.registry")

    async def register(self, name: Any, color: Any = None) -> Registration:
        """Register a new agent.

        Args:
            name: Requested display name, sanitized before use
            color: Optional default color; a random palette color otherwise

        Returns:
            Registration carrying the new record and its credential

        Raises:
            InvalidNameError: If the name has no usable characters
            InvalidColorError: If a color is given but not in the palette
            DuplicateCredentialError: If every generated credential collided
        """
        sanitized, modified = sanitize_name(name)

        if color is None or color == "":
            chosen = secrets.choice(self.palette)
        else:
            chosen = validate_color(color, self.palette)

        for attempt in range(1, self.max_attempts + 1):
            agent = AgentRecord(
                id=generate_agent_id(),
                name=sanitized,
                credential=generate_credential(),
                color=chosen,
                created_at=self._clock(),
            )
            try:
                await self.directory.create(
                    agent.id,
                    agent.name,
                    agent.credential,
                    agent.color,
                    agent.created_at,
                )
            except DuplicateCredentialError:
                self._logger.warning("Credential collision", attempt=attempt)
                continue

            self._logger.info(
                "Agent registered",
                agent_id=agent.id,
                name=agent.name,
                name_was_modified=modified,
            )
            return Registration(
                agent=agent,
                name_was_modified=modified,
                original_name=str(name) if modified else None,
            )

        raise DuplicateCredentialError()
