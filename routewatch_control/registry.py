"""
CommandRegistry - Named commands for the control plane

Bounded Context: Command registration and payload validation

Each command is registered once with its handler and the payload keys it
cannot run without. execute() refuses unknown commands and incomplete
payloads before the handler is called, so handlers can index the payload
directly.

Threading: registration is lock-guarded; lookups read a plain dict.
"""

import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional, Set, Tuple


class CommandNotAvailableError(Exception):
    """Raised for a command name nobody registered"""
    pass


class CommandValidationError(Exception):
    """Raised when a payload lacks (or nulls) a required field"""

    def __init__(self, command: str, missing: Iterable[str]):
        self.command = command
        self.missing = sorted(missing)
        super().__init__(
            f"Command '{command}' missing required field(s): {', '.join(self.missing)}"
        )


@dataclass(frozen=True)
class RegisteredCommand:
    name: str
    handler: Callable
    description: str
    required_fields: Tuple[str, ...] = ()

    def missing_fields(self, payload: Optional[Dict[str, Any]]) -> list:
        payload = payload or {}
        return [field for field in self.required_fields if payload.get(field) is None]


class CommandRegistry:
    """
    Command name -> RegisteredCommand.

    Handlers registered with required fields receive the full payload dict;
    a command executed without a payload calls its handler with no arguments.

    Example:
        registry = CommandRegistry()
        registry.register(
            'assign_route', service.handle_assign, "Assign route to person",
            required_fields=('person_id', 'route_id'),
        )
        registry.execute('assign_route', {'person_id': 'grandma'})
        # CommandValidationError: missing route_id
    """

    def __init__(self):
        self._commands: Dict[str, RegisteredCommand] = {}
        self._lock = threading.Lock()

    def register(
        self,
        command: str,
        handler: Callable,
        description: str,
        required_fields: Iterable[str] = (),
    ) -> None:
        """Add a command. ValueError if the name is already taken."""
        entry = RegisteredCommand(command, handler, description, tuple(required_fields))
        with self._lock:
            if command in self._commands:
                raise ValueError(f"Command '{command}' already registered")
            self._commands[command] = entry

    def execute(self, command: str, command_data: Optional[Dict[str, Any]] = None):
        """
        Validate and run a command, returning whatever its handler returns.

        Raises:
            CommandNotAvailableError: unknown command
            CommandValidationError: required fields missing from command_data
        """
        entry = self._commands.get(command)
        if entry is None:
            known = ', '.join(sorted(self._commands)) or 'none'
            raise CommandNotAvailableError(
                f"Command '{command}' not available (registered: {known})"
            )

        missing = entry.missing_fields(command_data)
        if missing:
            raise CommandValidationError(command, missing)

        if command_data is None:
            return entry.handler()
        return entry.handler(command_data)

    def is_available(self, command: str) -> bool:
        return command in self._commands

    @property
    def available_commands(self) -> Set[str]:
        return set(self._commands)

    def get_help(self) -> Dict[str, str]:
        return {name: entry.description for name, entry in self._commands.items()}

    def count(self) -> int:
        return len(self._commands)
