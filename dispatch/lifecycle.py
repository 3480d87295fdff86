"""Incident lifecycle: statuses, commands and the transition table.

This table is the only place that decides which status change is legal.
Every mutating service entry point resolves its target status through
:func:`next_status` instead of re-checking statuses on its own.

Citizen incidents::

    NEW ──ack──> ACK ──assign──> DISPATCHED ──> IN_PROGRESS ──> CLOSED
     │            │                  │              │
     └────────────┴──── cancel ──────┴──────────────┴──> CANCELED

Simulated incidents (disjoint sub-machine)::

    SIMULATION <──pause/resume──> SIM_PAUSED ──close──> CLOSED
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Mapping

from .errors import ConflictError, ValidationError


class IncidentStatus(str, Enum):
    NEW = "NEW"
    ACK = "ACK"
    DISPATCHED = "DISPATCHED"
    IN_PROGRESS = "IN_PROGRESS"
    CLOSED = "CLOSED"
    CANCELED = "CANCELED"
    SIMULATION = "SIMULATION"
    SIM_PAUSED = "SIM_PAUSED"


class Command(str, Enum):
    ACKNOWLEDGE = "acknowledge"
    ASSIGN = "assign"
    DISPATCH = "dispatch"
    START = "start"
    CLOSE = "close"
    CANCEL = "cancel"
    PAUSE_SIMULATION = "pause"
    RESUME_SIMULATION = "resume"
    CLOSE_SIMULATION = "close_simulation"


S = IncidentStatus

TERMINAL_STATUSES = frozenset({S.CLOSED, S.CANCELED})
OPEN_CITIZEN_STATUSES = frozenset({S.NEW, S.ACK, S.DISPATCHED, S.IN_PROGRESS})

# command -> {from: to}
TRANSITIONS: Dict[Command, Mapping[IncidentStatus, IncidentStatus]] = {
    Command.ACKNOWLEDGE: {S.NEW: S.ACK},
    # Extra units can join an incident that is already dispatched or worked on.
    Command.ASSIGN: {
        S.NEW: S.DISPATCHED,
        S.ACK: S.DISPATCHED,
        S.DISPATCHED: S.DISPATCHED,
        S.IN_PROGRESS: S.IN_PROGRESS,
    },
    Command.DISPATCH: {S.NEW: S.DISPATCHED, S.ACK: S.DISPATCHED, S.DISPATCHED: S.DISPATCHED},
    Command.START: {S.DISPATCHED: S.IN_PROGRESS, S.IN_PROGRESS: S.IN_PROGRESS},
    Command.CLOSE: {status: S.CLOSED for status in OPEN_CITIZEN_STATUSES},
    Command.CANCEL: {status: S.CANCELED for status in OPEN_CITIZEN_STATUSES},
    Command.PAUSE_SIMULATION: {S.SIMULATION: S.SIM_PAUSED},
    Command.RESUME_SIMULATION: {S.SIM_PAUSED: S.SIMULATION},
    # Closing an already closed simulation is a no-op.
    Command.CLOSE_SIMULATION: {S.SIMULATION: S.CLOSED, S.SIM_PAUSED: S.CLOSED, S.CLOSED: S.CLOSED},
}

# Nominal target of each command, used to name illegal pairs.
COMMAND_TARGETS: Dict[Command, IncidentStatus] = {
    Command.ACKNOWLEDGE: S.ACK,
    Command.ASSIGN: S.DISPATCHED,
    Command.DISPATCH: S.DISPATCHED,
    Command.START: S.IN_PROGRESS,
    Command.CLOSE: S.CLOSED,
    Command.CANCEL: S.CANCELED,
    Command.PAUSE_SIMULATION: S.SIM_PAUSED,
    Command.RESUME_SIMULATION: S.SIMULATION,
    Command.CLOSE_SIMULATION: S.CLOSED,
}

# Targets reachable through setStatus.
STATUS_COMMANDS: Dict[IncidentStatus, Command] = {
    S.DISPATCHED: Command.DISPATCH,
    S.IN_PROGRESS: Command.START,
    S.CLOSED: Command.CLOSE,
}

# Wire names accepted by the simulation status endpoint.
SIMULATION_COMMANDS: Dict[str, Command] = {
    "pause": Command.PAUSE_SIMULATION,
    "paused": Command.PAUSE_SIMULATION,
    "resume": Command.RESUME_SIMULATION,
    "running": Command.RESUME_SIMULATION,
    "close": Command.CLOSE_SIMULATION,
    "closed": Command.CLOSE_SIMULATION,
}


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def next_status(current: str, command: Command) -> IncidentStatus:
    """Return the status ``command`` leads to from ``current``.

    Raises ConflictError naming the illegal ``from→to`` pair.
    """
    try:
        status = IncidentStatus(current)
    except ValueError:
        raise ConflictError.transition(str(current), COMMAND_TARGETS[command].value) from None
    target = TRANSITIONS[command].get(status)
    if target is None:
        raise ConflictError.transition(status.value, COMMAND_TARGETS[command].value)
    return target


def status_command(status: str) -> Command:
    """Map a ``setStatus`` target to its command (ValidationError otherwise)."""
    try:
        target = IncidentStatus(str(status or "").strip().upper())
    except ValueError:
        raise ValidationError(f"unknown status: {status!r}") from None
    command = STATUS_COMMANDS.get(target)
    if command is None:
        raise ValidationError(f"status {target.value} cannot be set directly")
    return command


def simulation_command(value: str) -> Command:
    command = SIMULATION_COMMANDS.get(str(value or "").strip().lower())
    if command is None:
        raise ValidationError(f"unknown simulation command: {value!r}")
    return command
