"""Immutable building blocks of the generated /sbin/init.

A script is an ordered tuple of fragments: one base fragment, zero or more
optional component fragments, one terminal fragment. Every step carries
its own failure policy so the shell renderer and the Python executor
apply the same rule.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterator, Tuple, Union

from ..errors import PackagingError


class Policy(enum.Enum):
    FAIL_CLOSED = "fail-closed"
    FAIL_OPEN = "fail-open"


class FragmentKind(enum.Enum):
    BASE = "base"
    OPTIONAL = "optional"
    TERMINAL = "terminal"


@dataclass(frozen=True)
class Step:
    description: str
    command: str
    policy: Policy = Policy.FAIL_CLOSED


@dataclass(frozen=True)
class ServiceUnit:
    name: str
    order: int
    start_command: str
    backgrounded: bool
    best_effort: bool
    terminal: bool = False

    def __post_init__(self) -> None:
        if self.terminal and (self.backgrounded or self.best_effort):
            raise ValueError(f"terminal unit {self.name!r} must run in the foreground and fail closed")

    @property
    def policy(self) -> Policy:
        return Policy.FAIL_OPEN if self.best_effort else Policy.FAIL_CLOSED


Item = Union[Step, ServiceUnit]


@dataclass(frozen=True)
class Fragment:
    name: str
    kind: FragmentKind
    items: Tuple[Item, ...]

    @property
    def service(self) -> ServiceUnit | None:
        for item in self.items:
            if isinstance(item, ServiceUnit):
                return item
        return None


SCRIPT_HEADER = """\
#!/bin/sh

# Verity PID 1 init (generated by verity-build, do not edit)

verity_log() { echo "verity: $*"; }

verity_halt() {
    echo "verity: FATAL: $*" >&2
    while :; do sleep 3600; done
}
"""

FRAGMENT_MARKER = "# --- fragment: {name} ---"


def _quote(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"').replace("$", "\\$").replace("`", "\\`")


def _render_guarded(command: str, policy: Policy, description: str) -> str:
    if policy is Policy.FAIL_CLOSED:
        handler = f'verity_halt "{_quote(description)}"'
    else:
        handler = f'verity_log "{_quote(description)} failed (continuing)"'
    if "\n" in command:
        return "{\n" + command.rstrip("\n") + "\n} || " + handler
    sep = " " if command.endswith("&") else "; "
    return "{ " + command + sep + "} || " + handler


def render_item(item: Item) -> str:
    if isinstance(item, Step):
        return f"# {item.description}\n" + _render_guarded(item.command, item.policy, item.description)

    lines = [f'verity_log "starting {_quote(item.name)}"']
    if item.terminal:
        # exec replaces this shell; the halt only runs if exec itself fails
        lines.append(f"exec {item.start_command}")
        lines.append(f'verity_halt "{_quote(item.name)} failed to start"')
    elif item.backgrounded:
        lines.append(_render_guarded(f"{item.start_command} &", item.policy, f"start {item.name}"))
    else:
        lines.append(_render_guarded(item.start_command, item.policy, f"start {item.name}"))
    return "\n".join(lines)


def render_fragment(fragment: Fragment) -> str:
    parts = [FRAGMENT_MARKER.format(name=fragment.name)]
    parts.extend(render_item(i) for i in fragment.items)
    return "\n\n".join(parts)


@dataclass(frozen=True)
class InitScript:
    fragments: Tuple[Fragment, ...]

    def __post_init__(self) -> None:
        kinds = [f.kind for f in self.fragments]
        if kinds.count(FragmentKind.BASE) != 1 or kinds[:1] != [FragmentKind.BASE]:
            raise PackagingError("init script must start with exactly one base fragment")
        if kinds.count(FragmentKind.TERMINAL) != 1 or kinds[-1:] != [FragmentKind.TERMINAL]:
            raise PackagingError("init script must end with exactly one terminal fragment")
        names = [f.name for f in self.fragments]
        if len(set(names)) != len(names):
            raise PackagingError(f"duplicate fragments in init script: {names}")
        orders = [u.order for u in self.service_units()]
        if len(set(orders)) != len(orders):
            raise PackagingError(f"duplicate service start orders in init script: {orders}")
        terminal_units = [u for u in self.service_units() if u.terminal]
        if len(terminal_units) != 1 or self.fragments[-1].service is not terminal_units[0]:
            raise PackagingError("terminal fragment must carry the only terminal service unit")

    @property
    def fragment_names(self) -> Tuple[str, ...]:
        return tuple(f.name for f in self.fragments)

    def items(self) -> Iterator[Item]:
        for fragment in self.fragments:
            yield from fragment.items

    def service_units(self) -> Tuple[ServiceUnit, ...]:
        return tuple(i for i in self.items() if isinstance(i, ServiceUnit))

    def render(self) -> str:
        body = "\n\n".join(render_fragment(f) for f in self.fragments)
        return SCRIPT_HEADER + "\n" + body + "\n"
