"""Dependency graph and execution levels for workflow steps.

Steps never declare edges explicitly: a step depends on every other step whose
name it references through ``@name`` tokens. This module derives that graph,
assigns each step a topological level and groups steps that can run together.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from litestar_pilot.core.refs import get_step_dependencies

if TYPE_CHECKING:
    from collections.abc import Sequence

    from litestar_pilot.core.definition import Step

__all__ = ["StepGraph", "compute_step_levels", "group_steps_by_level"]


class StepGraph:
    """Graph representation of a workflow's step dependencies.

    Attributes:
        steps: The steps in declaration order.
        dependencies: Map of step name to the names it references.
        _dependents: Reverse adjacency, step name to the steps referencing it.
    """

    def __init__(self, steps: Sequence[Step]) -> None:
        """Initialize the graph from a list of steps.

        Args:
            steps: The workflow's steps in declaration order.
        """
        self.steps = list(steps)
        names = [step.name for step in self.steps]
        self.dependencies: dict[str, list[str]] = {
            step.name: get_step_dependencies(step, names) for step in self.steps
        }
        self._dependents: dict[str, list[str]] = {name: [] for name in names}
        for name, deps in self.dependencies.items():
            for dep in deps:
                self._dependents[dep].append(name)

    def get_dependents(self, name: str) -> list[str]:
        """Get the steps that reference ``name``.

        Args:
            name: Name of the step.

        Returns:
            Names of the dependent steps.
        """
        return self._dependents.get(name, [])

    def levels(self) -> dict[str, int]:
        """Compute the topological level of every step.

        A step without dependencies sits at level 0; any other step sits one
        level above its deepest dependency. Levels are memoized across the
        walk and each root walk carries its own visited set, so a step met
        again on its own recursion stack counts as level 0 instead of looping.
        Use :meth:`validate` to reject such cycles up front.

        Returns:
            Map of step name to level.

        Example:
            >>> graph.levels()
            {'fetch': 0, 'summarize': 1}
        """
        levels: dict[str, int] = {}

        def get_level(name: str, visited: set[str]) -> int:
            if name in levels:
                return levels[name]
            if name in visited:
                return 0
            visited.add(name)
            deps = self.dependencies.get(name, [])
            level = 1 + max(get_level(dep, visited) for dep in deps) if deps else 0
            levels[name] = level
            return level

        for step in self.steps:
            get_level(step.name, set())
        return levels

    def group_by_level(self) -> list[list[Step]]:
        """Group steps into levels that may run concurrently.

        Returns:
            Ordered list of levels; each level keeps declaration order. Empty
            levels are dropped.
        """
        levels = self.levels()
        max_level = max(levels.values(), default=-1)
        grouped: list[list[Step]] = []
        for level in range(max_level + 1):
            members = [step for step in self.steps if levels[step.name] == level]
            if members:
                grouped.append(members)
        return grouped

    def find_cycles(self) -> list[list[str]]:
        """Find dependency cycles with a three colour depth first search.

        Returns:
            Each cycle as a path that starts and ends on the same step.
        """
        white, grey, black = 0, 1, 2
        colour = {step.name: white for step in self.steps}
        stack: list[str] = []
        cycles: list[list[str]] = []

        def visit(name: str) -> None:
            colour[name] = grey
            stack.append(name)
            for dep in self.dependencies.get(name, []):
                if colour[dep] == grey:
                    cycles.append([*stack[stack.index(dep) :], dep])
                elif colour[dep] == white:
                    visit(dep)
            stack.pop()
            colour[name] = black

        for step in self.steps:
            if colour[step.name] == white:
                visit(step.name)
        return cycles

    def validate(self) -> list[str]:
        """Validate the dependency graph.

        Returns:
            List of validation error messages. Empty if valid.
        """
        return [f"Dependency cycle detected: {' -> '.join(cycle)}" for cycle in self.find_cycles()]


def compute_step_levels(steps: Sequence[Step]) -> dict[str, int]:
    """Compute ``name -> level`` for ``steps``.

    Args:
        steps: The workflow's steps.

    Returns:
        Map of step name to topological level.
    """
    return StepGraph(steps).levels()


def group_steps_by_level(steps: Sequence[Step]) -> list[list[Step]]:
    """Group ``steps`` into concurrently runnable levels.

    Args:
        steps: The workflow's steps.

    Returns:
        Ordered list of levels.
    """
    return StepGraph(steps).group_by_level()
