"""Step execution for litestar-pilot.

Exports the dispatcher that runs one step per action kind along with the
skip conditions, output schema checks and the expression sandbox it uses.
"""

from __future__ import annotations

from litestar_pilot.steps.conditions import evaluate_skip_if
from litestar_pilot.steps.dispatcher import StepDispatcher, StepOutcome
from litestar_pilot.steps.sandbox import FunctionRegistry, SandboxEvaluator, run_code
from litestar_pilot.steps.schema import validate_output

__all__ = [
    "FunctionRegistry",
    "SandboxEvaluator",
    "StepDispatcher",
    "StepOutcome",
    "evaluate_skip_if",
    "run_code",
    "validate_output",
]
