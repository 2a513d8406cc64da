from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Literal, Mapping, Optional

from .errors import InputError

ExecutorKind = Literal["process", "thread"]


@dataclass(frozen=True)
class ModelerOptions:
    """Settings shared by every group of a :func:`modeler` call.

    Preprocessing
    -------------
    add_zero       : force y=0 at x=0 for every group
    check_negative : replace negative responses with 0
    max_as_last    : hold y at its observed maximum after the peak

    Execution
    ---------
    parallel           : fit groups in a worker pool
    workers            : pool size (default: half of the CPUs)
    executor           : "process" or "thread"
    concurrent_methods : run the methods of one group in a thread pool
    maxit              : per-method iteration budget
    metric             : loss minimised by every method
    hessian_step       : relative step of the numerical Hessian
    optimizer_options  : per-method keyword overrides, {"powell": {...}}
    """

    add_zero: bool = False
    check_negative: bool = False
    max_as_last: bool = False
    parallel: bool = False
    workers: Optional[int] = None
    executor: ExecutorKind = "process"
    concurrent_methods: bool = False
    maxit: Optional[int] = None
    metric: str = "sse"
    hessian_step: float = 1e-4
    optimizer_options: Mapping[str, Dict[str, Any]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.executor not in ("process", "thread"):
            raise InputError(
                f"executor must be 'process' or 'thread', got {self.executor!r}."
            )
        if self.workers is not None and int(self.workers) < 1:
            raise InputError("workers must be a positive integer.")
        if self.maxit is not None and int(self.maxit) < 1:
            raise InputError("maxit must be a positive integer.")
        if not self.hessian_step > 0:
            raise InputError("hessian_step must be positive.")

    def replace(self, **changes: Any) -> "ModelerOptions":
        return modeler_options(self, **changes)

    def for_method(self, method: str) -> Dict[str, Any]:
        """Keyword options handed to one optimizer."""
        opts: Dict[str, Any] = {"maxit": self.maxit}
        opts.update(dict(self.optimizer_options.get(method, {})))
        return opts


def modeler_options(base: Optional[ModelerOptions] = None, **changes: Any) -> ModelerOptions:
    """Build (or update) a ModelerOptions, rejecting unknown fields."""
    known = {f.name for f in fields(ModelerOptions)}
    unknown = sorted(set(changes) - known)
    if unknown:
        raise InputError(
            f"Unknown option(s) {unknown}. Available: {tuple(sorted(known))}"
        )
    base = ModelerOptions() if base is None else base
    return replace(base, **changes)
