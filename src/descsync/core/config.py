"""Run configuration passed explicitly to the reconciliation driver."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from descsync.core.decision import DEFAULT_PREFIX, OverwriteMode


class SourceSystem(str, Enum):
    """Systems the agent can write to; the value is the catalog service name."""

    BIGQUERY = "bigquery"
    ATHENA = "athena"
    DENODO = "denodo"


@dataclass(frozen=True)
class ReconcileConfig:
    """
    Configuration for one reconciliation run.

    Attributes:
        service_name: Originating system tag used to filter root assets.
        overwrite_mode: Run-wide overwrite policy.
        prefix: Marker prepended to every description written by this agent.
        created_by: Optional creator filter for root assets.
        database_allow_list: When non-empty, only these databases are reconciled.
        skip_unchanged: Do not rewrite values that would stay identical.
        dry_run: Compute decisions without issuing any write.
        max_parallel: Number of schema subtrees reconciled concurrently.
    """

    service_name: str
    overwrite_mode: OverwriteMode = OverwriteMode.IF_EMPTY
    prefix: str = DEFAULT_PREFIX
    created_by: str | None = None
    database_allow_list: tuple[str, ...] = field(default_factory=tuple)
    skip_unchanged: bool = True
    dry_run: bool = False
    max_parallel: int = 1

    def __post_init__(self) -> None:
        if not self.prefix:
            object.__setattr__(self, "prefix", DEFAULT_PREFIX)
        if self.max_parallel < 1:
            raise ValueError("max_parallel must be >= 1")
        object.__setattr__(
            self, "database_allow_list", tuple(n for n in self.database_allow_list if n)
        )
