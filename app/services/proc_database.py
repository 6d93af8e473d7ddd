from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol, Union

Row = dict[str, Any]
ResultSet = list[Row]


@dataclass(frozen=True)
class Procedure:
    """Stored procedure as read from the database catalog."""

    name: str
    definition: str | None
    parameters: tuple[str, ...] = ()


@dataclass(frozen=True)
class CallStatus:
    """Trailing status packet a ``CALL`` appends after its result sets."""

    affected_rows: int = 0
    last_insert_id: int | None = None


CallResult = list[Union[ResultSet, CallStatus]]


class ProcedureDatabase(Protocol):
    async def fetch_catalog(self) -> list[Procedure]:
        ...

    async def call(self, procedure: str, args: Sequence[Any]) -> CallResult:
        """Run ``CALL procedure(args...)``.

        Returns every result set in order followed by one ``CallStatus``.
        Failures are raised as ``DatabaseCallError``.
        """
        ...

    async def close(self) -> None:
        ...
