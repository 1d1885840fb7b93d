"""
Settle-all fan-out helpers.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Dict, Optional


@dataclass(frozen=True)
class Outcome:
    """Result of one branch of a fan-out: either a value or an error."""
    ok: bool
    value: Any = None
    error: Optional[BaseException] = None

    def value_or(self, default: Any) -> Any:
        return self.value if self.ok else default


async def settle_all(**calls: Awaitable[Any]) -> Dict[str, Outcome]:
    """Await every call to completion and tag each result by name.

    A failing branch never cancels or short-circuits the others.
    """
    names = list(calls)
    results = await asyncio.gather(*calls.values(), return_exceptions=True)

    outcomes: Dict[str, Outcome] = {}
    for name, result in zip(names, results):
        if isinstance(result, Exception):
            outcomes[name] = Outcome(ok=False, error=result)
        elif isinstance(result, BaseException):
            # cancellation and interpreter exits are not branch failures
            raise result
        else:
            outcomes[name] = Outcome(ok=True, value=result)
    return outcomes
