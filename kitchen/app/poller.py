import logging
from typing import Any, Awaitable, Callable, NamedTuple, Optional

from .errors import RemoteUnavailable
from .models import Job
from .source import StatusSource

logger = logging.getLogger("letmecook-kitchen")


class PollResult(NamedTuple):
    jobs: Optional[list[Job]] = None
    error: Optional[RemoteUnavailable] = None
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.jobs is not None


class RemotePoller:
    """Fetches the authoritative job list, one request at a time.

    A poll requested while another is still running is skipped rather than
    queued. ``before_fetch`` runs inside the same guard, ahead of the fetch.
    """

    def __init__(
        self,
        source: StatusSource,
        before_fetch: Optional[Callable[[], Awaitable[Any]]] = None,
    ):
        self.source = source
        self.before_fetch = before_fetch
        self.failures = 0
        self._in_flight = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    async def poll(self) -> PollResult:
        if self._in_flight:
            logger.debug("Poll already in flight; skipping")
            return PollResult(skipped=True)
        self._in_flight = True
        try:
            if self.before_fetch is not None:
                await self.before_fetch()
            jobs = await self.source.list_jobs()
        except RemoteUnavailable as e:
            return self._failed(e)
        except Exception as e:
            logger.exception("Unexpected status source failure")
            return self._failed(RemoteUnavailable(f"{type(e).__name__}: {e}"))
        finally:
            self._in_flight = False
        self.failures = 0
        return PollResult(jobs=jobs)

    def _failed(self, error: RemoteUnavailable) -> PollResult:
        self.failures += 1
        logger.warning(
            "Status source unavailable (%d in a row): %s", self.failures, error
        )
        return PollResult(error=error)
