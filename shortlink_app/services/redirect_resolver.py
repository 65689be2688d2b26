"""
Redirect resolution.

States:
    RECEIVED -> RESOLVED -> REDIRECTED
    RECEIVED -> NOT_FOUND
    RECEIVED -> ERROR

The lookup is the only step on the response path. The click hand-off runs
after the 301 has been sent; its failures are logged and never reach the
client.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from shortlink_app.click_processor.pipeline import ClickPipeline
from shortlink_app.config import settings
from shortlink_app.logging_config import get_logger
from shortlink_app.queue.models import ClickObservation
from shortlink_app.schemas.records import LinkRecord
from shortlink_app.services.link_directory import LinkDirectory

logger = get_logger(__name__)


class RedirectState(Enum):
    RECEIVED = "received"
    RESOLVED = "resolved"
    REDIRECTED = "redirected"
    NOT_FOUND = "not_found"
    ERROR = "error"


@dataclass
class RedirectOutcome:
    code: str
    state: RedirectState = RedirectState.RECEIVED
    link: Optional[LinkRecord] = None
    error: Optional[str] = None


class RedirectResolver:
    """Looks up a short code under a latency budget and hands clicks off."""

    def __init__(
        self,
        directory: LinkDirectory,
        pipeline: ClickPipeline,
        timeout: float = None
    ):
        self.directory = directory
        self.pipeline = pipeline
        self.timeout = timeout if timeout is not None else settings.redirect_timeout

    async def resolve(self, code: str) -> RedirectOutcome:
        """
        Move a code from RECEIVED to RESOLVED, NOT_FOUND or ERROR.

        A lookup slower than the budget, or one that raises, ends in ERROR.
        It is not retried here; the client may retry.
        """
        outcome = RedirectOutcome(code=code)
        try:
            link = await asyncio.wait_for(self.directory.resolve(code), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"Redirect lookup for {code} exceeded {self.timeout}s")
            outcome.state = RedirectState.ERROR
            outcome.error = "timeout"
            return outcome
        except Exception as e:
            logger.exception(f"Redirect lookup for {code} failed: {e}")
            outcome.state = RedirectState.ERROR
            outcome.error = str(e)
            return outcome

        if link is None:
            outcome.state = RedirectState.NOT_FOUND
            return outcome

        outcome.state = RedirectState.RESOLVED
        outcome.link = link
        return outcome

    async def dispatch_click(self, outcome: RedirectOutcome, observation: ClickObservation) -> None:
        """
        Hand the click to the pipeline once the redirect has been sent.

        Never raises: a lost click is logged, the redirect already succeeded.
        """
        if outcome.state is not RedirectState.RESOLVED:
            return
        outcome.state = RedirectState.REDIRECTED
        try:
            await self.pipeline.submit(observation)
        except Exception as e:
            logger.error(f"Click on {outcome.code} (link {observation.link_id}) was not recorded: {e}")
