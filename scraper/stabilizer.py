"""Scroll-until-stable controller for lazily loaded listing pages."""
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class StabilizationState(Enum):
    SCROLLING = 'scrolling'
    SETTLING = 'settling'
    CONFIRMING = 'confirming'
    STABLE = 'stable'
    TIMED_OUT = 'timed_out'


@dataclass
class ScrollConfig:
    """Tunables for the scroll loop. Durations are in seconds."""
    step_px: int = 120
    step_delay: float = 0.08
    settle_interval: float = 2.0
    confirm_top_wait: float = 1.0
    confirm_wait: float = 10.0
    final_wait: float = 2.0
    max_duration: float = 90.0
    stability_window: int = 2
    chunk_viewports: float = 2.0


@dataclass
class StabilizationResult:
    state: StabilizationState
    link_count: int
    rounds: int
    elapsed: float

    @property
    def stable(self) -> bool:
        return self.state is StabilizationState.STABLE


class StabilizationController:
    """
    Drives a rendering surface until its listing link count stops growing.

    The surface must provide ``scroll_y()``, ``viewport_height()``,
    ``content_height()``, ``scroll_to(y)`` and ``count_links()``.

    Each round scrolls one chunk toward the bottom of the content loaded so
    far, settles, then samples the link count. After ``stability_window``
    unchanged samples, a confirming pass jumps to the top, then to the very
    bottom, and waits; only a matching count there is accepted as stable.
    A count that moved resets the window. Hitting ``max_duration`` ends the
    loop with whatever has loaded.
    """

    def __init__(
        self,
        config: Optional[ScrollConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.config = config or ScrollConfig()
        self.clock = clock
        self.sleep = sleep

    def run(self, surface) -> StabilizationResult:
        """
        Scroll the surface until stable or until the time ceiling.

        Args:
            surface: Rendering surface exposing scroll and link operations

        Returns:
            StabilizationResult with the final link count
        """
        config = self.config
        start = self.clock()
        deadline = start + config.max_duration

        state = StabilizationState.SCROLLING
        previous_count = 0
        sampled_count = 0
        stable_rounds = 0
        rounds = 0

        logger.info("Scrolling until listing count stabilizes")

        while state not in (StabilizationState.STABLE, StabilizationState.TIMED_OUT):
            if self.clock() > deadline:
                logger.warning(
                    f"Max scroll time of {config.max_duration}s reached with "
                    f"{previous_count} links"
                )
                state = StabilizationState.TIMED_OUT
                break

            if state is StabilizationState.SCROLLING:
                self._scroll_chunk(surface, deadline)
                state = StabilizationState.SETTLING

            elif state is StabilizationState.SETTLING:
                self.sleep(config.settle_interval)
                sampled_count = surface.count_links()
                rounds += 1
                elapsed = self.clock() - start

                if sampled_count == previous_count:
                    stable_rounds += 1
                    logger.info(
                        f"{elapsed:.0f}s: {sampled_count} links (stable {stable_rounds})"
                    )
                    if stable_rounds >= config.stability_window:
                        state = StabilizationState.CONFIRMING
                    else:
                        state = StabilizationState.SCROLLING
                else:
                    logger.info(
                        f"{elapsed:.0f}s: {sampled_count} links "
                        f"(+{sampled_count - previous_count} new)"
                    )
                    previous_count = sampled_count
                    stable_rounds = 0
                    state = StabilizationState.SCROLLING

            elif state is StabilizationState.CONFIRMING:
                confirmed_count = self._confirm(surface)
                if confirmed_count == sampled_count:
                    logger.info(f"Confirmed stable at {confirmed_count} links")
                    state = StabilizationState.STABLE
                else:
                    logger.info(
                        f"Confirmation found {confirmed_count - sampled_count} more links, "
                        f"continuing"
                    )
                    previous_count = confirmed_count
                    stable_rounds = 0
                    state = StabilizationState.SCROLLING

        self.sleep(config.final_wait)
        total = surface.count_links()
        elapsed = self.clock() - start
        logger.info(f"Scroll complete: {total} links after {rounds} rounds in {elapsed:.1f}s")

        return StabilizationResult(
            state=state,
            link_count=total,
            rounds=rounds,
            elapsed=elapsed,
        )

    def _scroll_chunk(self, surface, deadline: float) -> None:
        """Scroll in small steps up to chunk_viewports screens further down."""
        config = self.config
        viewport = surface.viewport_height()
        target = max(surface.content_height() - viewport, 0)
        position = surface.scroll_y()
        chunk_end = min(position + int(viewport * config.chunk_viewports), target)

        while position < chunk_end and self.clock() <= deadline:
            position = min(position + config.step_px, chunk_end)
            surface.scroll_to(position)
            self.sleep(config.step_delay)

    def _confirm(self, surface) -> int:
        """Top-to-bottom pass that lets late-loading listings appear."""
        logger.info(f"Waiting {self.config.confirm_wait}s for late-loading listings")
        surface.scroll_to(0)
        self.sleep(self.config.confirm_top_wait)
        surface.scroll_to(surface.content_height())
        self.sleep(self.config.confirm_wait)
        return surface.count_links()
