"""
Execution gate - the single suspension point of a steppable run.

The runner awaits ``wait()`` before every node it must stop at. Controllers
drive the gate from other tasks with ``pause()``, ``resume()``, ``step()``
and ``release()``. A step grants exactly one pass while the pause stays
armed, so the following node stops again.
"""

import asyncio


class ExecutionGate:
    """Pause/step/resume primitive built on asyncio events."""

    def __init__(self) -> None:
        self._paused = False
        self._step_token = False  # single slot; a second step() before use is a no-op
        self._released = False
        self._wakeup = asyncio.Event()
        self._parked = asyncio.Event()

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def released(self) -> bool:
        return self._released

    @property
    def parked(self) -> bool:
        return self._parked.is_set()

    async def wait(self, force: bool = False) -> bool:
        """
        Block while paused.

        Args:
            force: Stop even when not paused (a breakpoint). Arms the pause.

        Returns:
            False when the gate was released and the run must stop,
            True when the caller may run the next node.
        """
        if force and not self._released:
            self._paused = True
        while self._paused and not self._step_token and not self._released:
            self._wakeup.clear()
            self._parked.set()
            await self._wakeup.wait()
        self._parked.clear()
        if self._released:
            return False
        if self._step_token:
            self._step_token = False
        return True

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        self._paused = False
        self._step_token = False
        self._parked.clear()
        self._wakeup.set()

    def step(self) -> bool:
        """Let exactly one node through. Returns False when not paused."""
        if not self._paused:
            return False
        self._step_token = True
        self._parked.clear()
        self._wakeup.set()
        return True

    def release(self) -> None:
        """Wake every waiter and make all further waits return False."""
        self._released = True
        self._wakeup.set()
        self._parked.set()

    def rearm(self) -> None:
        """Clear all state for a new run. Tasks already waiting keep waiting."""
        self._paused = False
        self._step_token = False
        self._released = False
        self._wakeup.clear()
        self._parked.clear()

    def finish(self) -> None:
        """Mark the run as done so ``wait_until_parked`` returns."""
        self._parked.set()

    async def wait_until_parked(self) -> None:
        """Return once the runner is suspended again or has finished."""
        await self._parked.wait()
