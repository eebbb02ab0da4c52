import asyncio
from typing import Awaitable, Callable, Iterable, List, Optional


async def cancel_and_wait(tasks: Iterable[asyncio.Task]) -> int:
    """Cancel every unfinished task and wait until all of them have settled."""
    task_list: List[asyncio.Task] = list(tasks)
    pending = [t for t in task_list if not t.done()]
    for t in pending:
        t.cancel()
    if task_list:
        await asyncio.gather(*task_list, return_exceptions=True)
    return len(pending)


async def run_tasks_with_cleanup(
    tasks: Iterable[asyncio.Task],
    cleanup: Optional[Callable[[], Awaitable[None]]] = None,
) -> None:
    task_list: List[asyncio.Task] = list(tasks)
    try:
        if task_list:
            await asyncio.gather(*task_list)
    except asyncio.CancelledError:
        pass
    finally:
        await cancel_and_wait(task_list)
        if cleanup is not None:
            await cleanup()
