import asyncio
from typing import Any, Generator, Generic, Optional, TypeVar

T = TypeVar("T")


class Completion(Generic[T]):
    """Single-assignment result channel for one pipeline run.

    The first ``resolve`` or ``reject`` settles it; any later attempt returns
    ``False`` and leaves the settled value alone.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._future: asyncio.Future = (loop or asyncio.get_running_loop()).create_future()

    @property
    def settled(self) -> bool:
        return self._future.done()

    def resolve(self, value: T) -> bool:
        if self._future.done():
            return False
        self._future.set_result(value)
        return True

    def reject(self, error: BaseException) -> bool:
        if self._future.done():
            return False
        self._future.set_exception(error)
        return True

    def __await__(self) -> Generator[Any, None, T]:
        return self._future.__await__()
