from math import inf

from anyio import BrokenResourceError, ClosedResourceError, WouldBlock
from anyio.streams.memory import (
    MemoryObjectReceiveStream as AnyioReceiver,
)
from anyio.streams.memory import (
    MemoryObjectSendStream as AnyioSender,
)
from anyio.streams.memory import (
    MemoryObjectStreamState as AnyioState,
)
from loguru import logger


class Sender[T](AnyioSender[T]):
    def clone_receiver(self) -> "Receiver[T]":
        """Constructs a Receiver sharing this Sender's buffer"""
        if self._closed:
            raise ClosedResourceError
        return Receiver(_state=self._state)

    def publish(self, item: T) -> bool:
        """
        Fire-and-forget send for status notifications. Never blocks and never
        raises: a full buffer or a departed receiver only drops the item.
        """
        try:
            self.send_nowait(item)
        except WouldBlock:
            logger.warning(f"Event buffer full, dropping {item}")
            return False
        except (BrokenResourceError, ClosedResourceError):
            logger.debug(f"No receiver for {item}")
            return False
        return True


class Receiver[T](AnyioReceiver[T]):
    def collect(self) -> list[T]:
        """Collect all currently available items from this receiver"""
        out: list[T] = []
        while True:
            try:
                out.append(self.receive_nowait())
            except WouldBlock:
                break
        return out

    async def receive_at_least(self, n: int) -> list[T]:
        out: list[T] = [await self.receive()]
        out.extend(self.collect())
        while len(out) < n:
            out.append(await self.receive())
            out.extend(self.collect())
        return out


class channel[T]:  # noqa: N801
    """Create a pair of asynchronous channels for communicating within the same process"""

    def __new__(cls, max_buffer_size: float = inf) -> tuple[Sender[T], Receiver[T]]:
        if max_buffer_size != inf and not isinstance(max_buffer_size, int):
            raise ValueError("max_buffer_size must be either an integer or math.inf")
        state = AnyioState[T](max_buffer_size)
        return Sender(_state=state), Receiver(_state=state)
