"""Transport capability the connection state machine drives."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Union

DataCallback = Callable[[Union[str, bytes]], None]
DisconnectCallback = Callable[[], None]


class Transport(Protocol):
    async def connect(
        self,
        address: str,
        on_disconnect: DisconnectCallback,
        on_data: DataCallback,
    ) -> None:
        """Open the link. Callbacks are invoked on the event loop thread."""

    async def send(self, message: str) -> None:
        ...

    async def disconnect(self) -> None:
        ...


@dataclass(frozen=True)
class DeviceTarget:
    address: str = ""
    name: Optional[str] = None
    mac_address: Optional[str] = None
    device_id: Optional[str] = None

    def resolve_address(self) -> str:
        for candidate in (self.address, self.mac_address, self.device_id):
            if candidate and candidate.strip():
                return candidate.strip()
        return ""


def resolve_target(target: Union[str, DeviceTarget, None]) -> DeviceTarget:
    if target is None:
        return DeviceTarget()
    if isinstance(target, DeviceTarget):
        return target
    return DeviceTarget(address=str(target))
