"""Base transport interface for VoxRelay.

Transports handle the raw I/O connection lifecycle of one WebSocket leg.
They are responsible for connecting, sending, receiving, keepalive pings,
and disconnecting.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class BaseTransport(ABC):
    """Abstract base class for transport connections.

    Transports manage the network connection to either the telephony provider
    or the voice service. They handle connection lifecycle and raw message I/O.
    """

    @abstractmethod
    async def connect(self, **kwargs) -> None:
        """Establish the transport connection.

        Args:
            **kwargs: Transport-specific connection parameters.
        """
        ...

    @abstractmethod
    async def send(self, data: bytes | str) -> None:
        """Send data over the transport.

        Args:
            data: Raw bytes or string to send.
        """
        ...

    @abstractmethod
    async def recv(self) -> bytes | str:
        """Receive the next message from the transport.

        Returns:
            Raw bytes or string received.

        Raises:
            ConnectionClosed: If the connection is closed.
        """
        ...

    @abstractmethod
    async def ping(self) -> None:
        """Send a heartbeat ping without waiting for the pong."""
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the transport connection gracefully."""
        ...

    @abstractmethod
    def is_connected(self) -> bool:
        """Check if the transport is currently connected."""
        ...
