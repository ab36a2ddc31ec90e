"""IMAP connection management - handles connection setup and cleanup."""

import asyncio
import os
import time
from dataclasses import dataclass
from typing import FrozenSet, Optional, Union

import aioimaplib

from mailstate.utils.config_manager import AccountConfig, ConfigManager
from mailstate.utils.errors import (
    IMAPError,
    InvalidCredentialsError,
    MissingCredentialsError,
    NetworkError,
    NetworkTimeoutError,
)
from mailstate.utils.logging import async_log_call, get_logger

from .constants import IMAPResponse, Timeouts

logger = get_logger(__name__)

PASSWORD_ENV_VAR = "MAILSTATE_IMAP_PASSWORD"

Client = Union[aioimaplib.IMAP4_SSL, aioimaplib.IMAP4]


@dataclass
class ConnectionStats:
    """Tracks IMAP connection metrics."""

    connections_created: int = 0
    reconnections: int = 0
    operations_count: int = 0
    failed_operations: int = 0
    last_operation_time: Optional[float] = None
    total_operation_time: float = 0.0

    def record_operation(self, duration: float) -> None:
        """Record an operation's duration.

        Args:
            duration: Time taken for the operation in seconds
        """
        self.operations_count += 1
        self.total_operation_time += duration
        self.last_operation_time = time.time()


class IMAPConnection:
    """Manages an IMAP connection lifecycle.

    Each (re)connect bumps ``generation``. A folder selected on one generation
    is gone on the next, so callers holding a selection compare generations
    instead of trusting a silently replaced client.
    """

    def __init__(
        self,
        config_manager: Optional[ConfigManager] = None,
        password: Optional[str] = None,
    ):
        """Initialize IMAP connection with config manager.

        Args:
            config_manager: Configuration manager instance (the shared one if omitted)
            password: Login password; falls back to the MAILSTATE_IMAP_PASSWORD variable
        """
        self.config_manager = config_manager or ConfigManager()
        self._password = password
        self._client: Optional[Client] = None
        self._lock = asyncio.Lock()
        self._connection_created_at: Optional[float] = None
        self._connection_ttl = self.account.connection_ttl
        self._stats = ConnectionStats()
        self.generation = 0

    @property
    def account(self) -> AccountConfig:
        return self.config_manager.config.account

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def get_client(self) -> Client:
        """Get active IMAP client instance.

        Returns:
            Active aioimaplib client instance

        Raises:
            MissingCredentialsError: If no password is available
            InvalidCredentialsError: If credentials are invalid
            NetworkTimeoutError: If connecting times out
            NetworkError: If there is a network issue
            IMAPError: If other IMAP errors occur
        """
        return await self._ensure_connection()

    def check_response(self, response, operation: str) -> None:
        """Check IMAP response and raise error if not OK.

        Args:
            response: aioimaplib response object
            operation: Description of the operation performed

        Raises:
            IMAPError: If the response indicates failure
        """
        if response.result != IMAPResponse.OK:
            self._stats.failed_operations += 1
            error_msg = response.lines[-1] if response.lines else "No response"
            if isinstance(error_msg, (bytes, bytearray)):
                error_msg = bytes(error_msg).decode("utf-8", errors="replace")

            raise IMAPError(
                f"IMAP operation failed: {operation}",
                details={
                    "response": str(error_msg),
                    "result": response.result,
                    "operation": operation,
                    "server": self.account.imap_server,
                },
            )

    async def capabilities(self) -> FrozenSet[str]:
        """Capabilities advertised by the server, upper-cased."""
        client = await self.get_client()
        return frozenset(name.upper() for name in client.protocol.capabilities)

    def _is_connection_expired(self) -> bool:
        """Check if the IMAP connection has expired based on TTL.

        Returns:
            True if connection is expired, False otherwise
        """
        if self._client is None or self._connection_created_at is None:
            return True

        elapsed = time.time() - self._connection_created_at

        return elapsed > self._connection_ttl

    async def _ensure_connection(self) -> Client:
        """Ensure an active IMAP connection, reconnecting once the TTL expires."""
        async with self._lock:
            if self._client is not None and not self._is_connection_expired():
                return self._client

            if self._client is not None:
                logger.info(
                    "IMAP connection expired, reconnecting",
                    extra={
                        "age_seconds": round(time.time() - self._connection_created_at, 1),
                        "ttl": self._connection_ttl,
                        "operations": self._stats.operations_count,
                    },
                )
                self._stats.reconnections += 1
                await self._logout_quietly()

            self._client = await self._connect()
            self._connection_created_at = time.time()
            self._stats.connections_created += 1
            self.generation += 1

        return self._client

    def get_stats(self) -> ConnectionStats:
        """Get current connection statistics."""
        return self._stats

    def _resolve_password(self) -> str:
        password = self._password or os.environ.get(PASSWORD_ENV_VAR)
        if not password:
            raise MissingCredentialsError(
                "No IMAP password supplied",
                details={"username": self.account.username, "env_var": PASSWORD_ENV_VAR},
            )
        return password

    async def _connect(self) -> Client:
        """Connect and log in to the IMAP server.

        Raises:
            MissingCredentialsError: If credentials are missing
            InvalidCredentialsError: If authentication fails
            NetworkTimeoutError: If connection times out
            NetworkError: If other network errors occur
        """
        config = self.account
        start_time = time.time()

        if not config.imap_server or not config.username:
            raise MissingCredentialsError(
                "IMAP server and username must be configured",
                details={"server": config.imap_server, "username": config.username},
            )
        password = self._resolve_password()

        try:
            logger.info(
                "Connecting to IMAP server",
                extra={"server": config.imap_server, "port": config.imap_port},
            )

            client_class = aioimaplib.IMAP4_SSL if config.use_tls else aioimaplib.IMAP4
            client = client_class(
                host=config.imap_server,
                port=config.imap_port,
                timeout=config.network_timeout,
            )

            await asyncio.wait_for(
                client.wait_hello_from_server(), timeout=Timeouts.IMAP_CONNECT
            )

            response = await asyncio.wait_for(
                client.login(config.username, password), timeout=Timeouts.IMAP_LOGIN
            )

            if response.result != IMAPResponse.OK:
                raise InvalidCredentialsError(
                    "IMAP authentication failed",
                    details={"server": config.imap_server, "username": config.username},
                )

            logger.info(
                "IMAP connection established",
                extra={
                    "server": config.imap_server,
                    "username": config.username,
                    "duration_seconds": round(time.time() - start_time, 2),
                },
            )

            return client

        except asyncio.TimeoutError as e:
            logger.error(
                f"IMAP connection timed out after {time.time() - start_time:.2f}s"
            )
            raise NetworkTimeoutError(
                "IMAP connection timeout", details={"server": config.imap_server}
            ) from e

        except InvalidCredentialsError:
            logger.warning(
                "IMAP authentication failed",
                extra={"server": config.imap_server, "username": config.username},
            )
            raise

        except aioimaplib.AioImapException as e:
            raise IMAPError(
                f"IMAP connection error: {str(e)}",
                details={"server": config.imap_server},
            ) from e

        except OSError as e:
            raise NetworkError(
                f"Failed to connect to IMAP server: {str(e)}",
                details={"server": config.imap_server},
            ) from e

    async def _logout_quietly(self) -> None:
        try:
            await asyncio.wait_for(self._client.logout(), timeout=5.0)
        except (asyncio.TimeoutError, aioimaplib.AioImapException, OSError) as e:
            logger.debug(f"Error closing IMAP connection: {str(e)}")

    @async_log_call
    async def close_connection(self) -> None:
        """Close the IMAP connection."""
        async with self._lock:
            if self._client:
                try:
                    await self._logout_quietly()
                    logger.debug("IMAP connection closed")
                finally:
                    self._client = None
                    self._connection_created_at = None

    ## Context Manager Helpers

    async def __aenter__(self):
        """Enter async context manager."""
        await self._ensure_connection()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Exit async context manager."""
        await self.close_connection()
