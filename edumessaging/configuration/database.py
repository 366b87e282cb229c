import logging
import threading
from datetime import datetime, timezone
from typing import Dict, Optional

from azure.cosmos import ContainerProxy, CosmosClient, DatabaseProxy
from azure.core.exceptions import AzureError
from azure.identity import DefaultAzureCredential
from fastapi import Request

from edumessaging.configuration.config import Config
from edumessaging.validators.val_errors import ServiceUnavailableError

logger = logging.getLogger(__name__)


class StoreConnection:
    """
    Process-scoped ownership of the Cosmos client.

    Created once by the application lifespan and stored on ``app.state``.
    The client is established lazily and can be re-established after a
    failure; callers never see a half-built client.
    """

    def __init__(self, config=Config):
        self.config = config
        self._client: Optional[CosmosClient] = None
        self._database: Optional[DatabaseProxy] = None
        self._containers: Dict[str, ContainerProxy] = {}
        self._lock = threading.Lock()

    @property
    def is_connected(self) -> bool:
        return self._database is not None

    def _build_client(self) -> CosmosClient:
        credential = self.config.COSMOSDB_KEY or DefaultAzureCredential()
        return CosmosClient(
            url=self.config.COSMOSDB_ENDPOINT,
            credential=credential,
            connection_timeout=self.config.STORE_CONNECTION_TIMEOUT,
            retry_total=self.config.STORE_RETRY_TOTAL
        )

    def connect(self) -> None:
        with self._lock:
            if self._database is not None:
                return
            if not self.config.COSMOSDB_ENDPOINT:
                raise ServiceUnavailableError("Message store endpoint is not configured")
            try:
                client = self._build_client()
                database = client.get_database_client(self.config.COSMOSDB_DATABASE_NAME)
                containers = {
                    key: database.get_container_client(name)
                    for key, name in self.config.COSMOSDB_CONTAINER_NAME.items()
                }
            except (AzureError, ValueError) as e:
                logger.error(f"Failed to connect to Cosmos DB: {str(e)}")
                raise ServiceUnavailableError() from e
            self._client = client
            self._containers = containers
            # Set last: a non-None _database means the containers are ready
            self._database = database
            logger.info("Connected to Cosmos DB database %s", self.config.COSMOSDB_DATABASE_NAME)

    def close(self) -> None:
        with self._lock:
            self._database = None
            if self._client is not None:
                try:
                    self._client.__exit__(None, None, None)
                except AzureError as e:
                    logger.error(f"Error closing Cosmos DB client: {str(e)}")
            self._client = None
            self._containers = {}
            logger.info("Disconnected from Cosmos DB")

    def get_container(self, container_key: str) -> ContainerProxy:
        """
        Return the container client for ``container_key`` (messages, schools),
        connecting first if needed.
        """
        if container_key not in self.config.COSMOSDB_CONTAINER_NAME:
            raise ValueError(f"Container {container_key} not found")
        if self._database is None:
            self.connect()
        container = self._containers.get(container_key)
        if container is None:
            # Closed concurrently by the lifespan shutdown
            raise ServiceUnavailableError()
        return container

    def health_check(self) -> dict:
        checked_at = datetime.now(timezone.utc).isoformat()
        try:
            if self._database is None:
                self.connect()
            database = self._database
            if database is None:
                raise ServiceUnavailableError()
            database.read(timeout=self.config.STORE_READ_TIMEOUT)
            return {
                "status": "healthy",
                "connected": True,
                "database": self.config.COSMOSDB_DATABASE_NAME,
                "timestamp": checked_at
            }
        except (AzureError, ServiceUnavailableError) as e:
            detail = e.detail if isinstance(e, ServiceUnavailableError) else str(e)
            return {
                "status": "unhealthy",
                "connected": False,
                "error": detail,
                "timestamp": checked_at
            }


def get_store(request: Request) -> StoreConnection:
    """Dependency returning the store owned by the running application."""
    return request.app.state.store


def get_messages_container(request: Request) -> ContainerProxy:
    return get_store(request).get_container("messages")


def get_schools_container(request: Request) -> ContainerProxy:
    return get_store(request).get_container("schools")
