from typing import Optional

from azure.core import MatchConditions
from azure.cosmos import ContainerProxy
from azure.cosmos.exceptions import CosmosResourceNotFoundError

from edumessaging.repositories.rep_message import store_call


class SchoolRepository:
    @staticmethod
    def find_by_id(db: ContainerProxy, school_id: str, timeout: float) -> Optional[dict]:
        try:
            with store_call("read school"):
                return db.read_item(item=school_id, partition_key=school_id, timeout=timeout)
        except CosmosResourceNotFoundError:
            return None

    @staticmethod
    def insert(db: ContainerProxy, document: dict, timeout: float) -> dict:
        with store_call("insert school"):
            return db.create_item(body=document, timeout=timeout)

    @staticmethod
    def replace_if_unchanged(db: ContainerProxy, document: dict, timeout: float) -> dict:
        """Replace a school only if nobody modified it since it was read (etag match)."""
        with store_call("replace school"):
            return db.replace_item(
                item=document["id"],
                body=document,
                etag=document.get("_etag"),
                match_condition=MatchConditions.IfNotModified,
                timeout=timeout
            )
