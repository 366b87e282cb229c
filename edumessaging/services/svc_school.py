import re
from datetime import datetime, timezone
from typing import Optional

from azure.core.exceptions import AzureError
from azure.cosmos import ContainerProxy
from fastapi import HTTPException

from edumessaging.configuration.config import Config
from edumessaging.configuration.monitor import log_event, log_exception, log_metric, log_warning, start_span
from edumessaging.models.mod_school import School
from edumessaging.repositories.rep_school import SchoolRepository


def default_school_email(school_name: str) -> str:
    """info@<name without whitespace>.se, used until the school supplies its own address."""
    domain = re.sub(r"\s+", "", school_name.lower())
    return f"info@{domain}.se"


class SchoolService:
    @staticmethod
    def upsert_school(
        db: ContainerProxy,
        school_id: str,
        school_name: str,
        program_id: Optional[str],
        timeout: float = Config.SCHOOL_ENRICHMENT_TIMEOUT
    ) -> School:
        """Create the school if absent, otherwise record the program id on it"""
        with start_span("upsert_school", attributes={"school_id": school_id}):
            now = datetime.now(timezone.utc).isoformat()
            existing = SchoolRepository.find_by_id(db, school_id, timeout)

            if existing is None:
                school_dict = {
                    "id": school_id,
                    "school_name": school_name,
                    "email": default_school_email(school_name),
                    "programs": [program_id] if program_id else [],
                    "created_at": now,
                    "updated_at": now
                }
                SchoolRepository.insert(db, school_dict, timeout)
                log_event("School created", {"school_id": school_id})
                return School(**school_dict)

            programs = existing.get("programs") or []
            if program_id and program_id not in programs:
                existing["programs"] = programs + [program_id]
                existing["updated_at"] = now
                existing = SchoolRepository.replace_if_unchanged(db, existing, timeout)
                log_event("School program added", {"school_id": school_id, "program_id": program_id})
            return School(**existing)

    @staticmethod
    def enrich_school_task(
        db: ContainerProxy,
        school_id: str,
        school_name: str,
        program_id: Optional[str]
    ) -> None:
        """
        Background entry point scheduled after a message is created.

        Retries up to SCHOOL_ENRICHMENT_ATTEMPTS times, each attempt bounded
        by SCHOOL_ENRICHMENT_TIMEOUT, then drops the update. Nothing is
        raised: the message that triggered it is already stored.
        """
        attempts = max(1, Config.SCHOOL_ENRICHMENT_ATTEMPTS)
        for attempt in range(1, attempts + 1):
            try:
                SchoolService.upsert_school(db, school_id, school_name, program_id)
                log_metric("school_enrichment_attempts", attempt, {"school_id": school_id})
                return
            except (AzureError, HTTPException) as e:
                log_warning("School enrichment attempt failed", {
                    "school_id": school_id,
                    "attempt": attempt,
                    "error": str(e)
                })
            except Exception as e:
                log_exception(e, {"operation": "enrich_school_task", "school_id": school_id})
                break
        log_warning("School enrichment dropped", {"school_id": school_id, "program_id": program_id})
