import pytest
from unittest.mock import MagicMock, patch

from azure.core import MatchConditions
from azure.core.exceptions import ServiceRequestError
from azure.cosmos.exceptions import CosmosAccessConditionFailedError, CosmosResourceNotFoundError

from edumessaging.configuration.config import Config
from edumessaging.services.svc_school import SchoolService, default_school_email

@pytest.fixture
def mock_db():
    return MagicMock()

@pytest.fixture
def existing_school():
    return {
        "id": "SCH1",
        "school_name": "Nordic Academy",
        "email": "admissions@nordic.se",
        "programs": ["P1"],
        "created_at": "2024-01-01T00:00:00+00:00",
        "updated_at": "2024-01-01T00:00:00+00:00",
        "_etag": "\"etag-1\""
    }

def test_default_school_email():
    assert default_school_email("Nordic Academy") == "info@nordicacademy.se"
    assert default_school_email("  Stockholm  Tech\tSchool ") == "info@stockholmtechschool.se"

class TestSchoolService:
    def test_creates_missing_school(self, mock_db):
        mock_db.read_item.side_effect = CosmosResourceNotFoundError(status_code=404, message="Not found")

        school = SchoolService.upsert_school(mock_db, "SCH1", "Nordic Academy", "P1")

        assert school.email == "info@nordicacademy.se"
        assert school.programs == ["P1"]
        created = mock_db.create_item.call_args[1]['body']
        assert created["id"] == "SCH1"
        assert created["programs"] == ["P1"]
        assert mock_db.create_item.call_args[1]['timeout'] == Config.SCHOOL_ENRICHMENT_TIMEOUT

    def test_creates_school_without_program(self, mock_db):
        mock_db.read_item.side_effect = CosmosResourceNotFoundError(status_code=404, message="Not found")

        school = SchoolService.upsert_school(mock_db, "SCH1", "Nordic Academy", None)

        assert school.programs == []

    def test_appends_new_program_with_etag(self, mock_db, existing_school):
        mock_db.read_item.return_value = existing_school
        mock_db.replace_item.side_effect = lambda **kwargs: kwargs['body']

        school = SchoolService.upsert_school(mock_db, "SCH1", "Nordic Academy", "P2")

        assert school.programs == ["P1", "P2"]
        # An existing email is left alone
        assert school.email == "admissions@nordic.se"
        kwargs = mock_db.replace_item.call_args[1]
        assert kwargs['etag'] == "\"etag-1\""
        assert kwargs['match_condition'] == MatchConditions.IfNotModified
        mock_db.create_item.assert_not_called()

    def test_known_program_is_not_duplicated(self, mock_db, existing_school):
        mock_db.read_item.return_value = existing_school

        school = SchoolService.upsert_school(mock_db, "SCH1", "Nordic Academy", "P1")

        assert school.programs == ["P1"]
        mock_db.replace_item.assert_not_called()

    def test_enrichment_retries_then_succeeds(self, mock_db, existing_school):
        mock_db.read_item.side_effect = [ServiceRequestError("timeout"), existing_school]
        mock_db.replace_item.side_effect = lambda **kwargs: kwargs['body']

        with patch.object(Config, 'SCHOOL_ENRICHMENT_ATTEMPTS', 2):
            SchoolService.enrich_school_task(mock_db, "SCH1", "Nordic Academy", "P2")

        assert mock_db.read_item.call_count == 2
        assert mock_db.replace_item.call_count == 1

    def test_enrichment_retries_after_concurrent_update(self, mock_db, existing_school):
        mock_db.read_item.side_effect = lambda **kwargs: dict(existing_school, programs=["P1"])
        mock_db.replace_item.side_effect = [
            CosmosAccessConditionFailedError(status_code=412, message="Precondition failed"),
            existing_school
        ]

        with patch.object(Config, 'SCHOOL_ENRICHMENT_ATTEMPTS', 2):
            SchoolService.enrich_school_task(mock_db, "SCH1", "Nordic Academy", "P2")

        assert mock_db.replace_item.call_count == 2

    def test_enrichment_drops_after_attempts(self, mock_db):
        mock_db.read_item.side_effect = ServiceRequestError("store down")

        with patch.object(Config, 'SCHOOL_ENRICHMENT_ATTEMPTS', 3), \
             patch('edumessaging.services.svc_school.log_warning') as mock_warning:
            SchoolService.enrich_school_task(mock_db, "SCH1", "Nordic Academy", "P1")

        assert mock_db.read_item.call_count == 3
        assert mock_warning.call_args[0][0] == "School enrichment dropped"

    def test_enrichment_never_raises_on_unexpected_error(self, mock_db):
        mock_db.read_item.side_effect = RuntimeError("bug")

        SchoolService.enrich_school_task(mock_db, "SCH1", "Nordic Academy", "P1")

        assert mock_db.read_item.call_count == 1
