"""End-to-end tests for ConversionOrchestrator against a fake catalog."""

from unittest.mock import MagicMock, patch

import httplib2
import pytest

from clients.youtube import YouTubeClient
from conftest import FakeCatalog, item
from core.errors import (QuotaExceededError, TransientError,
                         UnauthorizedError)
from core.matcher import CatalogMatcher, MatchCoordinator
from core.models import (Aborted, AuthorizationState, Failed, FailureKind,
                         RolledBack, Service, Stage, Success, TrackDescriptor)
from core.orchestrator import (ConversionInProgressError,
                               ConversionOrchestrator, ConversionState)
from core.writer import PlaylistWriter


def make_orchestrator(catalog, auth):
    coordinator = MatchCoordinator(CatalogMatcher(catalog), max_workers=2)
    return ConversionOrchestrator(coordinator, PlaylistWriter(catalog), auth)


def test_scenario_a_success(job, tracks, auth):
    catalog = FakeCatalog(results={"Song A": item("vidA")})
    orchestrator = make_orchestrator(catalog, auth)

    outcome = orchestrator.run(job, tracks)

    assert outcome == Success(playlist_id="P1", hit_count=1, miss_count=1)
    assert catalog.added == [("P1", ["vidA"])]
    assert orchestrator.history == [
        ConversionState.SEARCHING,
        ConversionState.MATCHED,
        ConversionState.CREATING,
        ConversionState.CREATED,
        ConversionState.INSERTING,
        ConversionState.SUCCESS,
    ]
    assert orchestrator.state is ConversionState.IDLE


def test_scenario_b_unauthorized_search_aborts(job, tracks, auth):
    catalog = FakeCatalog(results={"Song A": UnauthorizedError(Service.YOUTUBE, "search", "HTTP 401")})

    outcome = make_orchestrator(catalog, auth).run(job, tracks)

    assert isinstance(outcome, Aborted)
    assert outcome.reason.kind is FailureKind.UNAUTHORIZED
    assert outcome.reason.service is Service.YOUTUBE
    assert catalog.created == []
    assert "YouTube" in outcome.message


def test_scenario_c_insert_failure_rolls_back(job, auth):
    catalog = FakeCatalog(results={"A": item("itemA"), "B": item("itemB")},
                          add=TransientError(Service.YOUTUBE, "add to playlist", "HTTP 500"))

    outcome = make_orchestrator(catalog, auth).run(job, [TrackDescriptor("A"), TrackDescriptor("B")])

    assert isinstance(outcome, RolledBack)
    assert outcome.playlist_id == "P1"
    assert outcome.reason.kind is FailureKind.TRANSIENT
    assert outcome.compensated is True
    assert catalog.deleted == ["P1"]


def test_scenario_d_create_quota_exceeded(job, tracks, auth):
    catalog = FakeCatalog(results={"Song A": item("vidA")},
                          create=QuotaExceededError(Service.YOUTUBE, "create playlist", "HTTP 403"))

    outcome = make_orchestrator(catalog, auth).run(job, tracks)

    assert outcome == Failed(Stage.CREATE, outcome.reason)
    assert outcome.reason.kind is FailureKind.QUOTA_EXCEEDED
    assert catalog.deleted == []
    assert "quota" in outcome.message


def test_quota_during_search_aborts(job, tracks, auth):
    catalog = FakeCatalog(results={"Song B": QuotaExceededError(Service.YOUTUBE, "search")})

    outcome = make_orchestrator(catalog, auth).run(job, tracks)

    assert isinstance(outcome, Aborted)
    assert outcome.reason.kind is FailureKind.QUOTA_EXCEEDED
    assert catalog.created == []


def test_destination_not_authorized_makes_no_calls(job, tracks):
    catalog = FakeCatalog(results={"Song A": item("vidA")})
    auth = AuthorizationState.for_user("user-1", Service.SPOTIFY)

    outcome = make_orchestrator(catalog, auth).run(job, tracks)

    assert isinstance(outcome, Aborted)
    assert outcome.reason.kind is FailureKind.UNAUTHORIZED
    assert catalog.searches == []
    assert catalog.created == []


def test_no_hits_creates_nothing(job, tracks, auth):
    catalog = FakeCatalog()
    orchestrator = make_orchestrator(catalog, auth)

    outcome = orchestrator.run(job, tracks)

    assert isinstance(outcome, Failed)
    assert outcome.stage is Stage.SEARCH
    assert outcome.reason.kind is FailureKind.NOT_FOUND
    assert catalog.created == []
    assert orchestrator.history[-1] is ConversionState.SEARCH_FAILED


def test_running_twice_creates_two_playlists(job, tracks, auth):
    catalog = FakeCatalog(results={"Song A": item("vidA")})
    orchestrator = make_orchestrator(catalog, auth)

    first = orchestrator.run(job, tracks)
    second = orchestrator.run(job, tracks)

    assert isinstance(first, Success)
    assert isinstance(second, Success)
    assert first.playlist_id != second.playlist_id
    assert len(catalog.created) == 2
    # Fresh search results on every run
    assert len(catalog.searches) == 4


class TestSuccessHooks:
    def test_called_once_on_success(self, job, tracks, auth):
        catalog = FakeCatalog(results={"Song A": item("vidA")})
        orchestrator = make_orchestrator(catalog, auth)
        calls = []
        orchestrator.add_success_hook(lambda j, o: calls.append((j, o)))

        outcome = orchestrator.run(job, tracks)

        assert calls == [(job, outcome)]

    @pytest.mark.parametrize("catalog_kwargs", [
        {"results": {"Song A": UnauthorizedError(Service.YOUTUBE, "search")}},
        {"results": {"Song A": item("vidA")}, "create": TransientError(Service.YOUTUBE, "create playlist")},
        {"results": {"Song A": item("vidA")}, "add": TransientError(Service.YOUTUBE, "add to playlist")},
    ])
    def test_not_called_on_failure(self, job, tracks, auth, catalog_kwargs):
        orchestrator = make_orchestrator(FakeCatalog(**catalog_kwargs), auth)
        calls = []
        orchestrator.add_success_hook(lambda j, o: calls.append(o))

        outcome = orchestrator.run(job, tracks)

        assert not isinstance(outcome, Success)
        assert calls == []

    def test_failing_hook_does_not_change_outcome(self, job, tracks, auth):
        catalog = FakeCatalog(results={"Song A": item("vidA")})
        orchestrator = make_orchestrator(catalog, auth)

        def broken(job, outcome):
            raise RuntimeError("listing cache unavailable")

        orchestrator.add_success_hook(broken)

        assert isinstance(orchestrator.run(job, tracks), Success)


def youtube_service(unreachable_titles):
    """Discovery-service mock whose searches fail at the host lookup for some titles."""
    service = MagicMock()

    def list_search(**kwargs):
        request = MagicMock()
        if any(title in kwargs["q"] for title in unreachable_titles):
            request.execute.side_effect = httplib2.ServerNotFoundError(
                "Unable to find the server at youtube.googleapis.com")
        else:
            request.execute.return_value = {"items": [{"id": {"videoId": "vidB"}, "snippet": {}}]}
        return request

    service.search.return_value.list.side_effect = list_search
    service.playlists.return_value.insert.return_value.execute.return_value = {"id": "PLnew"}
    return service


@patch("clients.youtube.time.sleep")
def test_unreachable_host_is_a_miss_not_a_crash(sleep, job, tracks, auth):
    service = youtube_service({"Song A"})
    client = YouTubeClient(service_factory=lambda: service)
    orchestrator = ConversionOrchestrator(
        MatchCoordinator(CatalogMatcher(client), max_workers=2), PlaylistWriter(client), auth)

    outcome = orchestrator.run(job, tracks)

    assert outcome == Success(playlist_id="PLnew", hit_count=1, miss_count=1)
    inserted = [c.kwargs["body"]["snippet"]["resourceId"]["videoId"]
                for c in service.playlistItems.return_value.insert.call_args_list]
    assert inserted == ["vidB"]


def test_rejects_reentrant_run(job, tracks):
    catalog = FakeCatalog(results={"Song A": item("vidA")})

    class ReentrantAuth:
        def is_authorized(self, user_id, service):
            orchestrator.run(job, tracks)

    orchestrator = make_orchestrator(catalog, ReentrantAuth())

    with pytest.raises(ConversionInProgressError):
        orchestrator.run(job, tracks)

    assert catalog.searches == []
