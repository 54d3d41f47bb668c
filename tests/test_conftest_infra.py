"""Tests for shared test infrastructure in conftest.py.

Validates that the in-memory ``FakeDevOpsClient`` behaves like the real
client across the whole ``DevOpsClient`` protocol, including the
name-keyed lookups and create calls, so the provisioning and runner
suites exercise real behaviour rather than failing inside the fake.
"""

from __future__ import annotations

from azdo_runner.client import DevOpsClient
import pytest

from tests.conftest import FakeClock, FakeDevOpsClient, make_config, make_request

# ===========================================================================
# FakeDevOpsClient call recording
# ===========================================================================


@pytest.mark.unit
class TestFakeDevOpsClientRecording:
    """Every protocol method records its call name and keyword arguments."""

    def test_satisfies_protocol(self, fake_client: FakeDevOpsClient) -> None:
        assert isinstance(fake_client, DevOpsClient)

    def test_show_project_records_name(self, fake_client: FakeDevOpsClient) -> None:
        assert fake_client.show_project("blue-agent-bookworm") is None
        assert fake_client.calls == [("show_project", {"name": "blue-agent-bookworm"})]

    def test_create_then_show_project(self, fake_client: FakeDevOpsClient) -> None:
        fake_client.create_project("p", description="d", visibility="public")
        project = fake_client.show_project("p")

        assert project is not None
        assert project.name == "p"
        assert fake_client.names() == ["create_project", "show_project"]
        assert fake_client.calls[0][1] == {
            "name": "p",
            "description": "d",
            "visibility": "public",
        }

    def test_service_endpoint_round_trip(self, fake_client: FakeDevOpsClient) -> None:
        assert fake_client.find_service_endpoint("conn") is None
        fake_client.create_github_service_endpoint(
            "conn", github_url="https://github.com/clemlesne/blue-agent"
        )
        endpoint = fake_client.find_service_endpoint("conn")

        assert endpoint is not None
        assert endpoint.url == "https://github.com/clemlesne/blue-agent"
        assert fake_client.count("find_service_endpoint") == 2

    def test_pipeline_round_trip(self, fake_client: FakeDevOpsClient) -> None:
        assert fake_client.show_pipeline("build") is None
        fake_client.create_pipeline(
            "build",
            description="d",
            branch="main",
            repository_url="https://github.com/clemlesne/blue-agent",
            service_connection_id="endpoint-1",
            yaml_path="test/pipeline/build.yaml",
        )
        pipeline = fake_client.show_pipeline("build")

        assert pipeline is not None
        assert pipeline.yaml_path == "test/pipeline/build.yaml"
        assert fake_client.calls[-1] == ("show_pipeline", {"name": "build"})

    def test_count_ignores_other_calls(self, fake_client: FakeDevOpsClient) -> None:
        fake_client.list_queues()
        fake_client.show_project("p")
        assert fake_client.count("list_queues") == 1
        assert fake_client.count("create_project") == 0


# ===========================================================================
# FakeDevOpsClient run script
# ===========================================================================


@pytest.mark.unit
class TestFakeDevOpsClientRuns:
    """Run statuses follow ``run_script``, repeating the last entry."""

    def test_last_status_repeats(self) -> None:
        client = FakeDevOpsClient(run_script=[("inProgress", None), ("completed", "failed")])
        run = client.run_pipeline(1, commit_id="abc", parameters={"flavor": "bookworm"})

        statuses = [client.show_run(run.id).status for _ in range(4)]
        assert statuses == ["inProgress", "completed", "completed", "completed"]

    def test_new_run_restarts_script(self) -> None:
        client = FakeDevOpsClient(run_script=[("inProgress", None), ("completed", "failed")])
        first = client.run_pipeline(1, commit_id="abc", parameters={})
        client.show_run(first.id)
        second = client.run_pipeline(1, commit_id="abc", parameters={})
        assert client.show_run(second.id).status == "inProgress"


# ===========================================================================
# Factories and clock
# ===========================================================================


@pytest.mark.unit
class TestFactories:
    """make_request/make_config defaults and the manual clock."""

    def test_make_request_defaults(self) -> None:
        request = make_request()
        assert request.project_name == "blue-agent-bookworm"
        assert request.missing_fields() == []

    def test_make_config_overrides(self) -> None:
        assert make_config(pool_name="self-hosted").pool_name == "self-hosted"

    def test_clock_sleep_advances_time(self) -> None:
        clock = FakeClock(start=10.0)
        clock.sleep(5)
        assert clock() == 15.0
        assert clock.sleeps == [5]
