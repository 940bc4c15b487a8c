"""Tests for the parameter set (convoy.params)."""

from __future__ import annotations

import copy

import pytest


class TestBlueprintParams:
    """Validation and derived values."""

    def test_derived_defaults(self, sample_params):
        assert sample_params.registry == "europe-west1-docker.pkg.dev/acme-prod/apps"
        assert sample_params.registry_host == "europe-west1-docker.pkg.dev"
        assert sample_params.network == "acme-prod-net"
        assert sample_params.environment == "production"
        assert sample_params.docker_host == "ssh://deploy@203.0.113.10"

    def test_image_ref_bare_name_uses_registry(self, sample_params):
        api = sample_params.get_service("api")
        assert sample_params.image_ref(api) == "europe-west1-docker.pkg.dev/acme-prod/apps/api:latest"

    def test_image_ref_full_reference_kept(self, sample_params):
        cache = sample_params.get_service("cache")
        assert sample_params.image_ref(cache) == "redis:7-alpine"

    def test_image_ref_registry_with_port_gets_tag(self, params_data):
        from convoy.params import parse_params

        params_data["services"][1]["image"] = "registry.local:5000/team/web"
        params = parse_params(params_data)
        web = params.get_service("web")
        assert params.image_ref(web) == "registry.local:5000/team/web:latest"

    def test_image_ref_digest_kept(self, params_data):
        from convoy.params import parse_params

        params_data["services"][2]["image"] = "redis@sha256:abc"
        params = parse_params(params_data)
        assert params.image_ref(params.get_service("cache")) == "redis@sha256:abc"

    def test_volume_and_secret_names(self, sample_params):
        assert sample_params.volume_names() == ["cache-data"]
        assert sample_params.secret_names() == ["DATABASE_URL"]
        assert [s.name for s in sample_params.public_services()] == ["api", "web"]

    def test_health_url_from_domain(self, sample_params):
        assert sample_params.health_url() == "https://app.example.com/health"

    def test_health_url_explicit(self, params_data):
        from convoy.params import parse_params

        params_data["health"] = {"url": "https://status.example.com/ok"}
        assert parse_params(params_data).health_url() == "https://status.example.com/ok"

    def test_health_url_without_domain(self, params_data):
        from convoy.params import parse_params

        params_data["proxy"] = {"http_port": 8080}
        assert parse_params(params_data).health_url() == "http://203.0.113.10:8080/health"

    def test_unknown_service(self, sample_params):
        from convoy.core.errors import ParamsError

        with pytest.raises(ParamsError, match="Unknown service"):
            sample_params.get_service("db")

    def test_ssh_port_in_docker_host(self):
        from convoy.params import RemoteHost

        assert RemoteHost(address="vm", ssh_user="ops", ssh_port=2222).docker_host == "ssh://ops@vm:2222"


class TestValidation:
    """Invalid parameter sets are rejected with ParamsError."""

    @pytest.mark.parametrize(
        ("mutate", "message"),
        [
            (lambda d: d.update(project_id="Bad_ID"), "project_id"),
            (lambda d: d.update(zone="us-central1-a"), "not in region"),
            (lambda d: d["services"].append(copy.deepcopy(d["services"][0])), "duplicate service"),
            (lambda d: d["services"][0].update(depends_on=["db"]), "unknown"),
            (lambda d: d["services"][2].update(depends_on=["api"]), "dependency cycle"),
            (lambda d: d["services"][0].update(name="proxy", depends_on=[]), "reserved"),
            (lambda d: d["services"][0].update(secrets=["database-url"]), "UPPER_SNAKE"),
            (lambda d: d["services"][1].update(port=None), "needs a port"),
            (lambda d: d["services"][1].update(path_prefix="web"), "path_prefix"),
            (lambda d: d.update(services=[]), "services"),
        ],
    )
    def test_rejects(self, params_data, mutate, message):
        from convoy.core.errors import ParamsError
        from convoy.params import parse_params

        mutate(params_data)
        with pytest.raises(ParamsError, match=message):
            parse_params(params_data)

    def test_path_prefix_trailing_slash_stripped(self, params_data):
        from convoy.params import parse_params

        params_data["services"][0]["path_prefix"] = "/api/"
        assert parse_params(params_data).get_service("api").path_prefix == "/api"

    def test_top_level_must_be_mapping(self):
        from convoy.core.errors import ParamsError
        from convoy.params import parse_params

        with pytest.raises(ParamsError, match="mapping"):
            parse_params(["not", "a", "mapping"])

    def test_proxy_name_allowed_when_proxy_disabled(self, params_data):
        from convoy.params import parse_params

        params_data["proxy"] = {"enabled": False}
        params_data["services"][1]["name"] = "proxy"
        assert parse_params(params_data).get_service("proxy").port == 3000


class TestLoading:
    def test_load_params(self, params_file):
        from convoy.params import load_params

        params = load_params(params_file)
        assert params.project_id == "acme-prod"
        assert len(params.services) == 3

    def test_missing_file(self, tmp_path):
        from convoy.core.errors import ParamsError
        from convoy.params import load_params

        with pytest.raises(ParamsError, match="not found") as exc_info:
            load_params(tmp_path / "nope.yml")
        assert exc_info.value.context.path.endswith("nope.yml")

    def test_invalid_yaml(self, tmp_path):
        from convoy.core.errors import ParamsError
        from convoy.params import load_params

        path = tmp_path / "broken.yml"
        path.write_text("project_id: [unclosed\n", encoding="utf-8")
        with pytest.raises(ParamsError, match="invalid YAML"):
            load_params(path)

    def test_dump_round_trips(self, sample_params, tmp_path):
        from convoy.params import dump_params, load_params

        path = tmp_path / "out.yml"
        path.write_text(dump_params(sample_params), encoding="utf-8")
        assert load_params(path) == sample_params

    def test_example_params_valid(self):
        import yaml

        from convoy.params import dump_params, example_params, parse_params

        params = example_params()
        assert parse_params(yaml.safe_load(dump_params(params))).project_id == "acme-prod"


def test_with_image_tag_only_touches_built_services(sample_params):
    from convoy.params import with_image_tag

    tagged = with_image_tag(sample_params, "abc123")
    assert tagged.get_service("api").tag == "abc123"
    assert tagged.get_service("web").tag == "abc123"
    assert tagged.get_service("cache").tag == "latest"
    # Original untouched
    assert sample_params.get_service("api").tag == "latest"
