"""
Executor tests: URL construction, PUT handling, LRO polling and whole-deployment runs
against a fake HTTP session.
"""
import datetime
import io
import json
import os
import threading

import pytest
import requests
from requests.structures import CaseInsensitiveDict
from rich.console import Console

from armapply.client import ArmClient
from armapply.config import Settings
from armapply.credentials import AccessToken, StaticTokenCredential
from armapply.errors import (
    ApplyError,
    CancelledError,
    CredentialError,
    ParentResolutionError,
    PollingError,
    ResponseError,
)
from armapply.executor import Executor, apply, plan, provider_path, resource_url, scope_url
from armapply.models.resource import ApplyState, Deployment, ResourceSpec
from armapply.naming.catalog import Catalog
from armapply.naming.generator import unique_string
from armapply.parsers.documents import load_deployment
from armapply.poller import Poller

FIXTURES = os.path.join(os.path.dirname(__file__), "fixtures")
ENDPOINT = "https://arm.test"
SUB = "00000000-0000-0000-0000-000000000001"
GROUP_URL = f"{ENDPOINT}/subscriptions/{SUB}/resourceGroups/rg-demo"


def _response(status, body=None, headers=None):
    resp = requests.Response()
    resp.status_code = status
    resp._content = json.dumps(body).encode("utf-8") if body is not None else b""
    resp.headers = CaseInsensitiveDict(headers or {})
    return resp


class FakeSession:
    """Answers from a route table; a list of responses is consumed in order, the last one repeats."""

    def __init__(self, routes=None, default=None):
        self.headers = {}
        self.routes = routes or {}
        self.default = default
        self.calls = []

    def request(self, method, url, data=None, headers=None, timeout=None):
        self.calls.append({
            "method": method,
            "url": url,
            "body": json.loads(data) if data else None,
            "headers": headers,
        })
        answer = self.routes.get((method, url), self.default)
        if answer is None:
            raise AssertionError(f"unexpected request {method} {url}")
        if isinstance(answer, Exception):
            raise answer
        if isinstance(answer, list):
            return answer.pop(0) if len(answer) > 1 else answer[0]
        return answer

    def urls(self, method=None):
        return [c["url"] for c in self.calls if method is None or c["method"] == method]


def _settings(**kwargs):
    kwargs.setdefault("endpoint", ENDPOINT)
    kwargs.setdefault("poll_interval", 0)
    return Settings(**kwargs)


def _bar(name="main"):
    return ResourceSpec(type="Microsoft.Foo/bars", api_version="2023-01-01",
                        spec={"location": "westeurope"}, name=name)


# --------------------------------------------------------- URLs
class TestUrls:
    def test_scope_url(self):
        assert scope_url(ENDPOINT, "s") == f"{ENDPOINT}/subscriptions/s"
        assert scope_url(ENDPOINT, "s", "g") == f"{ENDPOINT}/subscriptions/s/resourceGroups/g"

    def test_top_level(self):
        url = resource_url(ENDPOINT, SUB, "rg-demo", _bar())
        assert url == f"{GROUP_URL}/providers/Microsoft.Foo/bars/main?api-version=2023-01-01"

    def test_resource_group_path(self):
        rg = ResourceSpec(type="Microsoft.Resources/resourceGroups", api_version="2021-04-01", name="rg-demo")
        url = resource_url(ENDPOINT, SUB, "", rg)
        assert url == f"{ENDPOINT}/subscriptions/{SUB}/resourcegroups/rg-demo?api-version=2021-04-01"

    def test_child_spliced_from_parent(self):
        child = ResourceSpec(type="A/B/C", api_version="1", name="y", parent="A/B/x")
        assert provider_path(child) == "providers/A/B/x/C/y"

    def test_parent_type_mismatch(self):
        child = ResourceSpec(type="A/B/C", api_version="1", name="y", parent="Z/Q/x")
        with pytest.raises(ParentResolutionError, match="not a valid parent"):
            provider_path(child)

    def test_grandchild_nests_through_known_parents(self):
        a = ResourceSpec(type="A/B", api_version="1", name="x")
        b = ResourceSpec(type="A/B/C", api_version="1", name="y", parent="A/B/x")
        c = ResourceSpec(type="A/B/C/D", api_version="1", name="z", parent="A/B/C/y")
        known = {r.qualified_name: r for r in (a, b, c)}
        assert provider_path(c, known) == "providers/A/B/x/C/y/D/z"


# --------------------------------------------------------- client
class TestArmClient:
    def test_headers_and_body(self):
        session = FakeSession(default=_response(200, {}))
        client = ArmClient(StaticTokenCredential("tok"), settings=_settings(), session=session)
        client.put(f"{ENDPOINT}/x", {"a": 1})
        call = session.calls[0]
        assert call["method"] == "PUT"
        assert call["body"] == {"a": 1}
        assert call["headers"]["Authorization"] == "Bearer tok"
        assert call["headers"]["Content-Type"] == "application/json"
        assert session.headers["User-Agent"].startswith("armapply/")

    def test_token_cached(self):
        class CountingCredential:
            calls = 0

            def get_token(self, *scopes):
                CountingCredential.calls += 1
                assert scopes == (f"{ENDPOINT}/.default",)
                return AccessToken("t", 2 ** 40)

        client = ArmClient(CountingCredential(), settings=_settings(),
                           session=FakeSession(default=_response(200, {})))
        client.get(f"{ENDPOINT}/a")
        client.get(f"{ENDPOINT}/b")
        assert CountingCredential.calls == 1

    def test_credential_failure_wrapped(self):
        class Broken:
            def get_token(self, *scopes):
                raise RuntimeError("no login")

        client = ArmClient(Broken(), settings=_settings(), session=FakeSession(default=_response(200)))
        with pytest.raises(CredentialError, match="no login"):
            client.get(f"{ENDPOINT}/a")


# --------------------------------------------------------- errors
class TestResponseError:
    def test_parses_error_envelope(self):
        body = json.dumps({"error": {"code": "InvalidTemplate", "message": "bad location"}})
        err = ResponseError(400, body, "PUT", f"{ENDPOINT}/x")
        assert err.error_code == "InvalidTemplate"
        assert err.error_message == "bad location"
        text = str(err)
        assert "RESPONSE 400" in text
        assert "ERROR CODE: InvalidTemplate" in text
        assert "PUT https://arm.test/x" in text

    def test_plain_body(self):
        err = ResponseError(502, "bad gateway")
        assert err.error_code is None
        assert str(err).endswith("bad gateway")


# --------------------------------------------------------- single resource
class TestApplyResource:
    def setup_method(self):
        self.url = f"{GROUP_URL}/providers/Microsoft.Foo/bars/main?api-version=2023-01-01"
        self.out = io.StringIO()
        self.catalog = Catalog.load(os.path.join(FIXTURES, "names.yaml"))

    def _executor(self, session, cancel=None):
        settings = _settings()
        client = ArmClient(StaticTokenCredential("tok"), settings=settings, session=session)
        console = Console(file=self.out, highlight=False, width=200)
        return Executor(client, self.catalog, settings=settings, console=console, cancel=cancel)

    def test_sync_200(self):
        session = FakeSession({("PUT", self.url): _response(200, {"id": "main"})})
        result = self._executor(session).apply_resource(_bar(), SUB, "rg-demo")
        assert result.state is ApplyState.APPLIED
        assert result.status_code == 200
        assert result.body == {"id": "main"}
        assert session.calls[0]["body"] == {"location": "westeurope"}
        output = self.out.getvalue()
        assert "applying main..." in output
        assert "applied main in " in output

    def test_sync_200_non_json_body(self):
        resp = _response(200)
        resp._content = b"OK"
        session = FakeSession({("PUT", self.url): resp})
        result = self._executor(session).apply_resource(_bar(), SUB, "rg-demo")
        assert result.state is ApplyState.APPLIED
        assert result.body is None

    def test_date_in_loaded_spec(self, tmp_path):
        f = tmp_path / "bar.yaml"
        f.write_text(
            "name: main\ntype: Microsoft.Foo/bars\napiVersion: '2023-01-01'\n"
            "spec:\n  properties:\n    start: 2024-01-01\n"
        )
        resource = load_deployment(str(f), SUB, "rg-demo").resources[0]
        session = FakeSession({("PUT", self.url): _response(200, {})})
        result = self._executor(session).apply_resource(resource, SUB, "rg-demo")
        assert result.state is ApplyState.APPLIED
        assert session.calls[0]["body"] == {"properties": {"start": "2024-01-01"}}

    def test_date_in_built_spec(self):
        resource = _bar()
        resource.spec = {"properties": {"start": datetime.date(2024, 1, 1)}}
        session = FakeSession({("PUT", self.url): _response(200, {})})
        result = self._executor(session).apply_resource(resource, SUB, "rg-demo")
        assert result.state is ApplyState.APPLIED
        assert session.calls[0]["body"] == {"properties": {"start": "2024-01-01"}}

    def test_lro_async_operation_header(self):
        op = f"{ENDPOINT}/operations/1"
        session = FakeSession({
            ("PUT", self.url): _response(201, {}, {"Azure-AsyncOperation": op}),
            ("GET", op): [_response(200, {"status": "InProgress"}), _response(200, {"status": "Succeeded"})],
            ("GET", self.url): _response(200, {"id": "main", "properties": {"provisioningState": "Succeeded"}}),
        })
        result = self._executor(session).apply_resource(_bar(), SUB, "rg-demo")
        assert result.state is ApplyState.APPLIED
        assert result.status_code == 201
        assert result.body["id"] == "main"
        assert session.urls("GET") == [op, op, self.url]

    def test_lro_location_header(self):
        loc = f"{ENDPOINT}/locations/1"
        session = FakeSession({
            ("PUT", self.url): _response(201, None, {"Location": loc}),
            ("GET", loc): [_response(202), _response(202), _response(200, {"id": "main"})],
        })
        result = self._executor(session).apply_resource(_bar(), SUB, "rg-demo")
        assert result.body == {"id": "main"}
        assert session.urls("GET") == [loc, loc, loc]

    def test_lro_provisioning_state(self):
        session = FakeSession({
            ("PUT", self.url): _response(201, {"properties": {"provisioningState": "Accepted"}}),
            ("GET", self.url): [
                _response(200, {"properties": {"provisioningState": "Updating"}}),
                _response(200, {"properties": {"provisioningState": "succeeded"}}),
            ],
        })
        result = self._executor(session).apply_resource(_bar(), SUB, "rg-demo")
        assert result.state is ApplyState.APPLIED
        assert len(session.urls("GET")) == 2

    def test_201_without_provisioning_state_is_done(self):
        session = FakeSession({("PUT", self.url): _response(201, {"id": "main"})})
        result = self._executor(session).apply_resource(_bar(), SUB, "rg-demo")
        assert result.state is ApplyState.APPLIED
        assert session.urls("GET") == []

    def test_lro_failed(self):
        op = f"{ENDPOINT}/operations/1"
        failure = {"status": "Failed", "error": {"code": "Conflict", "message": "boom"}}
        session = FakeSession({
            ("PUT", self.url): _response(201, {}, {"Azure-AsyncOperation": op}),
            ("GET", op): _response(200, failure),
        })
        with pytest.raises(ApplyError) as exc_info:
            self._executor(session).apply_resource(_bar(), SUB, "rg-demo")
        err = exc_info.value
        assert isinstance(err.cause, PollingError)
        assert err.cause.status == "Failed"
        assert err.cause.body == failure
        assert err.result.state is ApplyState.FAILED

    def test_unexpected_status(self):
        body = {"error": {"code": "InvalidResourceName", "message": "nope"}}
        session = FakeSession({("PUT", self.url): _response(400, body)})
        with pytest.raises(ApplyError, match="failed applying resource main") as exc_info:
            self._executor(session).apply_resource(_bar(), SUB, "rg-demo")
        cause = exc_info.value.cause
        assert isinstance(cause, ResponseError)
        assert cause.status_code == 400
        assert cause.error_code == "InvalidResourceName"

    def test_202_is_unexpected(self):
        session = FakeSession({("PUT", self.url): _response(202)})
        with pytest.raises(ApplyError) as exc_info:
            self._executor(session).apply_resource(_bar(), SUB, "rg-demo")
        assert isinstance(exc_info.value.cause, ResponseError)

    def test_transport_error_wrapped(self):
        session = FakeSession({("PUT", self.url): requests.ConnectionError("refused")})
        with pytest.raises(ApplyError, match="refused"):
            self._executor(session).apply_resource(_bar(), SUB, "rg-demo")

    def test_cancelled_before_request(self):
        cancel = threading.Event()
        cancel.set()
        session = FakeSession(default=_response(200, {}))
        with pytest.raises(ApplyError) as exc_info:
            self._executor(session, cancel=cancel).apply_resource(_bar(), SUB, "rg-demo")
        assert isinstance(exc_info.value.cause, CancelledError)
        assert session.calls == []


# --------------------------------------------------------- poller
class TestPoller:
    def setup_method(self):
        self.url = f"{ENDPOINT}/r?api-version=1"

    def _client(self, session):
        return ArmClient(StaticTokenCredential("tok"), settings=_settings(), session=session)

    def test_strategy_selection(self):
        client = self._client(FakeSession())
        both = _response(201, {}, {"Azure-AsyncOperation": "a", "Location": "l"})
        assert Poller(client, both, self.url).strategy == "async-operation"
        assert Poller(client, _response(201, {}, {"Location": "l"}), self.url).strategy == "location"
        assert Poller(client, _response(201, {}), self.url).strategy == "body"

    def test_cancelled_while_polling(self):
        cancel = threading.Event()
        cancel.set()
        session = FakeSession()
        resp = _response(201, {}, {"Location": f"{ENDPOINT}/loc"})
        poller = Poller(self._client(session), resp, self.url, interval=30, cancel=cancel)
        with pytest.raises(CancelledError):
            poller.poll_until_done()
        assert session.calls == []

    def test_canceled_terminal_state(self):
        resp = _response(201, {"properties": {"provisioningState": "Canceled"}})
        poller = Poller(self._client(FakeSession()), resp, self.url)
        assert poller.done()
        with pytest.raises(PollingError, match="Canceled"):
            poller.poll_until_done()

    def test_poll_error_status(self):
        loc = f"{ENDPOINT}/loc"
        session = FakeSession({("GET", loc): _response(500, None)})
        poller = Poller(self._client(session), _response(201, {}, {"Location": loc}), self.url, interval=0)
        with pytest.raises(ResponseError):
            poller.poll_until_done()


# --------------------------------------------------------- deployments
class TestApplyDeployment:
    def setup_method(self):
        self.out = io.StringIO()
        self.catalog = Catalog.load(os.path.join(FIXTURES, "names.yaml"))

    def _run(self, deployment, session, **settings):
        console = Console(file=self.out, highlight=False, width=200)
        return apply(deployment, StaticTokenCredential("tok"), catalog=self.catalog,
                     settings=_settings(**settings), console=console, session=session)

    def test_group_and_child_resource(self, tmp_path):
        (tmp_path / "group.yaml").write_text(
            "name: rg-demo\ntype: Microsoft.Resources/resourceGroups\n"
            "apiVersion: '2021-04-01'\nspec:\n  location: westeurope\n"
        )
        (tmp_path / "bar.yaml").write_text(
            "alias: web\ntype: Microsoft.Foo/bars\napiVersion: '2023-01-01'\n"
            "spec:\n  location: westeurope\n"
        )
        deployment = load_deployment(str(tmp_path), SUB)
        session = FakeSession(default=_response(200, {}))
        results = self._run(deployment, session)

        name = "web-" + unique_string(SUB, "rg-demo", "web")
        assert session.urls("PUT") == [
            f"{ENDPOINT}/subscriptions/{SUB}/resourcegroups/rg-demo?api-version=2021-04-01",
            f"{GROUP_URL}/providers/Microsoft.Foo/bars/{name}?api-version=2023-01-01",
        ]
        assert [r.state for r in results] == [ApplyState.APPLIED, ApplyState.APPLIED]
        assert results[1].resource.name == name
        assert "applied all in " in self.out.getvalue()

    def test_fixture_deployment(self):
        deployment = load_deployment(os.path.join(FIXTURES, "deployment"), SUB)
        session = FakeSession(default=_response(200, {}))
        self._run(deployment, session)

        child = "child-" + unique_string(SUB, "rg-demo", "child")
        widget = "w-" + unique_string(SUB, "rg-demo", "w")
        assert session.urls("PUT") == [
            f"{ENDPOINT}/subscriptions/{SUB}/resourcegroups/rg-demo?api-version=2021-04-01",
            f"{GROUP_URL}/providers/Microsoft.Foo/bars/main?api-version=2023-01-01",
            f"{GROUP_URL}/providers/Microsoft.Foo/bars/main/bazs/{child}?api-version=2023-01-01",
            f"{GROUP_URL}/providers/Microsoft.Foo/widgets/{widget}?api-version=2022-05-01",
        ]
        assert deployment.resources[1].parent == "Microsoft.Foo/bars/main"

    def test_subscription_scope(self):
        deployment = load_deployment(os.path.join(FIXTURES, "sub_deployment"))
        session = FakeSession(default=_response(200, {}))
        self._run(deployment, session)
        assert session.urls("PUT") == [
            f"{ENDPOINT}/subscriptions/{SUB}/resourcegroups/rg-app?api-version=2021-04-01",
        ]

    def test_first_failure_stops(self):
        deployment = Deployment(subscription_id=SUB, resource_group="rg-demo",
                                resources=[_bar("one"), _bar("two"), _bar("three")])
        two = f"{GROUP_URL}/providers/Microsoft.Foo/bars/two?api-version=2023-01-01"
        session = FakeSession({("PUT", two): _response(409, None)}, default=_response(200, {}))
        with pytest.raises(ApplyError, match="failed applying resource two"):
            self._run(deployment, session)
        assert len(session.urls("PUT")) == 2

    def test_naming_failure_sends_nothing(self):
        bad = ResourceSpec(type="Microsoft.Foo/unknown", api_version="1", alias="x")
        deployment = Deployment(subscription_id=SUB, resource_group="rg-demo", resources=[_bar(), bad])
        session = FakeSession(default=_response(200, {}))
        with pytest.raises(ApplyError, match="naming translation"):
            self._run(deployment, session)
        assert session.calls == []

    def test_name_and_alias_both_set(self):
        r = ResourceSpec(type="Microsoft.Foo/bars", api_version="1", name="a", alias="b")
        deployment = Deployment(subscription_id=SUB, resource_group="rg-demo", resources=[r])
        with pytest.raises(ApplyError, match="both name and alias"):
            self._run(deployment, FakeSession(default=_response(200, {})))

    def test_parallel_parent_before_child(self):
        deployment = load_deployment(os.path.join(FIXTURES, "deployment"), SUB)
        session = FakeSession(default=_response(200, {}))
        results = self._run(deployment, session, max_workers=4)

        puts = session.urls("PUT")
        assert len(puts) == 4
        parent = next(i for i, u in enumerate(puts) if "/bars/main?" in u)
        child = next(i for i, u in enumerate(puts) if "/bazs/" in u)
        assert parent < child
        assert all(r.state is ApplyState.APPLIED for r in results)

    def test_parallel_cancelled_sends_nothing(self):
        deployment = Deployment(subscription_id=SUB, resource_group="rg-demo",
                                resources=[_bar("one"), _bar("two")])
        cancel = threading.Event()
        cancel.set()
        session = FakeSession(default=_response(200, {}))
        console = Console(file=self.out, highlight=False, width=200)
        with pytest.raises(ApplyError) as exc_info:
            apply(deployment, StaticTokenCredential("tok"), catalog=self.catalog,
                  settings=_settings(max_workers=2), console=console, cancel=cancel, session=session)
        assert isinstance(exc_info.value.cause, CancelledError)
        assert session.calls == []

    def test_parallel_cancelled_while_polling(self):
        deployment = Deployment(subscription_id=SUB, resource_group="rg-demo",
                                resources=[_bar("one"), _bar("two")])
        loc = f"{ENDPOINT}/locations/1"
        cancel = threading.Event()

        class CancellingSession(FakeSession):
            def request(self, method, url, **kwargs):
                resp = super().request(method, url, **kwargs)
                if method == "GET":
                    cancel.set()
                return resp

        session = CancellingSession(
            {("GET", loc): _response(202)},
            default=_response(201, None, {"Location": loc}),
        )
        console = Console(file=self.out, highlight=False, width=200)
        with pytest.raises(ApplyError) as exc_info:
            apply(deployment, StaticTokenCredential("tok"), catalog=self.catalog,
                  settings=_settings(max_workers=2), console=console, cancel=cancel, session=session)
        assert isinstance(exc_info.value.cause, CancelledError)
        assert 1 <= len(session.urls("PUT")) <= 2

    def test_parallel_failure_raises(self):
        deployment = Deployment(subscription_id=SUB, resource_group="rg-demo",
                                resources=[_bar("one"), _bar("two")])
        two = f"{GROUP_URL}/providers/Microsoft.Foo/bars/two?api-version=2023-01-01"
        session = FakeSession({("PUT", two): _response(500, None)}, default=_response(200, {}))
        with pytest.raises(ApplyError, match="two"):
            self._run(deployment, session, max_workers=2)


class TestPlan:
    def test_plan_makes_no_requests(self):
        catalog = Catalog.load(os.path.join(FIXTURES, "names.yaml"))
        deployment = load_deployment(os.path.join(FIXTURES, "deployment"), SUB)
        planned = plan(deployment, catalog, _settings())
        assert [p.method for p in planned] == ["PUT"] * 4
        assert planned[0].resource.name == "rg-demo"
        assert planned[2].url.startswith(f"{GROUP_URL}/providers/Microsoft.Foo/bars/main/bazs/child-")
        assert planned[3].to_dict()["body"]["properties"]["flavor"] == "Extra-Special"

    def test_plan_reports_naming_warnings(self):
        catalog = Catalog.from_dict({"resourceTypes": {"Microsoft.Foo/bars": [
            {"abbreviation": "bar", "namingRules": {"maxLength": 5}},
        ]}})
        r = ResourceSpec(type="Microsoft.Foo/bars", api_version="1", alias="long")
        deployment = Deployment(subscription_id=SUB, resource_group="rg-demo", resources=[r])
        planned = plan(deployment, catalog, _settings())
        assert any("longer than 5" in w for w in planned[0].warnings)
