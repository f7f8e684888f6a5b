"""Tests for the Microsoft Graph client and session."""

from unittest.mock import MagicMock, Mock, patch

import pytest
import requests

from account_lifecycle.config import GraphConfig
from account_lifecycle.graph_client import (
    GRAPH_BASE_URL,
    DirectoryConnectionError,
    GraphClient,
    GraphError,
    GraphSession,
)


def make_response(status_code=200, payload=None, text=""):
    response = Mock()
    response.status_code = status_code
    response.content = b"{}" if payload is not None else b""
    response.text = text
    if payload is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = payload
    return response


@pytest.fixture
def http():
    return Mock(spec=requests.Session)


@pytest.fixture
def session(http):
    return GraphSession(lambda: "token-123", http=http)


class TestGraphSession:
    def test_create_user_posts_payload(self, session, http):
        http.request.return_value = make_response(201, {"id": "abc"})

        assert session.create_user({"displayName": "Jane Doe"}) == {"id": "abc"}

        method, url = http.request.call_args.args
        kwargs = http.request.call_args.kwargs
        assert (method, url) == ("POST", f"{GRAPH_BASE_URL}/users")
        assert kwargs["json"] == {"displayName": "Jane Doe"}
        assert kwargs["headers"]["Authorization"] == "Bearer token-123"
        assert kwargs["headers"]["Content-Type"] == "application/json"

    def test_list_users_follows_next_link(self, session, http):
        next_link = f"{GRAPH_BASE_URL}/users?$skiptoken=xyz"
        http.request.side_effect = [
            make_response(200, {"value": [{"id": "1"}], "@odata.nextLink": next_link}),
            make_response(200, {"value": [{"id": "2"}]}),
        ]

        users = session.list_users(["id", "displayName"])

        assert [user["id"] for user in users] == ["1", "2"]
        first, second = http.request.call_args_list
        assert first.kwargs["params"]["$select"] == "id,displayName"
        assert second.args[1] == next_link

    def test_assign_licenses_payload(self, session, http):
        http.request.return_value = make_response(200, {"id": "u1"})

        session.assign_licenses("u1", add=["sku-a", "sku-b"], remove=[])

        kwargs = http.request.call_args.kwargs
        assert http.request.call_args.args[1] == f"{GRAPH_BASE_URL}/users/u1/assignLicense"
        assert kwargs["json"] == {
            "addLicenses": [
                {"skuId": "sku-a", "disabledPlans": []},
                {"skuId": "sku-b", "disabledPlans": []},
            ],
            "removeLicenses": [],
        }

    def test_delete_user_handles_no_content(self, session, http):
        http.request.return_value = make_response(204)

        assert session.delete_user("u1") is None
        assert http.request.call_args.args == ("DELETE", f"{GRAPH_BASE_URL}/users/u1")

    def test_get_user_licenses(self, session, http):
        http.request.return_value = make_response(200, {"value": [{"skuId": "sku-a"}]})

        assert session.get_user_licenses("u1") == [{"skuId": "sku-a"}]
        assert http.request.call_args.args[1] == f"{GRAPH_BASE_URL}/users/u1/licenseDetails"

    def test_graph_error_is_parsed(self, session, http):
        http.request.return_value = make_response(
            400,
            {"error": {"code": "Request_BadRequest", "message": "userPrincipalName already exists"}},
        )

        with pytest.raises(GraphError) as excinfo:
            session.create_user({})

        assert excinfo.value.status_code == 400
        assert excinfo.value.error == "Request_BadRequest"
        assert "already exists" in str(excinfo.value)

    def test_non_json_error_body(self, session, http):
        http.request.return_value = make_response(502, None, text="Bad Gateway")

        with pytest.raises(GraphError, match="Bad Gateway"):
            session.get_license_catalog()

    def test_transport_failure_becomes_graph_error(self, session, http):
        http.request.side_effect = requests.ConnectionError("connection reset")

        with pytest.raises(GraphError) as excinfo:
            session.delete_user("u1")

        assert excinfo.value.status_code == 0

    def test_token_failure_becomes_graph_error(self, http):
        session = GraphSession(Mock(side_effect=requests.ConnectionError("dns failure")), http=http)

        with pytest.raises(GraphError) as excinfo:
            session.get_license_catalog()

        assert excinfo.value.status_code == 0
        assert "dns failure" in str(excinfo.value)
        http.request.assert_not_called()

    def test_connection_error_from_token_provider_is_not_wrapped(self, http):
        session = GraphSession(Mock(side_effect=DirectoryConnectionError("session expired")), http=http)

        with pytest.raises(DirectoryConnectionError):
            session.delete_user("u1")


class TestGraphClient:
    @pytest.fixture
    def app_only_config(self):
        return GraphConfig(client_id="client", client_secret="secret")

    @patch("account_lifecycle.graph_client.msal.ConfidentialClientApplication")
    def test_connect_app_only(self, mock_app_cls, app_only_config, tenant_config):
        mock_app = MagicMock()
        mock_app.acquire_token_for_client.return_value = {"access_token": "tok"}
        mock_app.acquire_token_silent.return_value = {"access_token": "tok2"}
        mock_app_cls.return_value = mock_app

        session = GraphClient(app_only_config, tenant_config).connect()

        assert isinstance(session, GraphSession)
        assert mock_app_cls.call_args.kwargs["authority"].endswith(tenant_config.tenant_id)
        mock_app.acquire_token_for_client.assert_called_once_with(
            scopes=["https://graph.microsoft.com/.default"]
        )
        assert session._token_provider() == "tok2"

    @patch("account_lifecycle.graph_client.msal.ConfidentialClientApplication")
    def test_connect_failure(self, mock_app_cls, app_only_config, tenant_config):
        mock_app = MagicMock()
        mock_app.acquire_token_for_client.return_value = {
            "error": "invalid_client",
            "error_description": "AADSTS7000215: Invalid client secret provided.",
        }
        mock_app_cls.return_value = mock_app

        with pytest.raises(DirectoryConnectionError, match="invalid_client"):
            GraphClient(app_only_config, tenant_config).connect()

    @patch("account_lifecycle.graph_client.msal.PublicClientApplication")
    def test_connect_device_code(self, mock_app_cls, tenant_config):
        mock_app = MagicMock()
        mock_app.get_accounts.return_value = []
        mock_app.initiate_device_flow.return_value = {"user_code": "ABC", "message": "Go to https://microsoft.com/devicelogin"}
        mock_app.acquire_token_by_device_flow.return_value = {"access_token": "tok"}
        mock_app_cls.return_value = mock_app
        prompts = []

        GraphClient(GraphConfig(), tenant_config, prompt=prompts.append).connect()

        assert prompts == ["Go to https://microsoft.com/devicelogin"]
        mock_app.initiate_device_flow.assert_called_once_with(
            scopes=["User.ReadWrite.All", "Organization.Read.All"]
        )

    @patch("account_lifecycle.graph_client.msal.PublicClientApplication")
    def test_device_code_unavailable(self, mock_app_cls, tenant_config):
        mock_app = MagicMock()
        mock_app.get_accounts.return_value = []
        mock_app.initiate_device_flow.return_value = {"error": "invalid_request", "error_description": "bad client"}
        mock_app_cls.return_value = mock_app

        with pytest.raises(DirectoryConnectionError, match="bad client"):
            GraphClient(GraphConfig(), tenant_config).connect()

    @patch("account_lifecycle.graph_client.msal.PublicClientApplication")
    def test_expired_delegated_session(self, mock_app_cls, tenant_config):
        mock_app = MagicMock()
        mock_app.get_accounts.return_value = [{"username": "admin@contoso.onmicrosoft.com"}]
        mock_app.acquire_token_silent.side_effect = [{"access_token": "tok"}, None]
        mock_app_cls.return_value = mock_app

        session = GraphClient(GraphConfig(), tenant_config).connect()

        with pytest.raises(DirectoryConnectionError, match="expired"):
            session._token_provider()

    @patch("account_lifecycle.graph_client.msal.ConfidentialClientApplication")
    def test_token_refresh_network_failure(self, mock_app_cls, app_only_config, tenant_config):
        mock_app = MagicMock()
        mock_app.acquire_token_for_client.return_value = {"access_token": "tok"}
        mock_app.acquire_token_silent.side_effect = requests.ConnectionError("dns failure")
        mock_app_cls.return_value = mock_app

        session = GraphClient(app_only_config, tenant_config).connect()

        with pytest.raises(DirectoryConnectionError, match="dns failure"):
            session._token_provider()
