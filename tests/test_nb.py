"""Tests for nb.py module."""

from unittest.mock import MagicMock

import pytest
import requests
from kubernetes import client

from noobaa_operator.context import Context
from noobaa_operator.errors import TransientError
from noobaa_operator.nb import AccessKey, NBClient, RPCError, node_port_address


def make_client(reply):
    session = MagicMock()
    session.post.return_value.json.return_value = reply
    return NBClient("https://10.0.0.1:30443/", session=session), session


class TestNBClient:
    """Tests for RPC calls."""

    def test_call_body(self):
        nb, session = make_client({"op": "res", "reply": {"token": "abc"}})

        token = nb.create_auth(Context(request_timeout=5), system="mystore", email="a@b.io", password="pw")

        assert token == "abc"
        session.post.assert_called_once_with(
            "https://10.0.0.1:30443/rpc/",
            json={
                "api": "auth_api",
                "method": "create_auth",
                "params": {"system": "mystore", "role": "admin", "email": "a@b.io", "password": "pw"},
            },
            verify=False,
            timeout=5,
        )

    def test_auth_token_sent(self):
        nb, session = make_client({"op": "res", "reply": {}})
        nb.set_auth_token("tok")

        nb.read_auth(Context())

        assert session.post.call_args.kwargs["json"]["auth_token"] == "tok"

    def test_error_reply(self):
        nb, _ = make_client({"op": "res", "error": {"rpc_code": "UNAUTHORIZED", "message": "nope"}})

        with pytest.raises(RPCError) as exc_info:
            nb.create_system(Context(), name="mystore", email="a@b.io", password="pw")

        assert exc_info.value.rpc_code == "UNAUTHORIZED"
        assert isinstance(exc_info.value, TransientError)

    def test_http_error(self):
        nb, session = make_client({})
        session.post.return_value.raise_for_status.side_effect = requests.HTTPError("502")

        with pytest.raises(requests.HTTPError):
            nb.read_auth(Context())

    def test_list_accounts(self):
        nb, _ = make_client(
            {
                "op": "res",
                "reply": {
                    "accounts": [
                        {"email": "admin@noobaa.io", "access_keys": [{"access_key": "AK", "secret_key": "SK"}]},
                        {"email": "nokeys@noobaa.io"},
                    ]
                },
            }
        )

        accounts = nb.list_accounts(Context())

        assert accounts[0].email == "admin@noobaa.io"
        assert accounts[0].access_keys == [AccessKey("AK", "SK")]
        assert accounts[1].access_keys == []


class TestNodePortAddress:
    """Tests for the node port address."""

    def _service(self, node_port):
        return client.V1Service(
            metadata=client.V1ObjectMeta(name="mystore-mgmt"),
            spec=client.V1ServiceSpec(
                ports=[client.V1ServicePort(name="mgmt-https", port=8443, node_port=node_port)]
            ),
        )

    def test_address(self):
        assert node_port_address(self._service(30443), "192.168.1.10", "mgmt-https") == "https://192.168.1.10:30443"

    def test_missing_node_port(self):
        with pytest.raises(TransientError):
            node_port_address(self._service(None), "192.168.1.10", "mgmt-https")
