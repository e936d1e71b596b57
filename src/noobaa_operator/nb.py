"""Client for the NooBaa management RPC API."""

import logging
from collections import namedtuple

import requests

from .errors import TransientError

logger = logging.getLogger(__name__)

AccessKey = namedtuple("AccessKey", ["access_key", "secret_key"])
Account = namedtuple("Account", ["email", "access_keys"])


class RPCError(TransientError):
    """An error reply from the NooBaa RPC API."""

    def __init__(self, api, method, rpc_code, message):
        super().__init__(f"{api}.{method}: {rpc_code} {message}")
        self.rpc_code = rpc_code


def find_port(service, port_name):
    """Return the named port of a service, or None."""
    for port in (service.spec.ports or []) if service.spec else []:
        if port.name == port_name:
            return port
    return None


def node_port_address(service, node_ip, port_name):
    """Address of the management API through a node port."""
    port = find_port(service, port_name)
    if port is None or not port.node_port:
        raise TransientError(f"service {service.metadata.name} has no node port {port_name} yet")
    return f"https://{node_ip}:{port.node_port}"


class NBClient:
    """Calls the NooBaa RPC API over HTTPS.

    The server uses a self-signed certificate so TLS verification is
    off by default.
    """

    def __init__(self, address, session=None, verify=False):
        self.address = address.rstrip("/")
        self.session = session or requests.Session()
        self.verify = verify
        self.auth_token = ""

    def set_auth_token(self, token):
        self.auth_token = token or ""

    def call(self, ctx, api, method, params=None):
        """Make one RPC call and return its reply."""
        body = {"api": api, "method": method, "params": params or {}}
        if self.auth_token:
            body["auth_token"] = self.auth_token
        logger.debug(f"RPC {api}.{method} -> {self.address}")
        res = self.session.post(
            f"{self.address}/rpc/",
            json=body,
            verify=self.verify,
            timeout=ctx.request_timeout(),
        )
        res.raise_for_status()
        msg = res.json()
        error = msg.get("error")
        if error:
            raise RPCError(api, method, error.get("rpc_code", ""), error.get("message", ""))
        return msg.get("reply")

    def read_auth(self, ctx):
        """Check that the API is reachable and report the current auth."""
        return self.call(ctx, "auth_api", "read_auth")

    def create_auth(self, ctx, system, email, password, role="admin"):
        """Log in to an existing system and return the auth token."""
        reply = self.call(
            ctx,
            "auth_api",
            "create_auth",
            {"system": system, "role": role, "email": email, "password": password},
        )
        return reply["token"]

    def create_system(self, ctx, name, email, password):
        """Create the system with its first account and return the auth token."""
        reply = self.call(
            ctx,
            "system_api",
            "create_system",
            {"name": name, "email": email, "password": password},
        )
        return reply["token"]

    def list_accounts(self, ctx):
        reply = self.call(ctx, "account_api", "list_accounts") or {}
        return [
            Account(
                email=account.get("email", ""),
                access_keys=[
                    AccessKey(k.get("access_key", ""), k.get("secret_key", ""))
                    for k in account.get("access_keys") or []
                ],
            )
            for account in reply.get("accounts") or []
        ]
