"""Tool adapter kinds and the registry that turns them into MCP server entries.

Adapter kinds form a closed set. A worker's declared tools are validated
against it when the worker is created or updated, so dispatch never meets
an unknown name. Building an adapter needs the account's credentials for the
backing service; a missing connection raises `MissingCredential`, which the
dispatcher treats as a soft skip.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from agent_workforce.orchestrator.errors import MissingCredential, UnknownAdapter
from agent_workforce.orchestrator.models import WorkerRef


class AdapterKind(str, Enum):
    """Supported tool integrations."""

    GITHUB = "github"
    GMAIL = "gmail"
    SLACK = "slack"
    SENTRY = "sentry"
    APPSTORE_CONNECT = "appstore_connect"
    META_ADS = "meta_ads"
    RENDER = "render"
    TASKS = "tasks"
    REPORTS = "reports"
    CAPABILITIES = "capabilities"


@dataclass(slots=True)
class AdapterContext:
    """Everything a constructor may read to build one server entry."""

    account_id: int
    worker: WorkerRef
    credentials: dict[str, Any] = field(default_factory=dict)
    internal_command: tuple[str, ...] = ("agent-workforce-tools",)


@dataclass(slots=True)
class ToolAdapter:
    """A credential-bound tool exposed to the agent runtime."""

    kind: AdapterKind
    name: str
    capabilities: tuple[str, ...]
    server: dict[str, Any]


AdapterConstructor = Callable[[AdapterContext], dict[str, Any]]
CredentialLookup = Callable[[int, str], dict[str, Any] | None]


@dataclass(frozen=True, slots=True)
class AdapterSpec:
    kind: AdapterKind
    capabilities: tuple[str, ...]
    constructor: AdapterConstructor
    service: str | None = None


class ToolAdapterRegistry:
    """Maps adapter kinds to constructors."""

    def __init__(self, specs: Iterable[AdapterSpec] = ()) -> None:
        self._specs: dict[AdapterKind, AdapterSpec] = {}
        for spec in specs:
            self.register(spec)

    def register(self, spec: AdapterSpec) -> None:
        self._specs[spec.kind] = spec

    def kinds(self) -> tuple[AdapterKind, ...]:
        return tuple(self._specs)

    def validate(self, names: Iterable[str]) -> tuple[AdapterKind, ...]:
        """Resolve declared tool names, raising `UnknownAdapter` on the first bad one."""

        resolved: list[AdapterKind] = []
        for name in names:
            normalized = name.strip().lower()
            try:
                kind = AdapterKind(normalized)
            except ValueError as error:
                raise UnknownAdapter(name) from error
            if kind not in self._specs:
                raise UnknownAdapter(name)
            if kind not in resolved:
                resolved.append(kind)
        return tuple(resolved)

    def build(  # noqa: PLR0913
        self,
        kind: AdapterKind,
        *,
        account_id: int,
        worker: WorkerRef,
        credentials: CredentialLookup,
        internal_command: tuple[str, ...] = ("agent-workforce-tools",),
    ) -> ToolAdapter:
        spec = self._specs.get(kind)
        if spec is None:
            raise UnknownAdapter(kind.value)

        resolved_credentials: dict[str, Any] = {}
        if spec.service is not None:
            found = credentials(account_id, spec.service)
            if not found:
                raise MissingCredential(spec.service, account_id=account_id)
            resolved_credentials = found

        server = spec.constructor(
            AdapterContext(
                account_id=account_id,
                worker=worker,
                credentials=resolved_credentials,
                internal_command=internal_command,
            ),
        )
        return ToolAdapter(
            kind=kind,
            name=kind.value,
            capabilities=spec.capabilities,
            server=server,
        )


def _required(context: AdapterContext, service: str, *keys: str) -> list[str]:
    values: list[str] = []
    for key in keys:
        value = context.credentials.get(key)
        if not isinstance(value, str) or not value.strip():
            raise MissingCredential(f"{service}.{key}", account_id=context.account_id)
        values.append(value)
    return values


def _github(context: AdapterContext) -> dict[str, Any]:
    (token,) = _required(context, "github", "token")
    return {
        "command": "npx",
        "args": ["-y", "@modelcontextprotocol/server-github"],
        "env": {"GITHUB_PERSONAL_ACCESS_TOKEN": token},
    }


def _gmail(context: AdapterContext) -> dict[str, Any]:  # noqa: ARG001
    # OAuth tokens are seeded into the server's own credential file by the connection flow.
    return {"command": "npx", "args": ["-y", "@gongrzhe/server-gmail-autoauth-mcp"]}


def _slack(context: AdapterContext) -> dict[str, Any]:
    (bot_token,) = _required(context, "slack", "bot_token")
    env = {"SLACK_BOT_TOKEN": bot_token}
    user_token = context.credentials.get("user_token")
    if isinstance(user_token, str) and user_token:
        env["SLACK_USER_TOKEN"] = user_token
    return {"command": "slack-mcp-server", "args": [], "env": env}


def _sentry(context: AdapterContext) -> dict[str, Any]:
    (token,) = _required(context, "sentry", "token")
    return {"command": "sentry-mcp-server", "args": [], "env": {"SENTRY_ACCESS_TOKEN": token}}


def _appstore_connect(context: AdapterContext) -> dict[str, Any]:
    key_id, issuer_id, private_key = _required(
        context,
        "appstore_connect",
        "key_id",
        "issuer_id",
        "private_key",
    )
    return {
        "command": "appstore-connect-mcp-server",
        "args": [],
        "env": {
            "APPSTORE_KEY_ID": key_id,
            "APPSTORE_ISSUER_ID": issuer_id,
            "APPSTORE_PRIVATE_KEY": private_key,
        },
    }


def _meta_ads(context: AdapterContext) -> dict[str, Any]:
    access_token, ad_account_id = _required(
        context,
        "meta_ads",
        "access_token",
        "primary_ad_account_id",
    )
    return {
        "command": "meta-ads-mcp-server",
        "args": [],
        "env": {"META_ACCESS_TOKEN": access_token, "META_AD_ACCOUNT_ID": ad_account_id},
    }


def _render(context: AdapterContext) -> dict[str, Any]:
    (api_key,) = _required(context, "render", "api_key")
    return {
        "type": "http",
        "url": "https://mcp.render.com/mcp",
        "headers": {"Authorization": f"Bearer {api_key}"},
    }


def _internal(name: str) -> AdapterConstructor:
    def _build(context: AdapterContext) -> dict[str, Any]:
        args = [*context.internal_command[1:], name, f"--account-id={context.account_id}"]
        args.append(f"--{context.worker.kind.value}-id={context.worker.worker_id}")
        return {"command": context.internal_command[0], "args": args}

    return _build


DEFAULT_ADAPTER_SPECS: tuple[AdapterSpec, ...] = (
    AdapterSpec(
        kind=AdapterKind.GITHUB,
        service="github",
        capabilities=("repositories", "issues", "pull_requests"),
        constructor=_github,
    ),
    AdapterSpec(
        kind=AdapterKind.GMAIL,
        service="gmail",
        capabilities=("read_email", "send_email"),
        constructor=_gmail,
    ),
    AdapterSpec(
        kind=AdapterKind.SLACK,
        service="slack",
        capabilities=("read_channels", "post_message"),
        constructor=_slack,
    ),
    AdapterSpec(
        kind=AdapterKind.SENTRY,
        service="sentry",
        capabilities=("issues", "events"),
        constructor=_sentry,
    ),
    AdapterSpec(
        kind=AdapterKind.APPSTORE_CONNECT,
        service="appstore_connect",
        capabilities=("apps", "reviews", "sales_reports"),
        constructor=_appstore_connect,
    ),
    AdapterSpec(
        kind=AdapterKind.META_ADS,
        service="meta_ads",
        capabilities=("campaigns", "insights"),
        constructor=_meta_ads,
    ),
    AdapterSpec(
        kind=AdapterKind.RENDER,
        service="render",
        capabilities=("services", "deploys", "logs"),
        constructor=_render,
    ),
    AdapterSpec(
        kind=AdapterKind.TASKS,
        capabilities=("suggest_task", "transition_task", "list_tasks"),
        constructor=_internal("tasks"),
    ),
    AdapterSpec(
        kind=AdapterKind.REPORTS,
        capabilities=("save_report", "query_reports"),
        constructor=_internal("reports"),
    ),
    AdapterSpec(
        kind=AdapterKind.CAPABILITIES,
        capabilities=("list_workers", "list_tools"),
        constructor=_internal("capabilities"),
    ),
)


def default_adapter_registry() -> ToolAdapterRegistry:
    return ToolAdapterRegistry(DEFAULT_ADAPTER_SPECS)
