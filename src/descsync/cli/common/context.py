"""Application context management for the CLI."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from botocore.exceptions import BotoCoreError, ClientError

from descsync.cli.common.exits import die
from descsync.core.adapters.bigquery import BigQueryAdapter
from descsync.core.adapters.catalog import CatalogClient
from descsync.core.adapters.denodo_catalog import (
    DenodoCatalogAdapter,
    DenodoCatalogClient,
    catalog_base_url,
)
from descsync.core.adapters.denodo_vdp import DenodoVdpAdapter, VdpConnectionConfig
from descsync.core.adapters.glue import DEFAULT_REGION, GlueAdapter, build_glue_client
from descsync.core.config import SourceSystem
from descsync.core.errors import AuthError
from descsync.core.targets import TargetAdapter


@dataclass
class SyncAppContext:
    """Application context holding the catalog client and the target adapters."""

    system: SourceSystem
    catalog: CatalogClient
    adapters: list[TargetAdapter] = field(default_factory=list)

    def close(self) -> None:
        for adapter in self.adapters:
            adapter.close()
        self.catalog.close()


def _require_env(name: str) -> str:
    """Return a required environment variable or exit with a usage error."""
    value = os.environ.get(name, "").strip()
    if not value:
        die(f"Missing required environment variable: {name}", code=2)
    return value


def _optional_env(name: str, default: str | None = None) -> str | None:
    return os.environ.get(name, "").strip() or default


def _require_port(name: str) -> int:
    raw = _require_env(name)
    try:
        return int(raw)
    except ValueError:
        die(f"{name} must be a port number, got '{raw}'", code=2)


def build_catalog_client() -> CatalogClient:
    """Build the catalog client from QDC_* variables."""
    return CatalogClient(
        _require_env("QDC_BASE_URL"),
        _require_env("QDC_CLIENT_ID"),
        _require_env("QDC_CLIENT_SECRET"),
    )


def authenticate(client: CatalogClient) -> None:
    """Fetch a first access token so bad credentials fail before any work."""
    try:
        client.get_access_token()
    except AuthError as exc:
        client.close()
        die(str(exc), code=1)


def build_bigquery_adapters() -> list[TargetAdapter]:
    credentials = _require_env("GOOGLE_CLOUD_SERVICE_ACCOUNT_CREDENTIALS")
    try:
        return [BigQueryAdapter.from_service_account_json(credentials)]
    except (AuthError, ValueError) as exc:
        die(f"Invalid Google service account credentials: {exc}", code=2)


def build_athena_adapters() -> list[TargetAdapter]:
    try:
        client = build_glue_client(
            role_arn=_optional_env("AWS_IAM_ROLE_FOR_GLUE_TABLE"),
            profile_name=_optional_env("PROFILE_NAME"),
            region_name=_optional_env("AWS_REGION", DEFAULT_REGION),
        )
    except (BotoCoreError, ClientError) as exc:
        die(f"Could not create AWS Glue client: {exc}", code=1)
    return [GlueAdapter(client, catalog_id=_optional_env("ATHENA_ACCOUNT_ID"))]


def build_denodo_adapters() -> list[TargetAdapter]:
    """Build the VDP adapter and the local data catalog adapter, in write order."""
    company_id = _require_env("COMPANY_ID")
    host = _require_env("DENODO_HOST_NAME")
    user = _require_env("DENODO_CLIENT_ID")
    password = _require_env("DENODO_CLIENT_SECRET")

    vdp = VdpConnectionConfig(
        host=host,
        port=_require_port("DENODO_ODBC_PORT"),
        user=user,
        password=password,
        default_database=_optional_env("DENODO_DEFAULT_DB_NAME", "admin"),
    )
    rest = DenodoCatalogClient(
        catalog_base_url(host, _require_port("DENODO_REST_API_PORT")),
        user,
        password,
    )
    return [
        DenodoVdpAdapter(vdp.connect, company_id, host),
        DenodoCatalogAdapter(rest, company_id, host),
    ]


_ADAPTER_BUILDERS = {
    SourceSystem.BIGQUERY: build_bigquery_adapters,
    SourceSystem.ATHENA: build_athena_adapters,
    SourceSystem.DENODO: build_denodo_adapters,
}


def build_sync_context(system: SourceSystem) -> SyncAppContext:
    """Build and return the application context for one target system.

    Args:
        system: Target system to write descriptions to.

    Returns:
        SyncAppContext: Context with an authenticated catalog client and the
        system's adapters.
    """
    catalog = build_catalog_client()
    appctx = SyncAppContext(system=system, catalog=catalog)
    try:
        appctx.adapters = _ADAPTER_BUILDERS[system]()
        authenticate(catalog)
    except BaseException:
        appctx.close()
        raise
    return appctx


def build_catalog_context(system: SourceSystem) -> SyncAppContext:
    """Build a context for read-only catalog commands (no target adapters)."""
    catalog = build_catalog_client()
    authenticate(catalog)
    return SyncAppContext(system=system, catalog=catalog)


_PRIMARY_ADAPTER_CLASSES: dict[SourceSystem, type[TargetAdapter]] = {
    SourceSystem.BIGQUERY: BigQueryAdapter,
    SourceSystem.ATHENA: GlueAdapter,
    SourceSystem.DENODO: DenodoVdpAdapter,
}


def hierarchy_shape(system: SourceSystem) -> type[TargetAdapter]:
    """Return the adapter class whose nesting flags describe the system's catalog shape."""
    return _PRIMARY_ADAPTER_CLASSES[system]
