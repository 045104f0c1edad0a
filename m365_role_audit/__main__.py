"""
M365 Privileged Role Audit — Main Orchestrator

Usage:
    python -m m365_role_audit                                  # use default profile
    python -m m365_role_audit --profile contoso-prod           # named profile
    python -m m365_role_audit --config config.json             # JSON config file
    python -m m365_role_audit --services AzureAD Exchange --dedup-mode ServicePreference
    python -m m365_role_audit --prefer-azure-ad --summary-only

Profile management:
    python -m m365_role_audit profile add <name> --tenant-id ... --client-id ...
    python -m m365_role_audit profile list
    python -m m365_role_audit profile remove <name>
    python -m m365_role_audit profile set-default <name>

The audit only reads from the tenant.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Sequence

from . import __version__
from .config import (
    ALL_SERVICES,
    AuditConfig,
    CertificateAuth,
    ClientSecretAuth,
    DelegatedAuth,
)
from .auth.authenticator import AuthContext, AuthenticationError, Authenticator
from .graph.client import GraphClient
from .collectors import (
    ALL_COLLECTORS,
    CollectorResult,
    DirectoryRoleSource,
    PrincipalResolver,
)
from .dedup import DeduplicationMode, DeduplicationModeError
from .models import AssignmentRecord, OrganizationMetadata
from .pipeline import AuditOutcome, run_audit
from .profiles import AUTH_MODES, ProfileStore, TenantProfile, resolve_profile
from .reporting import export_csv, export_json, export_markdown

logger = logging.getLogger("m365_role_audit")


# ---------------------------------------------------------------------------
# Profile management sub-commands
# ---------------------------------------------------------------------------

def _cmd_profile(args: argparse.Namespace) -> int:
    """Handle `profile add|list|remove|set-default` sub-commands."""
    action = args.profile_action

    if action == "list":
        return _profile_list()
    elif action == "add":
        return _profile_add(args)
    elif action == "remove":
        return _profile_remove(args)
    elif action == "set-default":
        return _profile_set_default(args)
    return 0


def _profile_list() -> int:
    store = ProfileStore.load()
    profiles = store.list_profiles()
    if not profiles:
        print("No profiles configured. Add one with:\n")
        print("  python -m m365_role_audit profile add <name> \\")
        print("    --tenant-id <GUID> --client-id <GUID> --cert-path ./base64.txt")
        return 0

    print(f"\n  {'Name':<24s} {'Tenant ID':<38s} {'Client ID':<38s} {'Auth':<14s} {'Default'}")
    print(f"  {'─'*24} {'─'*38} {'─'*38} {'─'*14} {'─'*7}")
    for p in profiles:
        default_marker = "  ✓" if p.name == store.default_profile else ""
        name_col = p.name + (f" ({p.organization_name})" if p.organization_name else "")
        print(f"  {name_col:<24s} {p.tenant_id:<38s} {p.client_id:<38s} {p.auth_mode:<14s}{default_marker}")
    print()
    return 0


def _profile_add(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    name = args.profile_name
    if store.get(name):
        print(f"  Profile '{name}' already exists. It will be overwritten.")

    profile = TenantProfile(
        name=name,
        tenant_id=args.tenant_id,
        client_id=args.client_id,
        auth_mode=args.auth_mode,
        cert_path=args.cert_path or "./base64.txt",
        organization_name=args.organization_name or "",
        services=list(args.services or []),
        dedup_mode=args.dedup_mode or "",
        prefer_azure_ad_source=args.prefer_azure_ad,
        notes=args.notes or "",
    )
    set_as_default = args.set_default or not store.profiles
    try:
        store.add(profile, set_default=set_as_default)
    except ValueError as e:
        print(f"  ❌ {e}")
        return 1
    print(f"  ✅ Profile '{name}' saved.")
    if set_as_default:
        print("  ✅ Set as default profile.")
    return 0


def _profile_remove(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    if store.remove(args.profile_name):
        print(f"  ✅ Profile '{args.profile_name}' removed.")
        return 0
    print(f"  ❌ Profile '{args.profile_name}' not found.")
    return 1


def _profile_set_default(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    if store.set_default(args.profile_name):
        print(f"  ✅ Default profile set to '{args.profile_name}'.")
        return 0
    print(f"  ❌ Profile '{args.profile_name}' not found.")
    return 1


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="m365_role_audit",
        description="M365 Privileged Role Audit (READ-ONLY)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    # --- Sub-commands: profile management ---
    subparsers = parser.add_subparsers(dest="command", help="Management commands")

    prof_parser = subparsers.add_parser("profile", help="Manage tenant profiles")
    prof_sub = prof_parser.add_subparsers(dest="profile_action", help="Profile actions")

    add_p = prof_sub.add_parser("add", help="Add or update a tenant profile")
    add_p.add_argument("profile_name", help="Short name for the profile (e.g. 'contoso-prod')")
    add_p.add_argument("--tenant-id", required=True, help="Entra tenant ID (GUID)")
    add_p.add_argument("--client-id", required=True, help="App registration client ID (GUID)")
    add_p.add_argument("--auth-mode", choices=AUTH_MODES, default="certificate", help="Authentication mode")
    add_p.add_argument("--cert-path", default="./base64.txt", help="Path to base64-encoded PFX (default: ./base64.txt)")
    add_p.add_argument("--organization-name", help="Organization name for reports")
    add_p.add_argument("--services", nargs="+", choices=ALL_SERVICES, help="Services audited for this tenant (default: all)")
    add_p.add_argument("--dedup-mode", choices=[m.value for m in DeduplicationMode], help="Deduplication mode for this tenant")
    add_p.add_argument("--prefer-azure-ad", action="store_true", help="Prefer the Azure AD/Entra ID record for this tenant")
    add_p.add_argument("--notes", help="Optional admin notes")
    add_p.add_argument("--set-default", action="store_true", help="Set as default profile")

    prof_sub.add_parser("list", help="List all configured profiles")

    rm_p = prof_sub.add_parser("remove", help="Remove a profile")
    rm_p.add_argument("profile_name", help="Name of the profile to remove")

    sd_p = prof_sub.add_parser("set-default", help="Set the default profile")
    sd_p.add_argument("profile_name", help="Name of the profile to set as default")

    # --- Tenant / auth options ---
    parser.add_argument("--profile", "-p", default=None, help="Tenant profile name to use")
    parser.add_argument("--config", "-c", type=Path, help="Path to JSON configuration file")
    parser.add_argument("--auth-mode", choices=AUTH_MODES, default=None, help="Override the authentication mode")
    parser.add_argument("--cert-path", type=Path, help="Path to base64-encoded certificate file (overrides profile)")
    parser.add_argument("--tenant-id", default=None, help="Tenant ID (overrides profile)")
    parser.add_argument("--client-id", default=None, help="Client ID (overrides profile)")
    parser.add_argument("--organization-name", default=None, help="Organization name shown in reports")

    # --- Audit options ---
    parser.add_argument(
        "--services",
        nargs="+",
        choices=ALL_SERVICES,
        default=None,
        help="Services to audit (default: all)",
    )
    parser.add_argument(
        "--dedup-mode",
        choices=[m.value for m in DeduplicationMode],
        default=None,
        help="Deduplication policy (default: Strict)",
    )
    parser.add_argument(
        "--prefer-azure-ad",
        action="store_true",
        help="Keep only the Azure AD/Entra ID record when a role is reported by several services",
    )
    parser.add_argument(
        "--exclude-overarching",
        action="store_true",
        help="Do not report overarching roles under each workload",
    )
    parser.add_argument(
        "--summary-only",
        action="store_true",
        help="Skip the detailed statistics tier",
    )
    parser.add_argument(
        "--formats",
        nargs="+",
        choices=["json", "csv", "markdown"],
        default=None,
        help="Output formats to generate",
    )
    parser.add_argument("--output-dir", "-o", type=Path, default=None, help="Output directory for reports")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def configure_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )


def build_config(args: argparse.Namespace) -> AuditConfig:
    """Build audit configuration from config file, profile and CLI flags."""
    if args.config and args.config.exists():
        config = AuditConfig.from_file(args.config)
    else:
        config = AuditConfig()

    profile = None
    if args.profile:
        profile = resolve_profile(args.profile)
        if not profile:
            print(f"\n❌ Profile '{args.profile}' not found. Use 'profile list' to see available profiles.")
            sys.exit(1)
    elif not args.config and not args.tenant_id:
        profile = resolve_profile()

    if profile:
        config.auth.mode = profile.auth_mode
        tenant_id = args.tenant_id or profile.tenant_id
        client_id = args.client_id or profile.client_id
        cert_path = str(args.cert_path) if args.cert_path else profile.certificate_file()
        profile.apply_audit_defaults(config)
    elif args.tenant_id and args.client_id:
        tenant_id = args.tenant_id
        client_id = args.client_id
        cert_path = str(args.cert_path) if args.cert_path else "./base64.txt"
    elif config.auth.certificate or config.auth.client_secret or config.auth.delegated:
        tenant_id = client_id = cert_path = None
    else:
        print("\n❌ No tenant credentials found. Use one of:")
        print("   • --profile <name>             (from saved profiles)")
        print("   • --tenant-id X --client-id Y  (ad-hoc)")
        print("   • --config config.json         (JSON config file)")
        sys.exit(1)

    if args.auth_mode:
        config.auth.mode = args.auth_mode

    if tenant_id and client_id:
        if config.auth.mode == "certificate":
            config.auth.certificate = CertificateAuth(
                tenant_id=tenant_id, client_id=client_id, certificate_path=cert_path,
            )
        elif config.auth.mode == "client_secret":
            config.auth.client_secret = ClientSecretAuth(tenant_id=tenant_id, client_id=client_id)
        else:
            config.auth.delegated = DelegatedAuth(tenant_id=tenant_id, client_id=client_id)

    if args.organization_name:
        config.organization_name = args.organization_name
    if args.services:
        config.collection.services = list(args.services)
    if args.exclude_overarching:
        config.collection.include_overarching_roles = False
    if args.dedup_mode:
        config.analysis.dedup_mode = args.dedup_mode
    if args.prefer_azure_ad:
        config.analysis.prefer_azure_ad_source = True
    if args.summary_only:
        config.analysis.detailed = False
    if args.formats:
        config.output.formats = list(args.formats)
    if args.output_dir:
        config.output.base_dir = str(args.output_dir)
    config.verbose = config.verbose or args.verbose

    return config


async def run_collection(
    graph: GraphClient,
    config: AuditConfig,
    auth_context: AuthContext,
) -> list[CollectorResult]:
    """
    Run the selected collectors concurrently.

    Returns:
        CollectorResults in the fixed collector order.
    """
    resolver = PrincipalResolver(graph, chunk_size=config.collection.principal_batch_size)
    directory = DirectoryRoleSource(graph, resolver)

    collectors = []
    for cls in ALL_COLLECTORS:
        if not config.collection.wants(cls.service_key):
            logger.debug(f"Skipping {cls.__name__} (service not selected)")
            continue
        collectors.append(cls(
            graph=graph,
            config=config.collection,
            auth_context=auth_context,
            directory=directory,
            resolver=resolver,
        ))

    print(f"\n  Running {len(collectors)} collectors concurrently...\n")
    results = await asyncio.gather(*(c.execute() for c in collectors))

    for result in results:
        status = "✅" if result.returned_data and not result.metadata["errors"] else "⚠️ "
        print(f"  {status} {result.service}: {len(result.records)} assignments "
              f"({result.metadata['duration_seconds']}s)")
        for w in result.metadata["warnings"]:
            print(f"      ⚠  {w}")
        for e in result.metadata["errors"]:
            print(f"      ❌ {e}")

    for w in resolver.warnings:
        print(f"  ⚠  {w}")
    return list(results)


def organization_metadata(
    organization_name: str,
    results: Sequence[CollectorResult],
    records: Sequence[AssignmentRecord],
) -> OrganizationMetadata:
    """Derive auth type distribution and collection flags from the collected data."""
    return OrganizationMetadata(
        organization_name=organization_name or "Unknown Organization",
        auth_types=dict(Counter(r.authentication_type for r in records if r.authentication_type)),
        exchange_data_enhanced=any(r.metadata.get("exchange_data_enhanced") for r in results),
        services_requested=tuple(r.service for r in results),
    )


def generate_reports(
    outcome: AuditOutcome,
    output_dir: Path,
    audit_id: str,
    formats: list[str],
) -> list[Path]:
    """Generate all requested report formats."""
    created = []

    if "json" in formats:
        path = export_json(outcome.report, output_dir, audit_id)
        created.append(path)
        print(f"  📄 JSON:       {path}")

    if "csv" in formats:
        paths = export_csv(outcome.report, output_dir, audit_id)
        created.extend(paths)
        for p in paths:
            print(f"  📊 CSV:        {p}")

    if "markdown" in formats:
        path = export_markdown(outcome.report, output_dir, audit_id)
        created.append(path)
        print(f"  📝 Markdown:   {path}")

    return created


async def main_async(argv: Optional[Sequence[str]] = None) -> int:
    """Async entry point."""
    args = parse_args(argv)
    configure_logging(args.verbose)

    if getattr(args, "command", None) == "profile":
        if not getattr(args, "profile_action", None):
            print("Usage: python -m m365_role_audit profile {add|list|remove|set-default}")
            return 0
        return _cmd_profile(args)

    print("=" * 70)
    print(f" M365 Privileged Role Audit v{__version__}")
    print(" Mode: READ-ONLY — No tenant modifications will be made")
    print("=" * 70)

    try:
        config = build_config(args)
        mode = DeduplicationMode.parse(config.analysis.dedup_mode)
    except DeduplicationModeError as e:
        print(f"\n❌ {e}")
        return 2

    audit_id = config.output.timestamp
    output_dir = config.output.audit_dir
    print(f"\n📋 Audit ID: {audit_id}")
    print(f"📂 Output:   {output_dir.resolve()}")
    print(f"🔁 Dedup:    {mode.value}{' + prefer Azure AD' if config.analysis.prefer_azure_ad_source else ''}")

    # --- Authentication ---
    print("\n🔐 Authenticating...")
    try:
        auth_context = await Authenticator(config.auth).acquire_context(config.organization_name)
    except AuthenticationError as e:
        print(f"❌ Authentication failed: {e}")
        return 1
    print(f"✅ Authenticated ({auth_context.auth_type}).")

    # --- Collection Phase ---
    print("\n" + "=" * 70)
    print(" PHASE 1: ROLE ASSIGNMENT COLLECTION")
    print("=" * 70)
    async with GraphClient(access_token=auth_context.access_token) as graph:
        results = await run_collection(graph, config, auth_context)
        graph_stats = graph.get_stats()

    returned = sum(1 for r in results if r.returned_data)
    print(f"\n  {returned} of {len(results)} services returned data "
          f"({graph_stats['total_requests']} Graph requests, "
          f"{graph_stats['throttle_events']} throttled)")

    records = [record for result in results for record in result.records]
    organization = organization_metadata(auth_context.organization_name, results, records)

    # --- Analysis Phase ---
    print("\n" + "=" * 70)
    print(" PHASE 2: DEDUPLICATION & ANALYSIS")
    print("=" * 70 + "\n")
    outcome = run_audit(
        records,
        organization,
        mode=mode,
        prefer_authoritative_source=config.analysis.prefer_azure_ad_source,
        detailed=config.analysis.detailed,
        now=datetime.now(timezone.utc),
    )
    alerts = outcome.report["securityAlerts"]
    print(f"  Assignments:        {outcome.stats.total_assignments} ({len(outcome.removed)} duplicates removed)")
    print(f"  Unique users:       {outcome.stats.unique_users}")
    print(f"  Global admins:      {alerts['globalAdminCount']}")
    for severity in ("critical", "high", "medium", "low"):
        print(f"  {severity.title() + ' alerts:':<20s}{len(alerts[severity])}")

    # --- Reporting Phase ---
    print("\n" + "=" * 70)
    print(" PHASE 3: REPORT GENERATION")
    print("=" * 70 + "\n")
    created_files = generate_reports(outcome, output_dir, audit_id, config.output.formats)

    print("\n" + "=" * 70)
    print(" AUDIT COMPLETE")
    print("=" * 70)
    print(f"\n  Services: {returned} of {len(results)} returned data")
    print(f"  Files:    {len(created_files)} reports generated")
    print(f"  Path:     {output_dir.resolve()}")
    print()
    return 0


def main():
    """Synchronous entry point for `python -m m365_role_audit`."""
    sys.exit(asyncio.run(main_async()))


if __name__ == "__main__":
    main()
