"""
Checks the messaging-platform credentials and API key permissions.

    python -m variant_bridge.check_messaging [--json]

Exits 0 when every check passes, 1 otherwise.
"""
import argparse
import asyncio
import json
import sys
from typing import List, Optional

from variant_bridge.core.settings import Settings, get_settings
from variant_bridge.repositories.messaging_repo import MessagingRepository
from variant_bridge.services.messaging_check import PermissionReport, check_permissions


def render(report: PermissionReport) -> str:
    lines = [
        "Messaging configuration:",
        f"- BRAZE_API_KEY: {'Set' if report.api_key_set else 'Missing'}",
        f"- BRAZE_REST_ENDPOINT: {report.rest_endpoint or 'Missing'}",
        f"- BRAZE_APP_ID: {'Set' if report.app_id_set else 'Missing'}",
        "",
    ]
    if not report.configured:
        lines.append("Missing required messaging configuration")

    for check in report.checks:
        mark = "OK  " if check.ok else "FAIL"
        status = f" [{check.status}]" if check.status is not None else ""
        lines.append(f"{mark} {check.permission}{status}: {check.message}")
        lines.extend(f"       - {hint}" for hint in check.hints)

    if report.hints:
        lines.append("")
        lines.extend(f"- {hint}" for hint in report.hints)
    return "\n".join(lines)


async def run(settings: Settings) -> PermissionReport:
    repo = MessagingRepository(
        api_key=settings.BRAZE_API_KEY,
        rest_endpoint=settings.BRAZE_REST_ENDPOINT,
        timeout=settings.BRAZE_TIMEOUT_SECONDS,
    )
    try:
        return await check_permissions(repo, app_id=settings.BRAZE_APP_ID)
    finally:
        await repo.aclose()


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    ap.add_argument("--json", action="store_true", help="print the report as JSON")
    args = ap.parse_args(argv)

    report = asyncio.run(run(get_settings()))
    if args.json:
        print(json.dumps({**report.model_dump(mode="json"), "ok": report.ok}, indent=2))
    else:
        print(render(report))
    return 0 if report.ok else 1


if __name__ == "__main__":
    sys.exit(main())
