#!/usr/bin/env python3
"""
OSC preflight guard - deterministic connectivity checks for QLab before a
sync run.

Returns structured diagnostics so callers get actionable error messages
instead of vague timeouts.

Usage:
  python osc_preflight.py
  python osc_preflight.py --host 10.0.0.5 --no-workspace
  python osc_preflight.py --osc-debug
"""

from __future__ import annotations

import argparse
import logging
import time
from dataclasses import replace
from typing import Any, Dict, List, Optional

from qlab_controls import addresses
from qlab_controls.errors import QLabAuthError, QLabConnectionError, QLabError


# ---------------------------------------------------------------------------
# Individual check primitives
# ---------------------------------------------------------------------------

def check_qlab_reachable(controller,
                         attempts: int = 3,
                         delay_s: float = 1.0,
                         timeout: Optional[float] = None) -> Dict[str, Any]:
    """Verify QLab answers ``/version``.

    Args:
        controller: QLabController (started on demand).
        attempts: Max tries.
        delay_s: Seconds between tries.
        timeout: Per-try reply timeout (default: controller timeout).

    Returns:
        ``{"ok": bool, "latency_ms": float|None, "attempts_used": int,
           "version": str|None, "message": str}``
    """
    for i in range(1, attempts + 1):
        t0 = time.monotonic()
        reply = controller.send_with_retry(addresses.version(), timeout=timeout, max_retries=0)
        elapsed_ms = (time.monotonic() - t0) * 1000
        if reply.ok:
            return {
                "ok": True,
                "latency_ms": round(elapsed_ms, 1),
                "attempts_used": i,
                "version": reply.data if isinstance(reply.data, str) else None,
                "message": f"QLab responding ({elapsed_ms:.0f} ms, attempt {i}/{attempts})",
            }
        if i < attempts:
            time.sleep(delay_s)

    return {
        "ok": False,
        "latency_ms": None,
        "attempts_used": attempts,
        "version": None,
        "message": (
            f"QLab unreachable at {controller.host}:{controller.port} after {attempts} attempts"
        ),
    }


def check_workspace(workspace, passcode: Optional[str] = None) -> Dict[str, Any]:
    """Connect to the front workspace and count its cue lists.

    Returns:
        ``{"ok": bool, "workspace_id": str|None, "cue_list_count": int|None,
           "message": str}``
    """
    try:
        workspace.connect(passcode)
    except QLabAuthError as exc:
        return {"ok": False, "workspace_id": None, "cue_list_count": None,
                "message": f"Passcode rejected: {exc}"}
    except QLabConnectionError as exc:
        return {"ok": False, "workspace_id": None, "cue_list_count": None,
                "message": f"Connect failed: {exc}"}
    except QLabError as exc:
        return {"ok": False, "workspace_id": None, "cue_list_count": None,
                "message": f"QLab error on connect: {exc}"}

    try:
        cue_lists = workspace.get_cue_lists(use_cache=False)
    except QLabError as exc:
        return {"ok": False, "workspace_id": workspace.workspace_id, "cue_list_count": None,
                "message": f"/cueLists failed: {exc}"}
    if cue_lists is None:
        return {
            "ok": False,
            "workspace_id": workspace.workspace_id,
            "cue_list_count": None,
            "message": "/cueLists timed out - increase QLAB_TIMEOUT for large workspaces",
        }
    return {
        "ok": True,
        "workspace_id": workspace.workspace_id,
        "cue_list_count": len(cue_lists),
        "message": f"Workspace {workspace.workspace_id} accessible ({len(cue_lists)} cue lists)",
    }


# ---------------------------------------------------------------------------
# Composite preflight
# ---------------------------------------------------------------------------

def run_preflight(workspace,
                  passcode: Optional[str] = None,
                  require_workspace: bool = True,
                  attempts: int = 3,
                  delay_s: float = 1.0) -> Dict[str, Any]:
    """Run all preflight checks and return a combined report.

    Checks are run in dependency order - later checks are skipped if an
    earlier one fails so the caller gets the *first* actionable failure.

    Args:
        workspace: QLabWorkspace to check.
        passcode: Workspace passcode (default: from settings).
        require_workspace: Also connect and list cue lists.
        attempts: Tries for the reachability check.
        delay_s: Seconds between tries.

    Returns:
        ``{"ok": bool, "checks": [...], "failure_type": str|None,
           "message": str}``
    """
    checks: List[Dict[str, Any]] = []

    # 1. QLab reachable
    reach = check_qlab_reachable(workspace.controller, attempts=attempts, delay_s=delay_s)
    checks.append({"name": "qlab_reachable", **reach})
    if not reach["ok"]:
        return _build_report(checks, "qlab_unreachable_preflight")

    # 2. Workspace (optional)
    if require_workspace:
        ws = check_workspace(workspace, passcode)
        checks.append({"name": "workspace", **ws})
        if not ws["ok"]:
            return _build_report(checks, "workspace_unavailable")

    return _build_report(checks, None)


def _build_report(checks: List[Dict[str, Any]],
                  failure_type: Optional[str]) -> Dict[str, Any]:
    ok = failure_type is None
    if ok:
        msg = f"All {len(checks)} preflight checks passed"
    else:
        failed = [c for c in checks if not c.get("ok")]
        msg = failed[0]["message"] if failed else "Unknown preflight failure"
    return {
        "ok": ok,
        "checks": checks,
        "failure_type": failure_type,
        "message": msg,
    }


# ---------------------------------------------------------------------------
# Command line
# ---------------------------------------------------------------------------

def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Check that QLab is reachable before a sync run.")
    parser.add_argument("--host", default=None, help="QLab machine (default: QLAB_HOST)")
    parser.add_argument("--port", type=int, default=None, help="QLab OSC port (default: QLAB_PORT)")
    parser.add_argument("--passcode", default=None, help="Workspace passcode (default: QLAB_PASSCODE)")
    parser.add_argument("--attempts", type=int, default=3, help="Tries for /version (default: 3)")
    parser.add_argument(
        "--no-workspace",
        action="store_true",
        help="Only check that QLab answers; do not connect to the workspace.",
    )
    parser.add_argument(
        "--log-file",
        default="logs/qlab_sync.log",
        help="Log file path (default: logs/qlab_sync.log)",
    )
    parser.add_argument(
        "--osc-debug",
        action="store_true",
        help="Log every OSC send and reply to the log file.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)

    from logging_config import setup_logging
    from qlab_controls.config import QLabSettings
    from qlab_controls.workspace import QLabWorkspace

    setup_logging(
        args.log_file,
        console_level=logging.WARNING,
        osc_level=logging.DEBUG if args.osc_debug else logging.INFO,
    )

    try:
        settings = QLabSettings.from_env()
    except ValueError as exc:
        print(f"[preflight] bad configuration: {exc}")
        return 1
    if args.host:
        settings = replace(settings, host=args.host)
    if args.port:
        settings = replace(settings, port=args.port)

    workspace = QLabWorkspace(settings)
    try:
        report = run_preflight(
            workspace,
            passcode=args.passcode,
            require_workspace=not args.no_workspace,
            attempts=args.attempts,
        )
    finally:
        workspace.disconnect()

    for check in report["checks"]:
        status = "ok" if check["ok"] else "FAILED"
        print(f"[preflight] {check['name']}: {status} - {check['message']}")
    if not report["ok"]:
        print(f"[preflight] failure type: {report['failure_type']}")
        return 1
    print(f"[preflight] {report['message']}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
