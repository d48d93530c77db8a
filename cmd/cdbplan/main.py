"""Command line entry point for the CDB resource plan manager.

Subcommands:
  apply  : apply the tier policy (plan, lockdown profiles, optionally PDBs)
  drift  : report differences between the policy and the database
  plans  : list resource plans {plan, status, comments}
  render : print the SQL*Plus script equivalent to ``apply``
  serve  : run the HTTP admin API
"""
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(REPO_ROOT))

from flask import Flask

from cdbplan.controlplane.factory import BACKENDS, create_control_plane, set_control_plane
from cdbplan.db.database import get_config_float, init_db, seed_defaults
from cdbplan.handlers.admin import admin_bp
from cdbplan.models.errors import ResourcePlanError
from cdbplan.orchestration.drift import report_drift
from cdbplan.orchestration.runner import apply_policy, render_policy
from cdbplan.policy.data import policy_store
from cdbplan.policy.loader import load_policy

LOG = logging.getLogger("cdbplan")


def create_app(control_plane=None, db_path: str | None = None) -> Flask:
    init_db(db_path)
    seed_defaults()
    if control_plane is not None:
        set_control_plane(control_plane)
    app = Flask(__name__)
    app.register_blueprint(admin_bp)
    return app


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--db", default=None, help="State store path (default: $CDBPLAN_DB_PATH or cdbplan.db)")
    parser.add_argument("--backend", choices=BACKENDS, default=None,
                        help="Control plane backend (default: $CDBPLAN_BACKEND or memory)")
    sub = parser.add_subparsers(dest="command", required=True)

    def with_policy(p):
        p.add_argument("--policy", default=None,
                       help="Tier definition file (default: $CDBPLAN_POLICY_PATH or config/tiers.yaml)")
        return p

    apply_p = with_policy(sub.add_parser("apply", help="Apply the tier policy"))
    apply_p.add_argument("--activate", action="store_true", help="Set the plan as RESOURCE_MANAGER_PLAN")
    apply_p.add_argument("--replace-lockdown", action="store_true", default=None,
                         help="Drop and recreate existing lockdown profiles; only this removes undeclared rules")
    apply_p.add_argument("--assign-pdbs", action="store_true", help="Bind the declared PDBs to their tier")
    apply_p.add_argument("--restart-pdbs", action="store_true", help="Restart assigned PDBs")

    drift_p = with_policy(sub.add_parser("drift", help="Report drift; exit status 1 when drift exists"))
    drift_p.add_argument("--activate", action="store_true", help="Also expect the plan to be active")

    sub.add_parser("plans", help="List resource plans")

    render_p = with_policy(sub.add_parser("render", help="Print the equivalent SQL*Plus script"))
    render_p.add_argument("--activate", action="store_true")
    render_p.add_argument("--assign-pdbs", action="store_true")
    render_p.add_argument("--restart-pdbs", action="store_true")
    render_p.add_argument("--output", default=None, help="Write the script to a file instead of stdout")

    serve_p = sub.add_parser("serve", help="Run the HTTP admin API")
    serve_p.add_argument("--port", type=int, default=int(os.getenv("PORT", "8080")))
    return parser


def _definition(args):
    if args.policy:
        return load_policy(args.policy)
    return policy_store.load()


def main(argv=None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if args.command == "render":
        try:
            script = render_policy(_definition(args), activate=args.activate,
                                   assign=args.assign_pdbs, restart=args.restart_pdbs)
        except ResourcePlanError as e:
            LOG.error("%s", e)
            return 2
        if args.output:
            Path(args.output).write_text(script, encoding="utf-8")
            LOG.info("Script written to %s", args.output)
        else:
            print(script, end="")
        return 0

    init_db(args.db)
    seed_defaults()

    try:
        control_plane = create_control_plane(args.backend, call_timeout=get_config_float("call_timeout_seconds", 30))
    except ResourcePlanError as e:
        LOG.error("%s", e)
        return 2
    set_control_plane(control_plane)

    try:
        if args.command == "apply":
            result = apply_policy(
                _definition(args), control_plane, activate=args.activate,
                replace_lockdown=args.replace_lockdown, assign=args.assign_pdbs,
                restart=args.restart_pdbs,
            )
            if control_plane.name == "script":
                print(control_plane.render(), end="")
            else:
                print(json.dumps(result, indent=2))
            return 0

        if args.command == "drift":
            items = report_drift(_definition(args), control_plane, activate=args.activate)
            print(json.dumps([i.to_dict() for i in items], indent=2))
            return 1 if items else 0

        if args.command == "plans":
            for info in control_plane.list_plans():
                print(f"{info.plan:30} {info.status:10} {info.comments}")
            return 0

        if args.command == "serve":
            app = create_app()
            LOG.info("cdbplan admin API listening on http://0.0.0.0:%d", args.port)
            app.run(host="0.0.0.0", port=args.port, threaded=True)
            return 0
    except ResourcePlanError as e:
        LOG.error("%s", e)
        return 2
    finally:
        control_plane.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
