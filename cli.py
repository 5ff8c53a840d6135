from __future__ import annotations

import argparse
import json
import os
import sys

import requests


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _desired_payload(args: argparse.Namespace) -> dict:
    payload = {
        "name": args.name,
        "presence": args.presence,
        "run_state": args.run_state,
        "bundle_url": args.bundle_url,
        "install_directory": args.install_directory,
        "service_port": args.service_port,
        "controller_host": args.controller_host,
        "controller_port": args.controller_port,
    }
    # Let the server fill in its canonical defaults.
    return {k: v for k, v in payload.items() if v is not None}


def _add_desired_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--name", required=True)
    p.add_argument("--presence", choices=["Present", "Absent"], default="Present")
    p.add_argument("--run-state", choices=["Started", "Stopped"], default="Started")
    p.add_argument("--bundle-url")
    p.add_argument("--install-directory")
    p.add_argument("--service-port", type=int)
    p.add_argument("--controller-host")
    p.add_argument("--controller-port", type=int)


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Agent Convergence Resource CLI")
    p.add_argument("--api", default="http://localhost:8000", help="API base URL")
    p.add_argument("--user", default=os.getenv("ACR_ADMIN_USER", "admin"))
    p.add_argument("--password", default=os.getenv("ACR_ADMIN_PASS", "change-me"))
    sub = p.add_subparsers(dest="cmd", required=True)

    s_state = sub.add_parser("state", help="Show the actual state of an agent")
    s_state.add_argument("--name", required=True)
    s_state.add_argument("--install-directory")

    s_apply = sub.add_parser("apply", help="Converge an agent to the desired state")
    _add_desired_args(s_apply)

    s_test = sub.add_parser("test", help="Check whether an agent is compliant")
    _add_desired_args(s_test)

    s_ev = sub.add_parser("events", help="Show journal events")
    s_ev.add_argument("--limit", type=int, default=20)
    s_ev.add_argument("--service")

    args = p.parse_args(argv)

    base = args.api.rstrip("/")
    auth = (args.user, args.password)

    if args.cmd == "state":
        params = {"install_directory": args.install_directory} if args.install_directory else None
        r = requests.get(f"{base}/agents/{args.name}/state", params=params, auth=auth, timeout=30)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "apply":
        # Downloads and service stops can take a while server-side.
        r = requests.post(f"{base}/agents/apply", json=_desired_payload(args), auth=auth, timeout=900)
        _print(r.json())
        return 0 if r.ok and r.json().get("compliant") else 1

    if args.cmd == "test":
        r = requests.post(f"{base}/agents/compliance", json=_desired_payload(args), auth=auth, timeout=30)
        _print(r.json())
        return 0 if r.ok and r.json().get("compliant") else 1

    if args.cmd == "events":
        params = {"limit": args.limit}
        if args.service:
            params["service"] = args.service
        _print(requests.get(f"{base}/events", params=params, auth=auth, timeout=10).json())
        return 0

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
