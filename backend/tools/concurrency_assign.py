import os
import sys
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import argparse
import concurrent.futures
import json

import requests

BASE = os.environ.get("SHIPGRAPH_BASE", "http://127.0.0.1:8000")


def assign_task(i, package_ids, load_id):
    payload = {"package_ids": package_ids, "load_id": load_id}
    try:
        r = requests.post(f"{BASE}/api/packages/bulk-assign", json=payload, timeout=20)
        return (i, load_id, r.status_code, r.text)
    except requests.RequestException as e:
        return (i, load_id, "ERR", str(e))


def get_json(path):
    r = requests.get(f"{BASE}{path}", timeout=10)
    r.raise_for_status()
    return r.json()


def run_assign_concurrent(workers, package_ids, load_ids, sweep):
    """
    Fire `workers` bulk assignments of the same packages, alternating between
    the given loads, then report where each package ended up and whether the
    loads' membership agrees with it.
    """
    print(f"Running assign test: workers={workers}, packages={len(package_ids)}, loads={load_ids}")
    with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as ex:
        futures = [
            ex.submit(assign_task, i, package_ids, load_ids[i % len(load_ids)])
            for i in range(workers)
        ]
        results = [f.result() for f in futures]
    for r in results:
        print(r[:3], json.loads(r[3]).get("succeeded") if r[2] == 200 else r[3])

    if sweep:
        print("Sweep:", requests.post(f"{BASE}/api/admin/reconcile/sweep", timeout=60).json())

    owners = {pid: get_json(f"/api/packages/{pid}")["load_id"] for pid in package_ids}
    for load_id in load_ids:
        load = get_json(f"/api/loads/{load_id}")
        members = set(load["package_ids"]) & set(package_ids)
        owned = {pid for pid, owner in owners.items() if owner == load_id}
        print(
            f"load {load_id}: members={len(members)} owned={len(owned)} "
            f"phantoms={sorted(members - owned)} missing={sorted(owned - members)} "
            f"total_packages={load['total_packages']}"
        )


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Concurrent bulk-assignment tool.")
    parser.add_argument("--load", action="append", required=True, help="Load id (repeat for several)")
    parser.add_argument("--package", action="append", required=True, help="Package id (repeat for several)")
    parser.add_argument("--workers", type=int, default=8)
    parser.add_argument("--sweep", action="store_true", help="Run a reconciliation sweep afterwards")
    args = parser.parse_args()

    run_assign_concurrent(args.workers, args.package, args.load, args.sweep)
