#!/usr/bin/env python3
"""
Smoke checks for a running PinShare server
Exercises every endpoint over real HTTP and reports the findings
"""

import os
import sys
import uuid
from io import BytesIO

import requests

BASE_URL = os.environ.get("PINSHARE_BASE_URL", "http://localhost:8080")
check_results = []


class CheckResult:
    def __init__(self, endpoint, method, status, message):
        self.endpoint = endpoint
        self.method = method
        self.status = status
        self.message = message

    def __str__(self):
        status_symbol = "✓" if self.status == "PASS" else "✗"
        return f"[{status_symbol}] {self.method} {self.endpoint}: {self.message}"


def log_check(endpoint, method, passed, message):
    result = CheckResult(endpoint, method, "PASS" if passed else "FAIL", message)
    check_results.append(result)
    print(result)


def check_health():
    print("\n=== Health ===")
    try:
        response = requests.get(f"{BASE_URL}/health", timeout=5)
        data = response.json()
        log_check("/health", "GET", response.status_code == 200, f"status={data.get('status')}")
    except requests.RequestException as e:
        log_check("/health", "GET", False, f"Error: {e}")


def check_empty_listing(pin):
    print("\n=== Empty listing ===")
    endpoint = f"/api/files/{pin}"
    try:
        response = requests.get(f"{BASE_URL}{endpoint}", timeout=5)
        files = response.json().get("files")
        log_check(endpoint, "GET", response.status_code == 200 and files == [], f"files={files}")
    except requests.RequestException as e:
        log_check(endpoint, "GET", False, f"Error: {e}")


def check_round_trip(pin):
    print("\n=== Upload, list, download ===")
    endpoint = f"/api/files/{pin}"
    try:
        files = {"file": ("report.txt", BytesIO(b"hello"), "text/plain")}
        response = requests.post(f"{BASE_URL}{endpoint}", files=files, timeout=10)
        log_check(endpoint, "POST", response.status_code == 200, response.json().get("message", ""))

        response = requests.get(f"{BASE_URL}{endpoint}", timeout=5)
        listed = response.json().get("files", [])
        log_check(endpoint, "GET", {"name": "report.txt", "size": 5} in listed, f"files={listed}")

        response = requests.get(f"{BASE_URL}{endpoint}/report.txt", timeout=5)
        log_check(f"{endpoint}/report.txt", "GET", response.content == b"hello", f"bytes={response.content!r}")
    except requests.RequestException as e:
        log_check(endpoint, "POST", False, f"Error: {e}")


def check_traversal_upload(pin):
    print("\n=== Traversal upload ===")
    endpoint = f"/api/files/{pin}"
    try:
        files = {"file": ("a/../../etc/passwd", BytesIO(b"root"), "text/plain")}
        response = requests.post(f"{BASE_URL}{endpoint}", files=files, timeout=10)
        listed = [entry["name"] for entry in requests.get(f"{BASE_URL}{endpoint}", timeout=5).json()["files"]]
        log_check(endpoint, "POST", response.status_code == 200 and "passwd" in listed, f"files={listed}")
    except requests.RequestException as e:
        log_check(endpoint, "POST", False, f"Error: {e}")


def check_missing_download(pin):
    print("\n=== Missing download ===")
    endpoint = f"/api/files/{pin}/never-uploaded.bin"
    try:
        response = requests.get(f"{BASE_URL}{endpoint}", timeout=5)
        passed = response.status_code == 404 and response.json() == {"error": "File not found"}
        log_check(endpoint, "GET", passed, f"status={response.status_code}")
    except requests.RequestException as e:
        log_check(endpoint, "GET", False, f"Error: {e}")


def check_preflight(pin):
    print("\n=== CORS preflight ===")
    endpoint = f"/api/files/{pin}"
    try:
        response = requests.options(f"{BASE_URL}{endpoint}", timeout=5)
        passed = response.status_code == 204 and not response.content
        log_check(endpoint, "OPTIONS", passed, f"origin={response.headers.get('Access-Control-Allow-Origin')}")
    except requests.RequestException as e:
        log_check(endpoint, "OPTIONS", False, f"Error: {e}")


def print_summary():
    print("\n" + "=" * 80)
    passed = sum(1 for r in check_results if r.status == "PASS")
    failed = [r for r in check_results if r.status == "FAIL"]
    print(f"Total: {len(check_results)}  Passed: {passed}  Failed: {len(failed)}")
    for r in failed:
        print(f"  - {r.method} {r.endpoint}: {r.message}")


def main():
    print(f"Base URL: {BASE_URL}")
    pin = str(uuid.uuid4().int)[:8]

    check_health()
    check_empty_listing(pin)
    check_round_trip(pin)
    check_traversal_upload(pin)
    check_missing_download(pin)
    check_preflight(pin)

    print_summary()
    return 1 if any(r.status == "FAIL" for r in check_results) else 0


if __name__ == "__main__":
    sys.exit(main())
