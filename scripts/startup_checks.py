#!/usr/bin/env python3
"""Startup checks for environment and dependencies.

Reports missing env vars, an unknown reference timezone and missing Python
packages before the agent service is deployed.

It exits non-zero when run with `raise_on_error=True` inside CI or local checks.
"""
import importlib
import os
import sys
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

try:
    from dotenv import load_dotenv
    load_dotenv()
except Exception:
    # dotenv is optional; if not present, environment variables must be set externally
    pass

REQUIRED_MODULES = [
    ("fastapi", "fastapi"),
    ("pydantic", "pydantic"),
    ("httpx", "httpx"),
    ("langchain_core", "langchain-core"),
    ("langchain_google_genai", "langchain-google-genai"),
    ("google.cloud.firestore", "google-cloud-firestore"),
]


def _module_available(name: str) -> bool:
    try:
        importlib.import_module(name)
        return True
    except Exception:
        return False


def _clean(value):
    return (value or "").strip().strip("'\"").strip()


def run_checks(raise_on_error: bool = True):
    errors = []
    warnings = []

    # The model is reached either with an API key or through a Vertex AI project.
    if not _clean(os.getenv("GOOGLE_API_KEY")):
        if not (_clean(os.getenv("GCP_PROJECT_ID")) or _clean(os.getenv("GOOGLE_CLOUD_PROJECT"))):
            errors.append("Missing env var: GOOGLE_API_KEY (or GCP_PROJECT_ID for Vertex AI)")

    cred = _clean(os.getenv("GOOGLE_APPLICATION_CREDENTIALS"))
    if cred:
        if not os.path.isabs(cred):
            cred = os.path.abspath(cred)
        if not os.path.isfile(cred):
            errors.append(f"GOOGLE_APPLICATION_CREDENTIALS file not found: {cred}")
    else:
        warnings.append("GOOGLE_APPLICATION_CREDENTIALS not set; relying on default credentials for Firestore")

    if not _clean(os.getenv("TELEGRAM_TOKEN")):
        warnings.append("TELEGRAM_TOKEN not set; only users with a telegramToken preference get replies")

    tz_name = _clean(os.getenv("AGENT_TIMEZONE")) or "America/Sao_Paulo"
    try:
        ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        errors.append(f"AGENT_TIMEZONE {tz_name!r} is not a known IANA timezone")

    for mod, pkg in REQUIRED_MODULES:
        if not _module_available(mod):
            errors.append(f"Missing Python module: {mod} (install package: {pkg})")

    report = {"errors": errors, "warnings": warnings}
    if errors and raise_on_error:
        msg = "Startup checks failed:\n" + "\n".join(errors + warnings)
        raise SystemExit(msg)
    return report


def main():
    report = run_checks(raise_on_error=False)
    print("STARTUP CHECKS:")
    print("Errors:", report.get("errors"))
    print("Warnings:", report.get("warnings"))
    if report.get("errors"):
        missing_pkgs = []
        for err in report.get("errors", []):
            if "install package:" in err:
                missing_pkgs.append(err.split("install package:")[-1].strip().rstrip(")"))

        if missing_pkgs:
            print("\nSuggested fix:")
            print("pip install " + " ".join(sorted(set(missing_pkgs))))
            print("or install the project: pip install -e .")

        sys.exit(2)


if __name__ == "__main__":
    main()
