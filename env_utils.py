import os

_METADATA_PROJECT_URL = "http://metadata.google.internal/computeMetadata/v1/project/project-id"
_METADATA_HEADERS = {"Metadata-Flavor": "Google"}

_TRUTHY = {"1", "true", "yes", "on", "sim"}
_FALSY = {"0", "false", "no", "off", "nao", "não"}


def clean_env(value):
    if not value:
        return None
    cleaned = value.strip().strip("'\"").strip()
    return cleaned or None


def env_str(name, default=None):
    return clean_env(os.getenv(name)) or default


def env_flag(name, default=False):
    raw = clean_env(os.getenv(name))
    if raw is None:
        return default
    lowered = raw.lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    return default


def env_float(name, default):
    raw = clean_env(os.getenv(name))
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _seed_project_env(project_id):
    if not os.getenv("GCP_PROJECT_ID"):
        os.environ["GCP_PROJECT_ID"] = project_id
    if not os.getenv("GOOGLE_CLOUD_PROJECT"):
        os.environ["GOOGLE_CLOUD_PROJECT"] = project_id


def _project_id_from_metadata(timeout_seconds=0.2):
    # Cloud Run/Compute metadata server fallback.
    try:
        from urllib import request

        req = request.Request(_METADATA_PROJECT_URL, headers=_METADATA_HEADERS)
        with request.urlopen(req, timeout=timeout_seconds) as resp:
            return clean_env(resp.read().decode("utf-8"))
    except Exception:
        return None


def resolve_gcp_project_id(set_env=True):
    """Find the GCP project used for Firestore and Vertex AI.

    Explicit env vars win, then application default credentials, then the
    metadata server when running on Google infrastructure.
    """
    for env_name in ("GCP_PROJECT_ID", "GOOGLE_CLOUD_PROJECT", "GCLOUD_PROJECT"):
        project = clean_env(os.getenv(env_name))
        if project:
            if set_env:
                _seed_project_env(project)
            return project

    project = None
    try:
        import google.auth

        _, project = google.auth.default()
    except Exception:
        project = None

    project = clean_env(project)
    if not project:
        project = _project_id_from_metadata()

    if project and set_env:
        _seed_project_env(project)
    return project
