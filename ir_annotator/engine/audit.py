from datetime import datetime
from importlib import metadata
import platform


def _runtime_version() -> str:
    for candidate in ("ir-annotator", "ir_annotator"):
        try:
            return f"{candidate}=={metadata.version(candidate)}"
        except metadata.PackageNotFoundError:
            continue
    return "ir-annotator==unknown"


def start_audit(label: str = "Analysis") -> list[str]:
    return [f"{label} start: {datetime.now().isoformat()}",
            f"Platform: {platform.platform()}",
            f"Runtime library {_runtime_version()}"]


def log_step(audit: list[str], msg: str):
    audit.append(msg)
