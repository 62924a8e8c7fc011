import uuid


def generate_instance_name(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4()}"


def has_prefix(name: str, prefix: str) -> bool:
    return bool(prefix) and name.startswith(prefix)


def folder_path(folder: str) -> str:
    trimmed = folder.rstrip("/")
    return trimmed or "/"


def instance_path(folder: str, name: str) -> str:
    return f"{folder.rstrip('/')}/{name}"


def inventory_path(
    kind: str, name: str, datacenter: str = "", cluster: str = ""
) -> str:
    """Expand a configured object name into a full inventory path.

    Absolute paths are returned untouched. Bare names are placed under the
    datacenter directory vSphere uses for that kind of object.
    """
    if name.startswith("/") or not datacenter:
        return name
    dc = datacenter.strip("/")
    if kind in ("vm", "folder"):
        return f"/{dc}/vm/{name}"
    if kind == "datastore":
        return f"/{dc}/datastore/{name}"
    if kind == "host":
        return f"/{dc}/host/{cluster}/{name}" if cluster else f"/{dc}/host/{name}"
    if kind == "resource_pool":
        base = f"/{dc}/host/{cluster}/Resources"
        return base if name == "Resources" else f"{base}/{name}"
    return name
