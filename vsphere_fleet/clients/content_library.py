import logging
import threading
from dataclasses import dataclass
from urllib.parse import urlparse

import httpx

from vsphere_fleet.clients.http import RequestFailure, request_checked
from vsphere_fleet.errors import LookupFailure, TaskFailure


logger = logging.getLogger(__name__)

SESSION_HEADER = "vmware-api-session-id"


@dataclass
class LibraryDeploySpec:
    name: str
    folder_id: str
    resource_pool_id: str
    datastore_id: str
    host_id: str | None = None
    cpu: int | None = None
    memory_mb: int | None = None
    powered_on: bool = True


def automation_base_url(vsphere_url: str) -> str:
    parsed = urlparse(vsphere_url)
    host = parsed.hostname or ""
    if parsed.port:
        host = f"{host}:{parsed.port}"
    return f"{parsed.scheme or 'https'}://{host}"


class ContentLibraryClient:
    """Template-library operations over the vSphere Automation REST API."""

    def __init__(
        self,
        base_url: str,
        user: str,
        password: str,
        *,
        verify: bool = True,
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.user = user
        self.password = password
        self.client = client or httpx.Client(
            base_url=self.base_url, verify=verify, timeout=timeout
        )
        self.session_id: str | None = None
        self._session_lock = threading.Lock()

    def login(self) -> None:
        response = request_checked(
            self.client, "POST", "/api/session", auth=(self.user, self.password)
        )
        token = response.json()
        if not isinstance(token, str) or not token:
            raise RequestFailure(
                method="POST",
                url="/api/session",
                error_type="MissingSessionToken",
                detail="vSphere automation session token missing",
                status_code=response.status_code,
                response_text=response.text,
            )
        self.session_id = token

    def logout(self) -> None:
        if not self.session_id:
            return
        try:
            request_checked(
                self.client, "DELETE", "/api/session", headers=self._headers()
            )
        except RequestFailure as exc:
            logger.warning("content library logout failed error=%s", exc)
        finally:
            self.session_id = None

    def close(self) -> None:
        self.logout()
        self.client.close()

    def _headers(self) -> dict[str, str]:
        # Clone threads share one session.
        if not self.session_id:
            with self._session_lock:
                if not self.session_id:
                    self.login()
        return {SESSION_HEADER: self.session_id or ""}

    def find_library(self, name: str) -> str:
        response = request_checked(
            self.client,
            "POST",
            "/api/content/library",
            params={"action": "find"},
            json={"name": name},
            headers=self._headers(),
        )
        ids = response.json()
        if not isinstance(ids, list) or not ids:
            raise LookupFailure(kind="content library", path=name)
        return str(ids[0])

    def find_item(self, library_id: str, name: str) -> str:
        response = request_checked(
            self.client,
            "POST",
            "/api/content/library/item",
            params={"action": "find"},
            json={"library_id": library_id, "name": name},
            headers=self._headers(),
        )
        ids = response.json()
        if not isinstance(ids, list) or not ids:
            raise LookupFailure(
                kind="content library item", path=f"{library_id}/{name}"
            )
        return str(ids[0])

    def deploy_template(self, item_id: str, spec: LibraryDeploySpec) -> str:
        placement = {"folder": spec.folder_id, "resource_pool": spec.resource_pool_id}
        if spec.host_id:
            placement["host"] = spec.host_id
        body: dict = {
            "name": spec.name,
            "placement": placement,
            "disk_storage": {"datastore": spec.datastore_id},
            "vm_home_storage": {"datastore": spec.datastore_id},
            "powered_on": spec.powered_on,
        }
        hardware: dict = {}
        if spec.cpu:
            hardware["cpu_update"] = {"num_cpus": spec.cpu}
        if spec.memory_mb:
            hardware["memory_update"] = {"memory": spec.memory_mb}
        if hardware:
            body["hardware_customization"] = hardware

        try:
            response = request_checked(
                self.client,
                "POST",
                f"/api/vcenter/vm-template/library-items/{item_id}",
                params={"action": "deploy"},
                json=body,
                headers=self._headers(),
            )
        except RequestFailure as exc:
            raise TaskFailure(
                operation="library deploy",
                phase="submit",
                target=spec.name,
                detail=exc.detail,
                fault=exc.error_type,
            ) from exc
        return str(response.json())
