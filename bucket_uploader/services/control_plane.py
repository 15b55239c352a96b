"""HTTP client for the upload control plane.

The control plane decides how a file is uploaded (one PUT or several parts),
finalizes multipart uploads and deletes files. Its responses are decoded
here into explicit plan types; anything that does not fit is rejected as a
ProtocolError instead of being probed further down.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import httpx

from bucket_uploader.errors import ProtocolError, TransportError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileInfo:
    """File descriptor sent along with an upload request."""

    extension: str
    type: str
    size: int
    file_name: str | None = None
    replace_target_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to the request payload shape, omitting unset options."""
        data: dict[str, Any] = {
            "extension": self.extension,
            "type": self.type,
            "size": self.size,
        }
        if self.file_name is not None:
            data["fileName"] = self.file_name
        if self.replace_target_url is not None:
            data["replaceTargetUrl"] = self.replace_target_url
        return data


@dataclass(frozen=True)
class PlanPart:
    """Upload target for one part of a multipart plan."""

    part_number: int
    upload_url: str


@dataclass(frozen=True)
class SinglePlan:
    """Plan for uploading the whole file in one PUT."""

    upload_url: str
    access_url: str
    size: int
    uploaded_at: str
    thumbnail_url: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    path: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class MultipartPlan:
    """Plan for uploading the file as independently transferred parts."""

    part_size: int
    total_parts: int
    upload_id: str
    key: str
    parts: tuple[PlanPart, ...]
    access_url: str
    size: int
    uploaded_at: str
    thumbnail_url: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    path: dict[str, Any] = field(default_factory=dict)


TransferPlan = SinglePlan | MultipartPlan


def _require(payload: dict[str, Any], name: str, kind: type | tuple[type, ...]) -> Any:
    """Fetch a required field, checking its JSON type."""
    if name not in payload:
        raise ProtocolError(f"Upload plan is missing '{name}'")
    value = payload[name]
    # bool is an int subclass but never a valid number here
    if isinstance(value, bool) or not isinstance(value, kind):
        raise ProtocolError(f"Upload plan field '{name}' has an invalid value: {value!r}")
    return value


def _optional_dict(payload: dict[str, Any], name: str) -> dict[str, Any]:
    value = payload.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ProtocolError(f"Upload plan field '{name}' must be an object")
    return value


def _decode_parts(multipart: dict[str, Any], total_parts: int) -> tuple[PlanPart, ...]:
    raw_parts = _require(multipart, "parts", list)
    parts: list[PlanPart] = []
    for raw in raw_parts:
        if not isinstance(raw, dict):
            raise ProtocolError("Upload plan part must be an object")
        parts.append(
            PlanPart(
                part_number=_require(raw, "partNumber", int),
                upload_url=_require(raw, "uploadUrl", str),
            )
        )

    if len(parts) != total_parts:
        raise ProtocolError(
            f"Upload plan announces {total_parts} parts but lists {len(parts)}"
        )
    numbers = sorted(p.part_number for p in parts)
    if numbers != list(range(1, total_parts + 1)):
        raise ProtocolError("Upload plan part numbers must be unique and run from 1 to totalParts")
    return tuple(parts)


def decode_transfer_plan(payload: Any) -> TransferPlan:
    """Decode a /request-upload response into a single or multipart plan.

    Raises:
        ProtocolError: The payload is not a valid plan of either kind
    """
    if not isinstance(payload, dict):
        raise ProtocolError("Upload plan must be a JSON object")

    thumbnail_url = payload.get("thumbnailUrl")
    if thumbnail_url is not None and not isinstance(thumbnail_url, str):
        raise ProtocolError("Upload plan field 'thumbnailUrl' must be a string")

    common: dict[str, Any] = {
        "access_url": _require(payload, "accessUrl", str),
        "size": _require(payload, "size", int),
        "uploaded_at": _require(payload, "uploadedAt", str),
        "thumbnail_url": thumbnail_url or None,
        "metadata": _optional_dict(payload, "metadata"),
        "path": _optional_dict(payload, "path"),
    }

    if "multipart" in payload:
        multipart = payload["multipart"]
        if not isinstance(multipart, dict):
            raise ProtocolError("Upload plan field 'multipart' must be an object")
        part_size = _require(multipart, "partSize", int)
        total_parts = _require(multipart, "totalParts", int)
        if part_size <= 0 or total_parts <= 0:
            raise ProtocolError("Multipart plan needs a positive part size and part count")
        return MultipartPlan(
            part_size=part_size,
            total_parts=total_parts,
            upload_id=_require(multipart, "uploadId", str),
            key=_require(multipart, "key", str),
            parts=_decode_parts(multipart, total_parts),
            **common,
        )

    if "uploadUrl" in payload:
        return SinglePlan(upload_url=_require(payload, "uploadUrl", str), **common)

    raise ProtocolError("Upload plan has neither an upload URL nor multipart information")


class ControlPlaneClient:
    """Calls the control-plane endpoints under ``api_path``."""

    def __init__(self, http: httpx.AsyncClient, api_path: str) -> None:
        self.http = http
        self.api_path = api_path.rstrip("/")

    async def _post(self, endpoint: str, payload: dict[str, Any]) -> httpx.Response:
        url = f"{self.api_path}/{endpoint}"
        try:
            return await self.http.post(url, json=payload)
        except httpx.TransportError as e:
            raise TransportError(f"Request to {url} failed: {e}") from e

    async def request_upload(
        self,
        bucket_name: str,
        file_info: FileInfo,
        input: dict[str, Any] | None = None,
    ) -> TransferPlan:
        """Ask the control plane how to upload a file.

        Args:
            bucket_name: Target bucket
            file_info: Descriptor of the file to upload
            input: Optional structured input validated by the bucket

        Returns:
            The decoded transfer plan

        Raises:
            TransportError: The request could not be sent
            ProtocolError: Non-2xx answer or an invalid plan
        """
        payload: dict[str, Any] = {"bucketName": bucket_name, "fileInfo": file_info.to_dict()}
        if input is not None:
            payload["input"] = input

        response = await self._post("request-upload", payload)
        if not response.is_success:
            raise ProtocolError(
                f"Upload request was rejected (HTTP {response.status_code})",
                status_code=response.status_code,
            )
        try:
            body = response.json()
        except ValueError as e:
            raise ProtocolError("Upload request returned invalid JSON") from e

        plan = decode_transfer_plan(body)
        logger.debug("Received %s for bucket %s", type(plan).__name__, bucket_name)
        return plan

    async def complete_multipart_upload(
        self,
        bucket_name: str,
        upload_id: str,
        key: str,
        parts: Sequence[dict[str, Any]],
    ) -> None:
        """Report every uploaded part so the control plane can assemble the file."""
        response = await self._post(
            "complete-multipart-upload",
            {"bucketName": bucket_name, "uploadId": upload_id, "key": key, "parts": list(parts)},
        )
        if not response.is_success:
            raise ProtocolError("Multi-part upload failed", status_code=response.status_code)

    async def delete_file(self, bucket_name: str, url: str) -> None:
        """Delete a previously uploaded file."""
        response = await self._post("delete-file", {"url": url, "bucketName": bucket_name})
        if not response.is_success:
            raise ProtocolError(
                f"Delete request was rejected (HTTP {response.status_code})",
                status_code=response.status_code,
            )
