import base64
from typing import Any, Literal
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    RootModel,
    model_validator,
    field_validator,
)
from enum import StrEnum


class ApiVersion(StrEnum):
    V1 = "admission.k8s.io/v1"
    V1BETA1 = "admission.k8s.io/v1beta1"


class Operation(StrEnum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    CONNECT = "CONNECT"


class PatchType(StrEnum):
    JSONPatch = "JSONPatch"


class PatchOp(StrEnum):
    REPLACE = "replace"
    ADD = "add"
    REMOVE = "remove"


class PatchAction(BaseModel):
    op: PatchOp
    path: str
    value: Any


# https://jsonpatch.com/
Patch = RootModel[list[PatchAction]]


class TolerationOperator(StrEnum):
    EQUAL = "Equal"
    EXISTS = "Exists"


class TaintEffect(StrEnum):
    NO_SCHEDULE = "NoSchedule"
    PREFER_NO_SCHEDULE = "PreferNoSchedule"
    NO_EXECUTE = "NoExecute"


# https://kubernetes.io/docs/reference/kubernetes-api/workload-resources/pod-v1/#scheduling
class Toleration(BaseModel):
    model_config = ConfigDict(frozen=True)

    # Plain strings: tolerations already present on a pod may carry values we
    # never inject, such as an empty effect meaning "all effects".
    key: str | None = None
    operator: str | None = None
    value: str | None = None
    effect: str | None = None
    tolerationSeconds: int | None = None


class VolumeKind(StrEnum):
    PERSISTENT_VOLUME_CLAIM = "persistentVolumeClaim"
    CONFIG_MAP = "configMap"
    SECRET = "secret"
    OTHER = "other"


class PersistentVolumeClaimSource(BaseModel):
    claimName: str
    readOnly: bool | None = None


class Volume(BaseModel):
    # Volume sources we do not care about (emptyDir, hostPath, ...) are kept
    # as extra fields so that they can be classified as OTHER.
    model_config = ConfigDict(extra="allow")

    name: str
    persistentVolumeClaim: PersistentVolumeClaimSource | None = None
    configMap: dict[str, Any] | None = None
    secret: dict[str, Any] | None = None

    @property
    def kind(self) -> VolumeKind:
        if self.persistentVolumeClaim is not None:
            return VolumeKind.PERSISTENT_VOLUME_CLAIM
        if self.configMap is not None:
            return VolumeKind.CONFIG_MAP
        if self.secret is not None:
            return VolumeKind.SECRET
        return VolumeKind.OTHER


def _none_as_empty(val):
    return [] if val is None else val


class Metadata(BaseModel):
    name: str | None = None
    namespace: str | None = None
    labels: dict[str, str] = {}
    annotations: dict[str, str] = {}

    @field_validator("labels", "annotations", mode="before")
    @classmethod
    def validate_maps(cls, val):
        return {} if val is None else val


class PodSpec(BaseModel):
    volumes: list[Volume] = []
    hostNetwork: bool = False
    tolerations: list[Toleration] = []

    @field_validator("volumes", "tolerations", mode="before")
    @classmethod
    def validate_lists(cls, val):
        return _none_as_empty(val)

    @field_validator("hostNetwork", mode="before")
    @classmethod
    def validate_host_network(cls, val):
        return False if val is None else val


class Pod(BaseModel):
    metadata: Metadata = Metadata()
    spec: PodSpec = PodSpec()


# https://kubernetes.io/docs/reference/generated/kubernetes-api/v1.30/#status-v1-meta
class AdmissionReviewStatus(BaseModel):
    message: str
    code: int | None = None


# https://kubernetes.io/docs/reference/config-api/apiserver-admission.v1/#admission-k8s-io-v1-AdmissionResponse
class AdmissionResponse(BaseModel):
    allowed: bool
    status: AdmissionReviewStatus | None = None
    uid: str
    patchType: PatchType | None = None
    patch: str | None = None

    @field_validator("patch", mode="before")
    @classmethod
    def validate_patch(cls, val):
        if isinstance(val, Patch):
            val = base64.b64encode(val.model_dump_json().encode()).decode()
        elif isinstance(val, (str, bytes)):
            # Make sure the base64 string contains valid data.
            Patch.model_validate_json(base64.b64decode(val))
        return val

    @model_validator(mode="after")
    def validate_model(self):
        if self.patch and not self.patchType:
            raise ValueError("missing patchType field")
        if self.patchType and not self.patch:
            raise ValueError(f"patchType is {self.patchType} but there is no patch")

        return self


class GroupVersionKind(BaseModel):
    group: str = ""
    version: str | None = None
    kind: str | None = None


class UserInfo(BaseModel):
    username: str | None = None
    uid: str | None = None
    groups: list[str] | None = None


# https://kubernetes.io/docs/reference/config-api/apiserver-admission.v1/#admission-k8s-io-v1-AdmissionRequest
class AdmissionRequest(BaseModel):
    uid: str = Field(min_length=1)
    kind: GroupVersionKind | None = None
    namespace: str | None = None
    name: str | None = None
    operation: Operation = Operation.CREATE
    userInfo: UserInfo | None = None
    object: dict[str, Any] | None = None


# https://kubernetes.io/docs/reference/config-api/apiserver-admission.v1/#admission-k8s-io-v1-AdmissionReview
class AdmissionReview(BaseModel):
    apiVersion: ApiVersion = ApiVersion.V1
    kind: Literal["AdmissionReview"] = "AdmissionReview"
    request: AdmissionRequest | None = None
    response: AdmissionResponse | None = None

    @model_validator(mode="after")
    def validate_model(self):
        if not (self.request or self.response):
            raise ValueError("must contain a request or a response")

        return self


class Verdict(StrEnum):
    ALLOWED = "Allowed"
    # Never produced by this webhook, which does not reject pods; it completes
    # the set of verdicts a response can carry.
    DENIED = "Denied"
    ERRORED = "Errored"


class Decision(BaseModel):
    """The outcome of one admission request.

    Every code path in the handler produces exactly one of these, so the
    `allowed` field of the rendered response is never left to a default.
    """

    verdict: Verdict
    message: str | None = None
    patch: Patch | None = None

    @model_validator(mode="after")
    def validate_model(self):
        if self.patch is not None and self.verdict != Verdict.ALLOWED:
            raise ValueError(f"a {self.verdict} decision cannot carry a patch")

        return self

    def to_response(self, uid: str) -> AdmissionResponse:
        status = None
        if self.verdict == Verdict.ERRORED:
            status = AdmissionReviewStatus(message=self.message or "", code=400)
        elif self.message:
            status = AdmissionReviewStatus(message=self.message)

        if self.patch is not None:
            return AdmissionResponse(
                uid=uid,
                allowed=True,
                status=status,
                patchType=PatchType.JSONPatch,
                patch=self.patch,
            )

        return AdmissionResponse(
            uid=uid,
            allowed=self.verdict == Verdict.ALLOWED,
            status=status,
        )


class TrustMaterial(BaseModel):
    """PEM encoded certificates and key used by the HTTPS listener.

    `cert` holds the server certificate followed by the CA certificate.
    """

    model_config = ConfigDict(frozen=True)

    ca_cert: bytes
    cert: bytes
    key: bytes
