from typing import Any, Literal
from pydantic import (
    BaseModel,
    Field,
    model_validator,
)
from enum import StrEnum


class ApiVersion(StrEnum):
    V1 = "admission.k8s.io/v1"


class Operation(StrEnum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    CONNECT = "CONNECT"


# https://kubernetes.io/docs/reference/generated/kubernetes-api/v1.30/#groupversionkind-v1-meta
class GroupVersionKind(BaseModel):
    group: str = ""
    version: str = ""
    kind: str = ""


# https://kubernetes.io/docs/reference/generated/kubernetes-api/v1.30/#status-v1-meta
class Status(BaseModel):
    status: str | None = None
    message: str | None = None
    code: int | None = None


# https://kubernetes.io/docs/reference/config-api/apiserver-admission.v1/#admission-k8s-io-v1-AdmissionResponse
class AdmissionResponse(BaseModel):
    uid: str
    allowed: bool = True
    status: Status | None = None


# https://kubernetes.io/docs/reference/config-api/apiserver-admission.v1/#admission-k8s-io-v1-AdmissionRequest
#
# oldObject and object are left untyped: the API server embeds them as JSON
# objects, but they may also arrive as JSON-encoded strings. Turning them into
# trees is the decision engine's job.
class AdmissionRequest(BaseModel):
    uid: str = Field(min_length=1)
    kind: GroupVersionKind | None = None
    name: str | None = None
    namespace: str | None = None
    operation: Operation
    oldObject: Any = None
    object: Any = None


# https://kubernetes.io/docs/reference/config-api/apiserver-admission.v1/#admission-k8s-io-v1-AdmissionReview
class AdmissionReview(BaseModel):
    apiVersion: Literal[ApiVersion.V1] = ApiVersion.V1
    kind: Literal["AdmissionReview"] = "AdmissionReview"
    request: AdmissionRequest | None = None
    response: AdmissionResponse | None = None

    @model_validator(mode="after")
    def validate_model(self):
        if not (self.request or self.response):
            raise ValueError("must contain a request or a response")

        return self
