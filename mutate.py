import json
import logging
import os
import pydantic

from flask import Flask, request, jsonify, current_app
from werkzeug.exceptions import BadRequest, HTTPException, UnsupportedMediaType

from models import (
    BaseModel,
    AdmissionRequest,
    AdmissionReview,
    ApiVersion,
    Decision,
    Pod,
    Toleration,
    Verdict,
)

from eligibility import should_patch
from patch import create_patch
from providers import KubernetesProvider
from tolerations import resolve_toleration
from exc import ConfigError, PatchError

LOG = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO)


class DEFAULTS:
    PROVIDER = KubernetesProvider
    NAMESPACE = "default"
    SERVICE_NAME = "webhook"
    SERVICE_PORT = "443"
    LISTEN_ADDRESS = ":8080"
    LOOKUP_TIMEOUT = "5"
    WEBHOOK_TIMEOUT = "10"
    EXCLUDE_NAMESPACE_LABEL = None
    VERIFY_CLIENT_CA = False


def jsonresponse():
    """Transforms the response from a view function into a JSON object."""

    def _outer(func):
        def _inner(*args, **kwargs):
            res = func(*args, **kwargs)
            if isinstance(res, BaseModel):
                return jsonify(res.model_dump(mode="json", exclude_none=True))
            else:
                return jsonify(res)

        return _inner

    return _outer


def peek_request(body: bytes) -> tuple[str, str]:
    """Best effort extraction of the apiVersion and request uid.

    Used to answer reviews we could not decode, so that the API server can
    still correlate our response.
    """
    api_version, uid = ApiVersion.V1, ""
    try:
        data = json.loads(body)
        if data.get("apiVersion") in list(ApiVersion):
            api_version = ApiVersion(data["apiVersion"])
        if isinstance(data["request"]["uid"], str):
            uid = data["request"]["uid"]
    except (ValueError, KeyError, TypeError, AttributeError):
        pass

    return api_version, uid


def check_request():
    if not request.get_data():
        LOG.error("no body found")
        raise BadRequest("no body found")

    if request.mimetype != "application/json":
        LOG.error("wrong content type: %s", request.content_type)
        raise UnsupportedMediaType("invalid Content-Type, want `application/json`")


def admission_decision(
    provider, req: AdmissionRequest, tolerations: list[Toleration]
) -> Decision:
    if req.object is None:
        return Decision(verdict=Verdict.ERRORED, message="request has no object")

    try:
        pod = Pod.model_validate(req.object)
    except pydantic.ValidationError as err:
        LOG.error("could not decode pod: %s", err)
        return Decision(verdict=Verdict.ERRORED, message=f"invalid pod: {err}")

    # Pods created by controllers do not carry their namespace yet.
    if not pod.metadata.namespace:
        pod.metadata.namespace = req.namespace

    LOG.info(
        "AdmissionReview for Kind=%s Namespace=%s Name=%s UID=%s Operation=%s UserInfo=%s",
        req.kind.kind if req.kind else None,
        pod.metadata.namespace,
        pod.metadata.name or req.name,
        req.uid,
        req.operation,
        req.userInfo.username if req.userInfo else None,
    )

    if not should_patch(provider, pod):
        LOG.info(
            "skipping toleration injection for %s/%s",
            pod.metadata.namespace,
            pod.metadata.name,
        )
        return Decision(verdict=Verdict.ALLOWED)

    # Patching is best effort: failing to build a patch never blocks the pod.
    try:
        patch = create_patch(pod, tolerations)
    except PatchError as err:
        LOG.error(
            "not patching %s/%s: %s", pod.metadata.namespace, pod.metadata.name, err
        )
        return Decision(verdict=Verdict.ALLOWED)

    LOG.info("injecting toleration into %s/%s", pod.metadata.namespace, pod.metadata.name)
    return Decision(verdict=Verdict.ALLOWED, patch=patch)


@jsonresponse()
def mutate_pod():
    check_request()
    data = request.get_data()

    try:
        body = AdmissionReview.model_validate_json(data)
        if body.request is None:
            raise ValueError("review contains no request")
    except (pydantic.ValidationError, ValueError) as err:
        LOG.error("could not decode body: %s", err)
        api_version, uid = peek_request(data)
        decision = Decision(verdict=Verdict.ERRORED, message=str(err))
        return AdmissionReview(
            apiVersion=api_version, response=decision.to_response(uid)
        )

    decision = admission_decision(
        current_app.provider, body.request, current_app.tolerations
    )

    return AdmissionReview(
        apiVersion=body.apiVersion, response=decision.to_response(body.request.uid)
    )


def handle_httperror(err):
    return err.description, err.code, {"content-type": "text/plain"}


def health():
    return "OK", 200, {"content-type": "text/plain"}


def create_app(**config) -> Flask:
    """Use an application factory [1] to create the Flask app.

    Configuration comes from DEFAULTS, then from VK_* environment variables
    (plus VKUBELET_TAINT_EFFECT for the toleration effect),
    then from keyword arguments, which makes it easy to set up tests before
    the app is created.

    [1]: https://flask.palletsprojects.com/en/3.0.x/patterns/appfactories/
    """

    app = Flask(__name__)
    app.config.from_object(DEFAULTS)
    # Keep values as strings: a toleration value of "true" is not a boolean.
    app.config.from_prefixed_env("VK", loads=str)
    # The effect keeps the variable name virtual-kubelet deployments already use.
    if "VKUBELET_TAINT_EFFECT" in os.environ:
        if "VK_TOLERATION_EFFECT" in os.environ:
            LOG.warning(
                "VKUBELET_TAINT_EFFECT and VK_TOLERATION_EFFECT are both set, "
                "using VKUBELET_TAINT_EFFECT"
            )
        app.config["TOLERATION_EFFECT"] = os.environ["VKUBELET_TAINT_EFFECT"]
    if config:
        app.config.update(config)

    # Flags are JSON, as from_prefixed_env decodes them by default.
    if isinstance(app.config["VERIFY_CLIENT_CA"], str):
        app.config["VERIFY_CLIENT_CA"] = json.loads(app.config["VERIFY_CLIENT_CA"])

    try:
        app.tolerations = [resolve_toleration(app.config)]
    except ConfigError as err:
        LOG.error("invalid toleration configuration, pods will not be patched: %s", err)
        app.tolerations = []

    app.provider = app.config["PROVIDER"](
        lookup_timeout=float(app.config["LOOKUP_TIMEOUT"])
    )

    app.errorhandler(HTTPException)(handle_httperror)
    app.add_url_rule("/healthz", view_func=health)
    app.add_url_rule("/mutate", view_func=mutate_pod, methods=["POST"])

    return app
