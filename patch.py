from typing import Iterable

from models import Patch, PatchAction, PatchOp, Pod, Toleration
from exc import PatchError

TOLERATIONS_PATH = "/spec/tolerations"


def _value(toleration: Toleration) -> dict:
    return toleration.model_dump(exclude_none=True)


def add_tolerations(
    existing: list[Toleration],
    added: Iterable[Toleration],
    base_path: str = TOLERATIONS_PATH,
) -> list[PatchAction]:
    """Generate the JSON Patch operations appending `added` to a toleration list.

    JSON Patch cannot append to an array that does not exist, so when the pod
    has no tolerations the first one is added as a new single element list at
    `base_path`. Everything after that is appended with `base_path + "/-"`.
    """
    first = len(existing) == 0
    actions = []
    for toleration in added:
        if first:
            first = False
            path, value = base_path, [_value(toleration)]
        else:
            path, value = f"{base_path}/-", _value(toleration)

        actions.append(PatchAction(op=PatchOp.ADD, path=path, value=value))

    return actions


def create_patch(pod: Pod, tolerations: list[Toleration]) -> Patch:
    actions = add_tolerations(pod.spec.tolerations, tolerations)
    if not actions:
        raise PatchError("no tolerations to add")

    return Patch(actions)
