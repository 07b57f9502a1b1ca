import logging

from typing import Mapping

from models import TaintEffect, Toleration, TolerationOperator
from exc import ConfigError

LOG = logging.getLogger(__name__)


class DEFAULTS:
    TOLERATION_KEY = "virtual-kubelet.io/burst-to-cci"
    TOLERATION_VALUE = "cci"
    TOLERATION_OP = TolerationOperator.EQUAL.value
    TOLERATION_EFFECT = TaintEffect.NO_SCHEDULE.value


def resolve_toleration(config: Mapping[str, str]) -> Toleration:
    """Build the toleration injected into eligible pods.

    Missing keys fall back to DEFAULTS. An operator or effect Kubernetes
    does not know about is reported as a ConfigError rather than replaced
    with a default.
    """
    key = config.get("TOLERATION_KEY", DEFAULTS.TOLERATION_KEY)
    value = config.get("TOLERATION_VALUE", DEFAULTS.TOLERATION_VALUE)
    operator_name = config.get("TOLERATION_OP", DEFAULTS.TOLERATION_OP)
    effect_name = config.get("TOLERATION_EFFECT", DEFAULTS.TOLERATION_EFFECT)

    try:
        effect = TaintEffect(effect_name)
    except ValueError:
        raise ConfigError(f"taint effect {effect_name!r} is not supported")

    try:
        operator = TolerationOperator(operator_name)
    except ValueError:
        raise ConfigError(f"toleration operator {operator_name!r} is not supported")

    # An Exists toleration matches any value and must not carry one.
    if operator == TolerationOperator.EXISTS:
        value = None

    toleration = Toleration(
        key=key, value=value, operator=operator.value, effect=effect.value
    )
    LOG.debug("resolved toleration: %s", toleration)
    return toleration
