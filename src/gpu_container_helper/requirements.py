"""
Driver requirement checks.

Requirements are expressions over the ``cuda`` and ``driver`` rules (see
``dsl``), for example ``cuda>=9.0`` or ``driver<390``. They are checked in
the order given and checking stops at the first one that does not hold.
"""

import logging
from typing import Dict, List, Sequence

from . import dsl
from .dsl import Comparator, Predicate
from .errors import ExpressionError, RequirementError
from .library import DriverInfo


logger = logging.getLogger(__name__)

MAX_REQUIREMENTS = 16


def parse_version(version: str) -> List[int]:
    """Split a dotted version string into integer components."""
    try:
        return [int(part) for part in version.strip().split('.')]
    except ValueError:
        raise ExpressionError(f"invalid version: {version}")


def compare_versions(a: str, b: str) -> int:
    """Three-way dotted-numeric comparison.

    Missing trailing components compare as zero, so ``"384" == "384.0"``
    and ``"10" < "10.1"``.
    """
    left, right = parse_version(a), parse_version(b)
    width = max(len(left), len(right))
    left += [0] * (width - len(left))
    right += [0] * (width - len(right))
    return (left > right) - (left < right)


def check_cuda_version(driver: DriverInfo, comparator: Comparator, version: str) -> bool:
    return comparator.matches(compare_versions(driver.cuda_version, version))


def check_driver_version(driver: DriverInfo, comparator: Comparator, version: str) -> bool:
    return comparator.matches(compare_versions(driver.kmod_version, version))


RULES: Dict[str, Predicate] = {
    "cuda": check_cuda_version,
    "driver": check_driver_version,
}


def check_requirements(requirements: Sequence[str], driver: DriverInfo) -> None:
    """Check requirements in order against the installed driver.

    Args:
        requirements: Requirement expressions, at most MAX_REQUIREMENTS
        driver: Installed driver versions

    Raises:
        RequirementError: On the first malformed or unsatisfied requirement
    """
    if len(requirements) > MAX_REQUIREMENTS:
        raise RequirementError(
            f"too many requirements ({len(requirements)} > {MAX_REQUIREMENTS})",
            requirement=requirements[MAX_REQUIREMENTS])

    for requirement in requirements:
        try:
            satisfied = dsl.evaluate(requirement, driver, RULES)
        except ExpressionError as e:
            raise RequirementError(f"{e} in {requirement}", requirement=requirement)

        if not satisfied:
            raise RequirementError(f"unsatisfied condition: {requirement}",
                                   requirement=requirement)
        logger.debug(f"Requirement satisfied: {requirement}")

    logger.info(f"All {len(requirements)} requirements satisfied")
