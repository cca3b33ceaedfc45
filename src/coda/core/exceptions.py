# Copyright (C) Istituto Italiano di Tecnologia (IIT). All rights reserved.

import logging

logger = logging.getLogger(__name__)


class ConstraintSetError(ValueError):
    """Raised when the constrained dynamics API is used against its contract,
    e.g. binding a constraint set twice or passing vectors of the wrong size.
    """


def contract_violation(message: str) -> ConstraintSetError:
    """Logs the message and returns the exception to be raised

    Args:
        message (str): description of the misuse

    Returns:
        ConstraintSetError: the exception carrying the message
    """
    logger.error(message)
    return ConstraintSetError(message)


def check_size(name: str, vector, expected: int) -> None:
    """
    Args:
        name (str): the name used in the error message
        vector (npt.ArrayLike): the vector to check
        expected (int): the expected number of entries

    Raises:
        ConstraintSetError: if the size does not match
    """
    if len(vector) != expected:
        raise contract_violation(
            f"Incorrect {name} vector size: expected {expected}, got {len(vector)}."
        )
