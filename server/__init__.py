"""Line-oriented TCP front end: validation, session state machine, listener."""

from .listener import BindError, ProofServer
from .response import ProofResponse
from .session import Session, SessionState
from .validator import (InvalidInput, ProofRequest, validate_age,
                        validate_bmi, validate_request)

__all__ = [
    'BindError',
    'ProofServer',
    'ProofResponse',
    'Session',
    'SessionState',
    'InvalidInput',
    'ProofRequest',
    'validate_age',
    'validate_bmi',
    'validate_request',
]
