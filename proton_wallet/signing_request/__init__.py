"""
Signing requests: esr: URI codec and the accept/decline/revoke engine.
"""

from proton_wallet.signing_request.engine import (
    ActiveRequest,
    Authenticator,
    DispatchResult,
    DisplayAction,
    RequestState,
    ResolvedRequest,
    SigningRequestEngine,
)
from proton_wallet.signing_request.uri import (
    RequestCallback,
    SigningRequest,
    decode_signing_request,
    encode_signing_request,
)

__all__ = [
    "ActiveRequest",
    "Authenticator",
    "DispatchResult",
    "DisplayAction",
    "RequestCallback",
    "RequestState",
    "ResolvedRequest",
    "SigningRequest",
    "SigningRequestEngine",
    "decode_signing_request",
    "encode_signing_request",
]
