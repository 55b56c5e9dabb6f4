"""
gateway/exceptions.py -- Error taxonomy for the gatekeeping pipeline.

Only failures that are NOT an ordinary "no" live here. A rejected credential
or an expired session is a normal outcome and is returned as a response
(redirect or 401); these exceptions cover everything else:

  ConfigurationError      -- bad stage table or boot misuse. Raised while the
                             application starts, aborts startup.
  CollaboratorUnavailable -- an upstream dependency (session store, trust
                             root backend) failed. Surfaced to the client as
                             503 so an outage never reads as "access denied".
  ProtocolViolation       -- a stage broke the handle() contract. A bug in
                             the stage; propagates as a 500.
"""


class GatewayError(Exception):
    """Base class for all gateway errors."""


class ConfigurationError(GatewayError):
    pass


class CollaboratorUnavailable(GatewayError):
    def __init__(self, collaborator: str, message: str = "") -> None:
        self.collaborator = collaborator
        super().__init__(message or f"{collaborator} is unavailable")


class ProtocolViolation(GatewayError):
    pass
