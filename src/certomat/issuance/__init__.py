"""CSR issuance through the external certbot agent.

Exports the orchestrator, the agent wrapper and the serialization token
they share with the self-certificate manager.
"""

from certomat.issuance.agent import CertbotAgent
from certomat.issuance.orchestrator import CsrIssuer, IssuanceRequest, csr_common_name
from certomat.issuance.serialization import SerializationToken

__all__ = [
    "CertbotAgent",
    "CsrIssuer",
    "IssuanceRequest",
    "SerializationToken",
    "csr_common_name",
]
