from enum import Enum


class ProtocolVersion(str, Enum):
    CAS1 = "CAS1"
    CAS2 = "CAS2"
    CAS3 = "CAS3"

    @property
    def endpoint(self) -> str:
        """Validation endpoint, relative to the CAS base URL."""
        return _ENDPOINTS[self]


_ENDPOINTS = {
    ProtocolVersion.CAS1: "validate",
    ProtocolVersion.CAS2: "serviceValidate",
    ProtocolVersion.CAS3: "p3/serviceValidate",
}
