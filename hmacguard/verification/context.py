"""
Request Context
===============
Transport-neutral view of the request values the pipeline verifies.
"""

from dataclasses import dataclass, field
from typing import Mapping, Optional

from ..config import HeaderNames


@dataclass(frozen=True)
class RequestContext:
    """
    The four signed header values plus what they sign.

    body must be the exact bytes received; never a re-serialized form.
    """
    client_id: Optional[str]
    signature: Optional[str]
    timestamp: Optional[str]
    nonce: Optional[str]
    method: str = "GET"
    path: str = "/"
    query: Optional[str] = None
    body: bytes = field(default=b"", repr=False)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_headers(
        cls,
        headers: Mapping[str, str],
        header_names: Optional[HeaderNames] = None,
        **request,
    ) -> "RequestContext":
        """
        Build a context from a header mapping.

        Args:
            headers: Request headers (case-insensitive mapping recommended)
            header_names: Header naming override
            **request: method, path, query, body, ip_address, user_agent

        Example:
            ctx = RequestContext.from_headers(request.headers, method="POST", path="/api")
        """
        names = header_names or HeaderNames()
        return cls(
            client_id=headers.get(names.api_key),
            signature=headers.get(names.signature),
            timestamp=headers.get(names.timestamp),
            nonce=headers.get(names.nonce),
            **request,
        )

    def has_required_headers(self) -> bool:
        return all((self.client_id, self.signature, self.timestamp, self.nonce))

    @property
    def body_size(self) -> int:
        return len(self.body or b"")
