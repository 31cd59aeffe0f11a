"""Resolution of the pricing-table month a lookup targets."""

import re
from typing import Callable, List, Optional, Union

from fipe_gateway.core.errors import GatewayError, InvalidReference, QuotaExhausted, UpstreamUnavailable
from fipe_gateway.upstream.models import Reference
from fipe_gateway.utils.logger import get_logger

REFERENCE_CODE_PATTERN = re.compile(r"^\d{1,10}$")


class ReferenceResolver:
    """Picks the Reference for a lookup.

    This is the only place where "no reference given" becomes a concrete
    month, so every cache key carries the month it was answered for.

    Args:
        load_references: Called with the caller id; returns the reference
            list, newest first. It is expected to be cached and may raise
            GatewayError.
    """

    def __init__(self, load_references: Callable[[str], List[Reference]]):
        self._load_references = load_references
        self.logger = get_logger("core.references")

    @staticmethod
    def is_valid_code(code: str) -> bool:
        return bool(REFERENCE_CODE_PATTERN.match(code))

    def resolve(self, requested: Optional[Union[str, int]] = None, caller: str = "public") -> Reference:
        """Return the Reference to use for a lookup.

        A supplied code is only checked syntactically; no upstream call is
        made. Without one, the first element of the reference list is used.

        Raises:
            InvalidReference: ``requested`` is not a reference code
            QuotaExhausted: the list had to be fetched and the quota is spent
            UpstreamUnavailable: the list could not be obtained or is empty
        """
        if requested is not None and str(requested).strip() != "":
            code = str(requested).strip()
            if not self.is_valid_code(code):
                raise InvalidReference(f"Invalid reference code {requested!r}")
            return Reference(code=code)

        try:
            references = self._load_references(caller)
        except QuotaExhausted:
            raise
        except GatewayError as e:
            raise UpstreamUnavailable(f"Could not load reference list: {e.message}")
        if not references:
            raise UpstreamUnavailable("Reference list is empty")
        current = references[0]
        self.logger.debug(f"Defaulting to current reference {current.code} ({current.label})")
        return current
