"""PII redaction applied to every payload before it reaches a backend.

Recognised categories:

- ``[EMAIL]`` - ``local@domain.tld``
- ``[PHONE]`` - optional country code plus 3-3-4 digits
- ``[SSN]`` - ``123-45-6789``
- ``[CREDIT_CARD]`` - 13 to 16 digits with optional space/dash separators
"""

from .anonymizer import PII_PATTERNS, anonymize, anonymize_text

__all__ = ["PII_PATTERNS", "anonymize", "anonymize_text"]
