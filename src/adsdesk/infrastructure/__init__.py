"""
ADSDESK INFRASTRUCTURE
Resilient access to the Graph API

This package contains:
- pacer: minimum spacing between outbound calls
- error_handling: error taxonomy, failure classification and backoff policy
- executor: paced, retrying request execution with normalized errors
"""

from .error_handling import BackoffPolicy, Classification, ErrorKind, NormalizedError, classify
from .executor import (
    CallableCredentialProvider, CredentialProvider, EnvCredentialProvider, HttpMethod,
    RequestSpec, ResilientExecutor, StaticCredentialProvider,
)
from .pacer import RequestPacer

__all__ = [
    'RequestPacer',
    'BackoffPolicy', 'Classification', 'ErrorKind', 'NormalizedError', 'classify',
    'CredentialProvider', 'StaticCredentialProvider', 'EnvCredentialProvider', 'CallableCredentialProvider',
    'HttpMethod', 'RequestSpec', 'ResilientExecutor',
]
