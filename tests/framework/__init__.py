"""
Test framework for RESTful API testing using 4-layer architecture.
"""

from .dsl import RestApiDsl, HttpRequest, HttpResponse
from .drivers import DirectDriver, AsgiDriver, AwsLambdaDriver, RouterTransport
from .multi_driver_base import MultiDriverTestBase, multi_driver_test_class

__all__ = [
    'RestApiDsl',
    'HttpRequest',
    'HttpResponse',
    'DirectDriver',
    'AsgiDriver',
    'AwsLambdaDriver',
    'RouterTransport',
    'MultiDriverTestBase',
    'multi_driver_test_class',
]
