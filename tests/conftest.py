import os
import warnings

# Ignore warnings from livekit protobuf stubs
warnings.filterwarnings("ignore", category=DeprecationWarning, module="google.protobuf.*")

# Set test environment variables before live_access reads its configuration
os.environ.update(
    {
        "LIVEKIT_API_KEY": os.environ.get("LIVEKIT_API_KEY", "APItestkey123456"),
        "LIVEKIT_API_SECRET": os.environ.get("LIVEKIT_API_SECRET", "test-secret-0123456789abcdef0123456789"),
        "JWT_SECRET": os.environ.get("JWT_SECRET", "test-jwt-secret-0123456789abcdef"),
        "RATE_LIMIT_BACKEND": "memory",
    }
)

# Import shared fixtures so they are available to all tests
from tests.fixtures.app_fixtures import *  # noqa: E402, F403
from tests.fixtures.redis_fixtures import *  # noqa: E402, F403
