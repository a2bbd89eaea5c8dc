import sys
import os

# Add project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from backend.tagredirect.main import app  # noqa: E402,F401

# Serverless Python runtimes expect 'app' for ASGI frameworks like FastAPI
