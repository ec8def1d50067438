import os

from dotenv import load_dotenv

project_root = os.path.dirname(os.path.abspath(__file__))

# Load .env file for tests
load_dotenv(os.path.join(project_root, ".env"))

# tests must not pick up a developer's dev.yml overlay
os.environ.setdefault("RELAY_IGNORE_DEV_CONFIG", "true")
