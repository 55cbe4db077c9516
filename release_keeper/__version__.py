"""Version information for release-keeper.

``BUILD_COMMIT_HASH`` / ``BUILD_COMMIT_TIME`` identify the source commit a
release binary was built from. Release builds generate ``_build_info.py``;
source checkouts have none and report their identity from git instead.
"""

__version__ = "0.1.0"

try:
    from release_keeper._build_info import BUILD_COMMIT_HASH, BUILD_COMMIT_TIME
except ImportError:
    BUILD_COMMIT_HASH = ""
    BUILD_COMMIT_TIME = ""
